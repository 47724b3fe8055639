"""Text embedders: local sentence-transformers or an OpenAI-compatible HTTP endpoint."""

import asyncio
import os
from typing import List, Optional

import httpx
from loguru import logger


class SentenceTransformerEmbedder:
    """Local embeddings (small, fast, offline)."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", max_chars: int = 512):
        # optional dependency: install the "embeddings" extra
        from sentence_transformers import SentenceTransformer

        self.model_name = model_name
        self.max_chars = max_chars
        self.model = SentenceTransformer(model_name)
        self.dim = self.model.get_sentence_embedding_dimension()
        logger.info(f"Loaded embedding model {model_name} (dim={self.dim})")

    def _embed_sync(self, text: str) -> List[float]:
        # model has a max input length
        if len(text) > self.max_chars:
            text = text[:self.max_chars]
        return self.model.encode(text, convert_to_numpy=True).tolist()

    async def embed(self, text: str) -> List[float]:
        return await asyncio.get_running_loop().run_in_executor(None, self._embed_sync, text)


class HttpEmbedder:
    """Embeddings from an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(self,
                 base_url: str = "https://api.openai.com/v1",
                 model: str = "text-embedding-3-small",
                 api_key: Optional[str] = None,
                 dim: Optional[int] = None,
                 timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.dim = dim
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_env(cls, base_url: Optional[str], model: str, api_key_env: str,
                 dim: Optional[int] = None) -> "HttpEmbedder":
        return cls(
            base_url=base_url or "https://api.openai.com/v1",
            model=model,
            api_key=os.environ.get(api_key_env),
            dim=dim,
        )

    def _headers(self):
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def embed(self, text: str) -> List[float]:
        payload = {"model": self.model, "input": text}
        if self._client is not None:
            response = await self._client.post(
                f"{self.base_url}/embeddings", json=payload, headers=self._headers(), timeout=self.timeout
            )
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/embeddings", json=payload, headers=self._headers()
                )
        response.raise_for_status()

        data = response.json().get("data") or []
        if not data:
            raise ValueError("embedding response contained no data")
        embedding = data[0]["embedding"]
        if self.dim is not None and len(embedding) != self.dim:
            raise ValueError(f"embedding has dimension {len(embedding)}, expected {self.dim}")
        return embedding

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
