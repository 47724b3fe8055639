"""Semantic retrieval channel."""

import threading
import time
from typing import Any, List, Mapping, Optional, Sequence

from cachetools import TTLCache
from loguru import logger

from ..errors import ChannelUnavailable
from ..models import Channel, ChannelHit, ChannelResult, SearchFilters
from .base import Embedder, VectorStore


def clamp_similarities(rows: List[Mapping[str, Any]]) -> List[ChannelHit]:
    """Clamp cosine similarities into [0,1]; duplicates keep the best."""
    best = {}
    for row in rows:
        record_id = str(row["record_id"])
        sim = float(row.get("similarity") or 0.0)
        sim = min(max(sim, 0.0), 1.0)
        if record_id not in best or sim > best[record_id]:
            best[record_id] = sim
    hits = [ChannelHit(record_id=rid, score=s) for rid, s in best.items()]
    hits.sort(key=lambda h: (-h.score, h.record_id))
    return hits


class SemanticChannel:
    """Embeds the query and ranks records by vector similarity."""

    channel = Channel.SEMANTIC

    def __init__(self,
                 embedder: Optional[Embedder],
                 store: Optional[VectorStore],
                 embedding_cache_size: int = 500,
                 embedding_ttl_seconds: int = 1800):
        """
        Args:
            embedder: Query embedder; None marks the channel as unavailable
            store: Vector store; None marks the channel as unavailable
            embedding_cache_size: Max cached query embeddings
            embedding_ttl_seconds: Lifetime of a cached embedding
        """
        self.embedder = embedder
        self.store = store
        self._embeddings = TTLCache(maxsize=embedding_cache_size, ttl=embedding_ttl_seconds)
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        return self.embedder is not None and self.store is not None

    @property
    def cached_embeddings(self) -> int:
        return len(self._embeddings)

    async def _embed(self, text: str) -> Sequence[float]:
        key = " ".join(text.lower().split())
        with self._lock:
            cached = self._embeddings.get(key)
        if cached is not None:
            return cached

        embedding = list(await self.embedder.embed(text))
        if not embedding:
            raise ValueError("embedder returned an empty vector")
        with self._lock:
            self._embeddings[key] = embedding
        return embedding

    async def retrieve(self, text: str, filters: SearchFilters, limit: int) -> ChannelResult:
        """Never raises for embedder or store failures."""
        start = time.perf_counter()
        try:
            if not self.available:
                raise ChannelUnavailable(self.channel.value, "no embedder or vector store configured")
            embedding = await self._embed(text)
            rows = await self.store.query(embedding, filters, limit)
            hits = clamp_similarities(rows)[:limit]
        except Exception as e:
            error = e if isinstance(e, ChannelUnavailable) else ChannelUnavailable(self.channel.value, str(e))
            logger.warning(str(error))
            return ChannelResult(
                channel=self.channel,
                latency_ms=(time.perf_counter() - start) * 1000,
                error=str(error),
            )

        return ChannelResult(
            channel=self.channel,
            hits=hits,
            latency_ms=(time.perf_counter() - start) * 1000,
        )
