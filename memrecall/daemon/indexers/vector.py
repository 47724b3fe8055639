"""
Vector search index over memory embeddings using numpy.

Vectors are held normalized in memory so cosine similarity is a single
matrix product. Record metadata (timestamp, app, host) lives beside the
vectors so filters apply before scoring. Persistence is a single .npz file.
"""

import asyncio
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
from loguru import logger

from ..models import MemoryRecord, SearchFilters, from_epoch_ms, to_epoch_ms
from ..channels.base import Embedder


def _normalize(vector: Sequence[float], dim: int) -> np.ndarray:
    arr = np.asarray(vector, dtype=np.float32).reshape(-1)
    if arr.shape[0] != dim:
        raise ValueError(f"embedding has dimension {arr.shape[0]}, expected {dim}")
    norm = np.linalg.norm(arr)
    return arr / norm if norm > 0 else arr


def embedding_text(record: MemoryRecord, max_chars: int = 2000) -> str:
    """Text embedded for a record: window title, then raw text."""
    parts = [p for p in (record.window_title, record.raw_text) if p]
    return "\n".join(parts)[:max_chars]


class NumpyVectorStore:
    """In-memory cosine similarity index with metadata filtering."""

    def __init__(self, dim: int = 384, path: Optional[Path] = None):
        self.dim = dim
        self.path = Path(path) if path else None
        self._lock = threading.RLock()
        self._clear()

        if self.path and self.path.exists():
            self.load(self.path)

    def _clear(self) -> None:
        self.ids: List[str] = []
        self.vectors = np.zeros((0, self.dim), dtype=np.float32)
        self.ts_ms = np.zeros((0,), dtype=np.int64)
        self.apps: List[str] = []
        self.hosts: List[Optional[str]] = []
        self._positions: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.ids)

    def add(self, record: MemoryRecord, embedding: Sequence[float]) -> None:
        """Add or replace the vector for one record."""
        vector = _normalize(embedding, self.dim)
        with self._lock:
            position = self._positions.get(record.id)
            if position is not None:
                self.vectors[position] = vector
                self.ts_ms[position] = record.ts_ms
                self.apps[position] = record.app
                self.hosts[position] = record.url_host
                return

            self._positions[record.id] = len(self.ids)
            self.ids.append(record.id)
            self.vectors = np.vstack([self.vectors, vector[np.newaxis, :]])
            self.ts_ms = np.append(self.ts_ms, np.int64(record.ts_ms))
            self.apps.append(record.app)
            self.hosts.append(record.url_host)

    def remove(self, record_id: str) -> bool:
        with self._lock:
            position = self._positions.pop(record_id, None)
            if position is None:
                return False
            del self.ids[position]
            del self.apps[position]
            del self.hosts[position]
            self.vectors = np.delete(self.vectors, position, axis=0)
            self.ts_ms = np.delete(self.ts_ms, position)
            self._positions = {rid: i for i, rid in enumerate(self.ids)}
            return True

    def _query_sync(self, embedding: Sequence[float], filters: SearchFilters, top_n: int) -> List[Dict[str, Any]]:
        query = _normalize(embedding, self.dim)
        if not np.any(query):
            raise ValueError("query embedding is all zeros")

        with self._lock:
            if not self.ids or top_n <= 0:
                return []

            mask = np.ones(len(self.ids), dtype=bool)
            if filters.time_window:
                start = to_epoch_ms(filters.time_window.start)
                end = to_epoch_ms(filters.time_window.end)
                mask &= (self.ts_ms >= start) & (self.ts_ms < end)
            if filters.app_hints or filters.host:
                for i in np.flatnonzero(mask):
                    if not filters.matches(from_epoch_ms(int(self.ts_ms[i])), self.apps[i], self.hosts[i]):
                        mask[i] = False

            positions = np.flatnonzero(mask)
            if positions.size == 0:
                return []

            similarities = self.vectors[positions] @ query
            ids = [self.ids[i] for i in positions]

        # stable sort keeps insertion order among equal similarities
        order = np.argsort(-similarities, kind="stable")[:top_n]
        return [
            {"record_id": ids[i], "similarity": float(similarities[i])}
            for i in order
        ]

    async def query(self, embedding: Sequence[float], filters: SearchFilters, top_n: int) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._query_sync, embedding, filters, top_n)

    def save(self, path: Optional[Path] = None) -> Path:
        path = Path(path) if path else self.path
        if path is None:
            raise ValueError("no path to save vector index to")
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            # np.savez appends .npz to bare names; write through a handle to keep the path exact
            with open(path, "wb") as f:
                np.savez(
                    f,
                    ids=np.array(self.ids, dtype=object),
                    vectors=self.vectors,
                    ts_ms=self.ts_ms,
                    apps=np.array(self.apps, dtype=object),
                    hosts=np.array(self.hosts, dtype=object),
                    dim=np.int64(self.dim),
                )
        logger.debug(f"Saved {len(self)} vectors to {path}")
        return path

    def load(self, path: Path) -> None:
        with np.load(path, allow_pickle=True) as data:
            dim = int(data["dim"])
            if dim != self.dim:
                raise ValueError(f"index at {path} has dimension {dim}, expected {self.dim}")
            with self._lock:
                self.ids = [str(x) for x in data["ids"].tolist()]
                self.vectors = data["vectors"].astype(np.float32)
                self.ts_ms = data["ts_ms"].astype(np.int64)
                self.apps = [str(x) for x in data["apps"].tolist()]
                self.hosts = data["hosts"].tolist()
                self._positions = {rid: i for i, rid in enumerate(self.ids)}
        logger.info(f"Loaded {len(self)} vectors from {path}")

    async def rebuild(self, records: Iterable[MemoryRecord], embedder: Embedder,
                      progress=None) -> int:
        """
        Re-embed every record and replace the index contents.

        Args:
            records: Records to index
            embedder: Embedder used for record text
            progress: Optional callable invoked with the running count

        Returns:
            Number of records indexed
        """
        logger.info("Starting vector reindex...")
        with self._lock:
            self._clear()

        indexed = 0
        for record in records:
            text = embedding_text(record)
            if not text.strip():
                continue
            try:
                embedding = await embedder.embed(text)
                self.add(record, embedding)
            except Exception as e:
                logger.error(f"Failed to embed {record.id}: {e}")
                continue

            indexed += 1
            if progress is not None:
                progress(indexed)
            if indexed % 100 == 0:
                logger.info(f"Vector indexed {indexed} records...")

        if self.path:
            self.save()
        logger.info(f"Vector reindex complete: {indexed} records")
        return indexed

    def stats(self) -> Dict[str, Any]:
        return {
            "type": "vector",
            "records": len(self),
            "embedding_dim": self.dim,
            "index_size_mb": (self.path.stat().st_size / (1024 * 1024)
                              if self.path and self.path.exists() else 0),
        }
