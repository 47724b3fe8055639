"""Interfaces of the external collaborators the engine consumes.

Storage engines, the embedder and ingestion live outside this package; only
their query surfaces are described here. Implementations may be backed by
anything as long as the coroutine signatures match.
"""

from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from ..models import MemoryRecord, SearchFilters


class KeywordIndex(Protocol):
    """Inverted text index over raw_text."""

    async def query(self, text: str, filters: SearchFilters, limit: int) -> List[Mapping[str, Any]]:
        """Return up to ``limit`` rows of ``{"record_id": str, "score": float}``.

        Higher score means more relevant. Scores are on the backend's own
        scale and are normalized by the channel.
        """
        ...


class VectorStore(Protocol):
    """Vector similarity store with metadata filtering."""

    async def query(self, embedding: Sequence[float], filters: SearchFilters, top_n: int) -> List[Mapping[str, Any]]:
        """Return up to ``top_n`` rows of ``{"record_id": str, "similarity": float}``."""
        ...


class Embedder(Protocol):
    """Turns text into a fixed-dimension vector. May fail."""

    async def embed(self, text: str) -> Sequence[float]:
        ...


class RecordStore(Protocol):
    """Read access to captured memories."""

    async def get(self, record_id: str) -> Optional[MemoryRecord]:
        ...

    async def recent(self, limit: int) -> List[MemoryRecord]:
        ...

    async def stats(self) -> Dict[str, Any]:
        ...
