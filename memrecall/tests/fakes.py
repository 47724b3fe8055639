"""In-memory collaborators for engine tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from memrecall.daemon.channels import KeywordChannel, SemanticChannel
from memrecall.daemon.config import Config
from memrecall.daemon.models import MemoryRecord, SearchFilters
from memrecall.daemon.search_orchestrator import SearchOrchestrator


NOW = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)


def make_record(record_id: str,
                age: timedelta = timedelta(hours=1),
                app: str = "Safari",
                url_host: Optional[str] = None,
                text: str = "",
                window_title: Optional[str] = None,
                now: datetime = NOW) -> MemoryRecord:
    return MemoryRecord(
        id=record_id,
        timestamp=now - age,
        app=app,
        url_host=url_host,
        window_title=window_title,
        raw_text=text,
    )


class FakeRecordStore:
    def __init__(self, records: Iterable[MemoryRecord] = (), error: Optional[Exception] = None,
                 failing_ids: Sequence[str] = ()):
        self.records: Dict[str, MemoryRecord] = {r.id: r for r in records}
        self.error = error
        self.failing_ids = set(failing_ids)
        self.get_calls: List[str] = []

    async def get(self, record_id: str) -> Optional[MemoryRecord]:
        self.get_calls.append(record_id)
        if self.error is not None or record_id in self.failing_ids:
            raise self.error or RuntimeError(f"cannot read {record_id}")
        return self.records.get(record_id)

    async def recent(self, limit: int) -> List[MemoryRecord]:
        ordered = sorted(self.records.values(), key=lambda r: (r.timestamp, r.id), reverse=True)
        return ordered[:limit]

    async def stats(self):
        return {"total_memories": len(self.records)}


class _ScoredBackend:
    """Returns preset scores for known records, honoring filters."""

    score_field = "score"

    def __init__(self, scores: Optional[Dict[str, float]] = None,
                 records: Iterable[MemoryRecord] = (),
                 delay: float = 0.0,
                 error: Optional[Exception] = None):
        self.scores = dict(scores or {})
        self.records = {r.id: r for r in records}
        self.delay = delay
        self.error = error
        self.calls = []

    async def _rows(self, filters: SearchFilters, limit: int):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        rows = []
        for record_id, score in self.scores.items():
            record = self.records.get(record_id)
            if record is not None and not filters.matches(record.timestamp, record.app, record.url_host):
                continue
            rows.append({"record_id": record_id, self.score_field: score})
        rows.sort(key=lambda row: -row[self.score_field])
        return rows[:limit]


class FakeKeywordIndex(_ScoredBackend):
    score_field = "score"

    async def query(self, text: str, filters: SearchFilters, limit: int):
        self.calls.append((text, filters, limit))
        return await self._rows(filters, limit)


class FakeVectorStore(_ScoredBackend):
    score_field = "similarity"

    async def query(self, embedding, filters: SearchFilters, top_n: int):
        self.calls.append((list(embedding), filters, top_n))
        return await self._rows(filters, top_n)


class FakeEmbedder:
    def __init__(self, vector: Sequence[float] = (1.0, 0.0), error: Optional[Exception] = None):
        self.vector = list(vector)
        self.error = error
        self.calls: List[str] = []
        self.dim = len(self.vector)

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return list(self.vector)


class Engine:
    """An orchestrator plus handles on its fake collaborators."""

    def __init__(self, records: Iterable[MemoryRecord] = (),
                 keyword_scores: Optional[Dict[str, float]] = None,
                 semantic_scores: Optional[Dict[str, float]] = None,
                 config: Optional[Config] = None,
                 keyword_delay: float = 0.0,
                 semantic_delay: float = 0.0,
                 keyword_error: Optional[Exception] = None,
                 semantic_error: Optional[Exception] = None,
                 embedder_error: Optional[Exception] = None,
                 now: datetime = NOW,
                 **orchestrator_kwargs):
        records = list(records)
        self.config = config or Config()
        self.store = FakeRecordStore(records)
        self.keyword_index = FakeKeywordIndex(keyword_scores, records, keyword_delay, keyword_error)
        self.vector_store = FakeVectorStore(semantic_scores, records, semantic_delay, semantic_error)
        self.embedder = FakeEmbedder(error=embedder_error)
        self.orchestrator = SearchOrchestrator(
            self.config,
            keyword_channel=KeywordChannel(self.keyword_index),
            semantic_channel=SemanticChannel(self.embedder, self.vector_store),
            record_store=self.store,
            clock=lambda: now,
            **orchestrator_kwargs,
        )
