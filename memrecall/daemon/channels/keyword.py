"""Keyword retrieval channel."""

import math
import statistics
import time
from typing import Any, Dict, List, Mapping

from loguru import logger

from ..errors import ChannelUnavailable
from ..models import Channel, ChannelHit, ChannelResult, SearchFilters
from .base import KeywordIndex


def saturate_scores(rows: List[Mapping[str, Any]]) -> List[ChannelHit]:
    """
    Map raw lexical scores onto [0,1].

    Each score is passed through tanh(raw / scale) where scale is the median
    positive raw score of the batch, so a typical hit lands near 0.76 and
    strong outliers saturate towards 1. Non-positive scores map to 0.
    Duplicate record ids keep their best score; order is by normalized score.
    """
    best: Dict[str, float] = {}
    for row in rows:
        record_id = str(row["record_id"])
        raw = float(row.get("score") or 0.0)
        if math.isnan(raw):
            raw = 0.0
        if record_id not in best or raw > best[record_id]:
            best[record_id] = raw

    positive = [s for s in best.values() if s > 0]
    scale = statistics.median(positive) if positive else 1.0

    hits = [
        ChannelHit(record_id=rid, score=math.tanh(raw / scale) if raw > 0 else 0.0)
        for rid, raw in best.items()
    ]
    hits.sort(key=lambda h: (-h.score, h.record_id))
    return hits


class KeywordChannel:
    """Lexical match over raw text, restricted by filters."""

    channel = Channel.KEYWORD

    def __init__(self, index: KeywordIndex):
        self.index = index

    @property
    def available(self) -> bool:
        return self.index is not None

    async def retrieve(self, text: str, filters: SearchFilters, limit: int) -> ChannelResult:
        """Never raises for backend failures; returns an empty, errored result instead."""
        start = time.perf_counter()
        try:
            rows = await self.index.query(text, filters, limit)
            hits = saturate_scores(rows)[:limit]
        except Exception as e:
            error = ChannelUnavailable(self.channel.value, str(e))
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
