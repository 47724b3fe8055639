"""Result fusion and confidence scoring.

confidence = w_sem*semantic + w_kw*keyword + w_time*recency
           + w_app*app_bonus + w_src*source_bonus

The weights are fixed configuration, not learned, and sum to 1. Every term
is in [0,1] so the composite is too. A score missing from one channel
contributes 0.
"""

from datetime import datetime
from typing import Dict, List, Mapping, Optional

from loguru import logger

from .config import RankingConfig
from .models import (
    Candidate,
    Channel,
    ChannelHit,
    MemoryRecord,
    StructuredQuery,
    host_matches,
    matches_hint,
)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return min(max(value, low), high)


class ResultFuser:
    """Unions channel hits by record id and ranks them by composite confidence."""

    def __init__(self, config: Optional[RankingConfig] = None):
        self.config = config or RankingConfig()

    def recency_score(self, ts: datetime, now: datetime) -> float:
        age_days = (now - ts).total_seconds() / 86400.0
        if age_days > self.config.max_horizon_days:
            return 0.0
        return clamp(1.0 - age_days / self.config.half_life_days)

    def app_bonus(self, record: MemoryRecord, app_hints: List[str]) -> float:
        return 1.0 if app_hints and matches_hint(record.app, record.url_host, app_hints) else 0.0

    def source_bonus(self, record: MemoryRecord) -> float:
        for host in self.config.reliable_hosts:
            if host_matches(record.url_host, host):
                return self.config.source_bonus
        return 0.0

    def score(self, candidate: Candidate, strict: bool = False) -> float:
        cfg = self.config
        semantic = candidate.semantic_score or 0.0
        keyword = candidate.keyword_score or 0.0
        if strict and candidate.keyword_score is None:
            semantic *= 1.0 - cfg.strict_fuzzy_penalty
        return clamp(
            cfg.w_semantic * semantic
            + cfg.w_keyword * keyword
            + cfg.w_time * candidate.recency_score
            + cfg.w_app * candidate.app_bonus
            + cfg.w_source * candidate.source_bonus
        )

    def fuse(self,
             keyword_hits: List[ChannelHit],
             semantic_hits: List[ChannelHit],
             records: Mapping[str, MemoryRecord],
             query: StructuredQuery,
             now: datetime) -> List[Candidate]:
        """
        Merge both channels into scored candidates.

        Args:
            keyword_hits: Normalized keyword hits
            semantic_hits: Normalized semantic hits
            records: Hydrated records by id; hits without a record are dropped
            query: Structured query (app hints, strictness)
            now: Request time used for recency

        Returns:
            Candidates sorted by descending confidence with deterministic tie-break
        """
        merged: Dict[str, Candidate] = {}

        for channel, hits in ((Channel.KEYWORD, keyword_hits), (Channel.SEMANTIC, semantic_hits)):
            for hit in hits:
                record = records.get(hit.record_id)
                if record is None:
                    logger.debug(f"Dropping {channel.value} hit without record: {hit.record_id}")
                    continue
                candidate = merged.get(hit.record_id)
                if candidate is None:
                    candidate = Candidate(record=record)
                    merged[hit.record_id] = candidate
                if channel is Channel.KEYWORD:
                    candidate.keyword_score = max(candidate.keyword_score or 0.0, clamp(hit.score))
                else:
                    candidate.semantic_score = max(candidate.semantic_score or 0.0, clamp(hit.score))
                candidate.provenance.add(channel)

        for candidate in merged.values():
            candidate.recency_score = self.recency_score(candidate.record.timestamp, now)
            candidate.app_bonus = self.app_bonus(candidate.record, query.app_hints)
            candidate.source_bonus = self.source_bonus(candidate.record)
            candidate.confidence = self.score(candidate, strict=query.strict)

        return self.rank(list(merged.values()))

    def rank(self, candidates: List[Candidate]) -> List[Candidate]:
        """Sort descending by confidence; ties go to the newer record, then the lower id."""
        eps = self.config.tie_epsilon
        # scores in the same eps bucket tie
        return sorted(
            candidates,
            key=lambda c: (-round(c.confidence / eps), -c.record.ts_ms, c.record_id),
        )
