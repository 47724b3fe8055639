"""Search orchestrator: parse, retrieve concurrently, fuse, select mode, attach nuggets.

Pipeline per request:
- Parse the query (pure, anchored at request time)
- Check the response cache
- Issue keyword and semantic retrieval concurrently, each under its own timeout
- Hydrate records, fuse and rank candidates
- Pick Exact-Hit or Memory-Jog and trim the list
- Attach nuggets and build cards
- Cache the response unless the request was cancelled or degraded
"""

import asyncio
import dataclasses
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from .cache import ResponseCache
from .channels.base import RecordStore
from .channels.keyword import KeywordChannel
from .channels.semantic import SemanticChannel
from .config import Config
from .errors import CacheError
from .fusion import ResultFuser
from .metrics import MetricsCollector, StageTimer
from .mode_selector import ModeSelector
from .models import (
    Candidate,
    Channel,
    ChannelResult,
    MemoryRecord,
    SearchCard,
    SearchFilters,
    SearchRequest,
    SearchResponse,
    StructuredQuery,
    TimeWindow,
)
from .nuggets import NuggetExtractor
from .query_parser import QueryParser


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SearchOrchestrator:
    """Sequences the retrieval engine for one request at a time, many at once."""

    def __init__(self,
                 config: Config,
                 keyword_channel: KeywordChannel,
                 semantic_channel: SemanticChannel,
                 record_store: RecordStore,
                 query_parser: Optional[QueryParser] = None,
                 fuser: Optional[ResultFuser] = None,
                 mode_selector: Optional[ModeSelector] = None,
                 extractor: Optional[NuggetExtractor] = None,
                 cache: Optional[ResponseCache] = None,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], datetime] = _utcnow):
        """
        Initialize search orchestrator.

        Args:
            config: Engine configuration
            keyword_channel: Lexical retrieval channel
            semantic_channel: Vector retrieval channel
            record_store: Source of full records for card assembly
            query_parser: Defaults to a parser with the configured aliases
            fuser: Defaults to a fuser with the configured weights
            mode_selector: Defaults to the configured thresholds
            extractor: Defaults to the configured matcher chain
            cache: Defaults to a new cache when caching is enabled
            metrics: Defaults to a new collector
            clock: Source of "now" for parsing and recency
        """
        self.config = config
        self.keyword_channel = keyword_channel
        self.semantic_channel = semantic_channel
        self.record_store = record_store
        self.query_parser = query_parser or QueryParser(config.query.app_aliases)
        self.fuser = fuser or ResultFuser(config.ranking)
        self.mode_selector = mode_selector or ModeSelector(config.mode)
        self.extractor = extractor or NuggetExtractor.from_config(config.nuggets)
        if cache is None and config.cache.enabled:
            cache = ResponseCache(config.cache.max_size, config.cache.ttl_seconds)
        self.cache = cache
        self.metrics = metrics or MetricsCollector()
        self.clock = clock

        self.channel_health: Dict[Channel, Dict[str, int]] = {
            Channel.KEYWORD: {"errors": 0, "timeouts": 0},
            Channel.SEMANTIC: {"errors": 0, "timeouts": 0},
        }

    async def search(self, request: SearchRequest) -> SearchResponse:
        """
        Execute one search.

        Channel, record store and cache failures degrade the response; they
        never raise. Cancellation propagates and leaves the cache untouched.
        """
        start_time = time.perf_counter()
        timings: Dict[str, float] = {}
        now = self.clock()
        self.metrics.increment_counter("search.requests")

        with StageTimer(timings, "parse"):
            query = self.query_parser.parse(request.q, now)
            query = self._apply_request_filters(query, request, now)
        filters = SearchFilters.for_query(query, host=request.host)
        cache_key = request.cache_key
        if query.time_window is not None:
            # relative windows move with the day
            cache_key = f"{cache_key}:{now.date().isoformat()}"

        with StageTimer(timings, "cache_lookup"):
            cached = self._cache_get(cache_key)
        if cached is not None:
            self.metrics.increment_counter("search.cache_hit")
            timings["total"] = (time.perf_counter() - start_time) * 1000
            cached.cached = True
            cached.timings = timings
            self.metrics.record_timings(timings)
            logger.debug(f"Cache hit for query: {request.q!r}")
            return cached
        self.metrics.increment_counter("search.cache_miss")

        limit = request.k * self.config.channels.candidate_multiplier
        with StageTimer(timings, "retrieve"):
            keyword_result, semantic_result = await asyncio.gather(
                self._run_channel(self.keyword_channel, query.keyword_text, filters, limit,
                                  self.config.channels.keyword_timeout_ms),
                self._run_channel(self.semantic_channel, query.raw_text, filters, limit,
                                  self.config.channels.semantic_timeout_ms),
            )
        timings["keyword"] = keyword_result.latency_ms
        timings["semantic"] = semantic_result.latency_ms
        degraded = [r.channel.value for r in (keyword_result, semantic_result) if not r.ok]

        with StageTimer(timings, "hydrate"):
            record_ids = [h.record_id for h in keyword_result.hits + semantic_result.hits]
            records = await self._hydrate(record_ids)

        with StageTimer(timings, "fuse"):
            candidates = self.fuser.fuse(
                keyword_result.hits, semantic_result.hits, records, query, now
            )[:request.k]

        with StageTimer(timings, "mode_select"):
            decision = self.mode_selector.select(candidates)

        with StageTimer(timings, "nuggets"):
            cards = [self._build_card(c, query.answer_field, explain=True) for c in decision.candidates]

        timings["total"] = (time.perf_counter() - start_time) * 1000
        response = SearchResponse(
            mode=decision.mode,
            confidence=decision.confidence,
            cards=cards,
            query=query,
            timings=timings,
            degraded=degraded,
        )
        self.metrics.record_timings(timings)

        # A degraded answer is not cached so a recovered backend is used next time
        if not degraded:
            self._cache_put(cache_key, response)

        logger.info(
            f"Search completed: query={request.q!r}, mode={response.mode.value}, "
            f"confidence={response.confidence:.3f}, results={len(cards)}, "
            f"time={timings['total']:.1f}ms"
            + (f", degraded={degraded}" if degraded else "")
        )
        return response

    def _apply_request_filters(self, query: StructuredQuery, request: SearchRequest, now: datetime) -> StructuredQuery:
        """Explicit from/to replace a parsed window; an explicit app leads the hints."""
        changes: Dict[str, Any] = {}
        if request.time_from or request.time_to:
            changes["time_window"] = TimeWindow(
                request.time_from or EPOCH,
                request.time_to or now + timedelta(days=1),
            )
        if request.app:
            others = [h for h in query.app_hints if h.lower() != request.app.lower()]
            changes["app_hints"] = [request.app] + others
        return dataclasses.replace(query, **changes) if changes else query

    async def _run_channel(self, channel, text: str, filters: SearchFilters,
                           limit: int, timeout_ms: int) -> ChannelResult:
        """Isolation boundary around one channel: timeouts and errors become empty results."""
        name = channel.channel.value
        if not channel.available:
            # switched off by configuration; not a failure of this request
            return ChannelResult(channel=channel.channel)

        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                channel.retrieve(text, filters, limit),
                timeout=timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError:
            logger.warning(f"{name} channel timed out after {timeout_ms}ms")
            self.channel_health[channel.channel]["timeouts"] += 1
            self.metrics.increment_counter(f"channel.{name}.timeout")
            return ChannelResult(
                channel=channel.channel,
                latency_ms=(time.perf_counter() - start) * 1000,
                error="timeout",
            )
        except Exception as e:
            logger.warning(f"{name} channel failed: {e}")
            result = ChannelResult(
                channel=channel.channel,
                latency_ms=(time.perf_counter() - start) * 1000,
                error=str(e),
            )

        if not result.ok:
            self.channel_health[channel.channel]["errors"] += 1
            self.metrics.increment_counter(f"channel.{name}.error")
        return result

    async def _hydrate(self, record_ids: List[str]) -> Dict[str, MemoryRecord]:
        unique = list(dict.fromkeys(record_ids))
        fetched = await asyncio.gather(*(self._get_record(rid) for rid in unique))
        return {record.id: record for record in fetched if record is not None}

    async def _get_record(self, record_id: str) -> Optional[MemoryRecord]:
        try:
            record = await self.record_store.get(record_id)
        except Exception as e:
            logger.warning(f"Record store lookup failed for {record_id}: {e}")
            self.metrics.increment_counter("record_store.error")
            return None
        if record is None:
            logger.debug(f"Record not found: {record_id}")
        return record

    def _cache_get(self, key: str) -> Optional[SearchResponse]:
        if self.cache is None:
            return None
        try:
            return self.cache.get(key)
        except CacheError as e:
            logger.warning(f"{e}; continuing uncached")
            self.metrics.increment_counter("cache.read_error")
            return None

    def _cache_put(self, key: str, response: SearchResponse) -> None:
        if self.cache is None:
            return
        try:
            stored = self.cache.put(key, response)
        except Exception as e:
            logger.warning(f"Cache write failed, dropping: {e}")
            stored = False
        if not stored:
            self.metrics.increment_counter("cache.write_dropped")

    def _build_card(self, candidate: Candidate, answer_field: Optional[str] = None,
                    explain: bool = False) -> SearchCard:
        record = candidate.record
        nugget = self.extractor.extract(record.raw_text, prefer=answer_field)
        return SearchCard(
            id=record.id,
            ts=record.ts_ms,
            app=record.app,
            url_host=record.url_host,
            window_title=record.window_title,
            url=f"https://{record.url_host}" if record.url_host else None,
            thumb_url=f"file://{record.thumb_ref}" if record.thumb_ref else None,
            title_snippet=self._title_snippet(record, nugget),
            snippet=" ".join(record.raw_text.split())[:200],
            score=candidate.confidence,
            nugget=nugget,
            provenance=sorted(c.value for c in candidate.provenance),
            explain=candidate.explain() if explain else None,
        )

    @staticmethod
    def _title_snippet(record: MemoryRecord, nugget) -> str:
        if nugget is not None:
            return nugget.value

        if record.window_title and 5 < len(record.window_title) < 100:
            return record.window_title

        lines = [line.strip() for line in record.raw_text.splitlines() if len(line.strip()) > 5]
        if lines:
            first = lines[0]
            return first[:77] + "..." if len(first) > 80 else first

        return f"{record.app} - {record.timestamp.strftime('%Y-%m-%d %H:%M')}"

    async def recent(self, limit: int = 20) -> List[SearchCard]:
        """Most recent memories as cards, newest first."""
        records = await self.record_store.recent(limit)
        cards = []
        for record in records:
            candidate = Candidate(record=record, confidence=1.0)
            cards.append(self._build_card(candidate))
        return cards

    async def stats(self) -> Dict[str, Any]:
        """Store, cache and channel statistics."""
        try:
            store_stats = await self.record_store.stats()
        except Exception as e:
            logger.warning(f"Record store stats unavailable: {e}")
            store_stats = {"error": str(e)}

        return {
            **store_stats,
            "cache_stats": {
                "search_cache_size": len(self.cache) if self.cache is not None else 0,
                "embedding_cache_size": self.semantic_channel.cached_embeddings,
                **(self.cache.stats if self.cache is not None else {}),
            },
            "channel_health": {
                channel.value: dict(health) for channel, health in self.channel_health.items()
            },
            "semantic_available": self.semantic_channel.available,
            "average_latency_ms": round(self.metrics.average_latency_ms(), 3),
            "total_searches": self.metrics.counters.get("search.requests", 0),
        }
