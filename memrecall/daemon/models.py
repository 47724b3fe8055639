"""Data models for the memrecall search engine."""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from dateutil import parser as date_parser

from .errors import ValidationError


class ResponseMode(Enum):
    """Presentation mode chosen for a response."""
    EXACT = "exact"
    JOG = "jog"


class Channel(Enum):
    """Retrieval channels."""
    KEYWORD = "keyword"
    SEMANTIC = "semantic"


class NuggetType(Enum):
    """Kinds of facts pulled out of raw text."""
    PRICE = "price"
    SCORE = "score"
    TITLE = "title"
    GENERIC = "generic"


def to_epoch_ms(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(ts.timestamp() * 1000)


def from_epoch_ms(ms: float) -> datetime:
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


def matches_hint(app: Optional[str], url_host: Optional[str], hints) -> bool:
    """True if the app name or url host contains any hint (case-insensitive).

    Hosts never contain spaces, so "Stack Overflow" is compared against the
    host as "stackoverflow".
    """
    app_l = (app or "").lower()
    host_l = (url_host or "").lower()
    for hint in hints:
        h = hint.lower()
        if not h:
            continue
        if app_l and (h in app_l or app_l in h):
            return True
        if host_l and "".join(h.split()) in host_l:
            return True
    return False


def host_matches(url_host: Optional[str], host: str) -> bool:
    """Suffix match so that 'amazon.com' also covers 'www.amazon.com'."""
    if not url_host:
        return False
    url_host = url_host.lower()
    host = host.lower()
    return url_host == host or url_host.endswith("." + host)


@dataclass(frozen=True)
class MemoryRecord:
    """A captured memory. Produced by ingestion, read-only here."""
    id: str
    timestamp: datetime
    app: str
    url_host: Optional[str] = None
    window_title: Optional[str] = None
    raw_text: str = ""
    media_ref: Optional[str] = None
    thumb_ref: Optional[str] = None

    @property
    def ts_ms(self) -> int:
        return to_epoch_ms(self.timestamp)


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end)."""
    start: datetime
    end: datetime

    @property
    def width(self) -> float:
        return (self.end - self.start).total_seconds()

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts < self.end

    def to_dict(self) -> Dict[str, str]:
        return {"from": self.start.isoformat(), "to": self.end.isoformat()}


@dataclass
class StructuredQuery:
    """Parsed form of a free-text query."""
    raw_text: str
    time_window: Optional[TimeWindow] = None
    app_hints: List[str] = field(default_factory=list)
    topic_hints: List[str] = field(default_factory=list)
    answer_field: Optional[str] = None
    strict: bool = False
    phrases: List[str] = field(default_factory=list)

    @property
    def keyword_text(self) -> str:
        """Text sent to the keyword index: quoted phrases plus topic words."""
        parts = [f'"{p}"' for p in self.phrases]
        parts.extend(self.topic_hints)
        return " ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.raw_text,
            "time_window": self.time_window.to_dict() if self.time_window else None,
            "app_hints": list(self.app_hints),
            "topic_hints": list(self.topic_hints),
            "answer_field": self.answer_field,
            "strict": self.strict,
            "phrases": list(self.phrases),
        }


@dataclass(frozen=True)
class SearchFilters:
    """Filters pushed down to both retrieval channels."""
    time_window: Optional[TimeWindow] = None
    app_hints: Tuple[str, ...] = ()
    host: Optional[str] = None

    @classmethod
    def for_query(cls, query: StructuredQuery, host: Optional[str] = None) -> "SearchFilters":
        return cls(
            time_window=query.time_window,
            app_hints=tuple(query.app_hints),
            host=host,
        )

    @property
    def is_empty(self) -> bool:
        return self.time_window is None and not self.app_hints and not self.host

    def matches(self, ts: datetime, app: Optional[str], url_host: Optional[str]) -> bool:
        """Metadata predicate used by stores that filter in Python."""
        if self.time_window and not self.time_window.contains(ts):
            return False
        if self.app_hints and not matches_hint(app, url_host, self.app_hints):
            return False
        if self.host and not host_matches(url_host, self.host):
            return False
        return True


@dataclass
class ChannelHit:
    """One row returned by a retrieval channel, score normalized to [0,1]."""
    record_id: str
    score: float


@dataclass
class ChannelResult:
    """Outcome of one channel for one request."""
    channel: Channel
    hits: List[ChannelHit] = field(default_factory=list)
    latency_ms: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class Candidate:
    """A record paired with its fused relevance scores for one query."""
    record: MemoryRecord
    semantic_score: Optional[float] = None
    keyword_score: Optional[float] = None
    recency_score: float = 0.0
    app_bonus: float = 0.0
    source_bonus: float = 0.0
    confidence: float = 0.0
    provenance: Set[Channel] = field(default_factory=set)

    @property
    def record_id(self) -> str:
        return self.record.id

    def explain(self) -> Dict[str, Any]:
        return {
            "semantic": self.semantic_score,
            "keyword": self.keyword_score,
            "recency": round(self.recency_score, 4),
            "app_bonus": self.app_bonus,
            "source_bonus": self.source_bonus,
        }


@dataclass(frozen=True)
class Nugget:
    """A short typed fact pulled out of noisy text."""
    type: NuggetType
    value: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "value": self.value, "confidence": self.confidence}


@dataclass
class SearchCard:
    """Card returned to the overlay UI."""
    id: str
    ts: int
    app: str
    title_snippet: str
    snippet: str
    score: float
    url_host: Optional[str] = None
    window_title: Optional[str] = None
    url: Optional[str] = None
    thumb_url: Optional[str] = None
    nugget: Optional[Nugget] = None
    provenance: List[str] = field(default_factory=list)
    explain: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ts": self.ts,
            "app": self.app,
            "url_host": self.url_host,
            "window_title": self.window_title,
            "url": self.url,
            "thumb_url": self.thumb_url,
            "title_snippet": self.title_snippet,
            "snippet": self.snippet,
            "score": round(self.score, 6),
            "nugget": self.nugget.to_dict() if self.nugget else None,
            "provenance": list(self.provenance),
            "explain": self.explain,
        }


@dataclass
class SearchResponse:
    """Complete response for one search request."""
    mode: ResponseMode
    confidence: float
    cards: List[SearchCard]
    query: Optional[StructuredQuery] = None
    timings: Dict[str, float] = field(default_factory=dict)
    cached: bool = False
    degraded: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "confidence": round(self.confidence, 6),
            "cards": [c.to_dict() for c in self.cards],
            "query_parsed": self.query.to_dict() if self.query else None,
            "timing": {name: round(ms, 3) for name, ms in self.timings.items()},
            "cached": self.cached,
            "degraded": list(self.degraded),
        }


def parse_timestamp(value: Any, field_name: str) -> datetime:
    """Accept ISO-8601 strings or epoch milliseconds."""
    try:
        if isinstance(value, datetime):
            ts = value
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            ts = from_epoch_ms(value)
        else:
            text = str(value).strip()
            if text.isdigit():
                ts = from_epoch_ms(int(text))
            else:
                ts = date_parser.isoparse(text)
    except (ValueError, OverflowError, OSError):
        raise ValidationError(field_name, f"invalid timestamp: {value!r}")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass
class SearchRequest:
    """Validated inbound search request."""
    q: str
    time_from: Optional[datetime] = None
    time_to: Optional[datetime] = None
    app: Optional[str] = None
    host: Optional[str] = None
    k: int = 6

    @classmethod
    def from_query(cls, params: Mapping[str, Any], default_k: int = 6, max_k: int = 20) -> "SearchRequest":
        """
        Build a request from raw parameters, rejecting malformed input.

        Raises:
            ValidationError: empty q, k out of range, bad or inverted timestamps
        """
        q = params.get("q")
        if q is None or not str(q).strip():
            raise ValidationError("q", "query parameter q is required and must be non-empty")

        raw_k = params.get("k")
        if raw_k is None or raw_k == "":
            k = default_k
        else:
            try:
                k = int(raw_k)
            except (TypeError, ValueError):
                raise ValidationError("k", f"k must be an integer, got {raw_k!r}")
            if isinstance(raw_k, float) and raw_k != k:
                raise ValidationError("k", f"k must be an integer, got {raw_k!r}")
        if not 1 <= k <= max_k:
            raise ValidationError("k", f"k must be between 1 and {max_k}")

        time_from = parse_timestamp(params["from"], "from") if params.get("from") else None
        time_to = parse_timestamp(params["to"], "to") if params.get("to") else None
        if time_from and time_to and time_from >= time_to:
            raise ValidationError("from", "from must be earlier than to")

        return cls(
            q=str(q),
            time_from=time_from,
            time_to=time_to,
            app=(params.get("app") or None),
            host=(params.get("host") or None),
            k=k,
        )

    @property
    def normalized_text(self) -> str:
        return " ".join(self.q.lower().split())

    @property
    def cache_key(self) -> str:
        """Normalized query text plus the filter signature."""
        key_parts = [
            self.normalized_text,
            self.time_from.isoformat() if self.time_from else "",
            self.time_to.isoformat() if self.time_to else "",
            (self.app or "").lower(),
            (self.host or "").lower(),
            str(self.k),
        ]
        key_str = "|".join(key_parts)
        return hashlib.md5(key_str.encode()).hexdigest()
