"""Query understanding: free text -> StructuredQuery.

The parser is pure. Given the same text and the same ``now`` it always
returns the same structure; nothing here touches I/O or global state.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from loguru import logger

from .models import StructuredQuery, TimeWindow


DEFAULT_APP_ALIASES: Dict[str, str] = {
    "amazon": "Amazon",
    "youtube": "YouTube",
    "yt": "YouTube",
    "safari": "Safari",
    "chrome": "Chrome",
    "firefox": "Firefox",
    "apex legends": "Apex",
    "apex": "Apex",
    "steam": "Steam",
    "vs code": "VS Code",
    "vscode": "VS Code",
    "terminal": "Terminal",
    "iterm": "Terminal",
    "slack": "Slack",
    "discord": "Discord",
    "cursor": "Cursor",
    "figma": "Figma",
    "photoshop": "Photoshop",
    "illustrator": "Illustrator",
    "sketch": "Sketch",
    "github": "GitHub",
    "stack overflow": "Stack Overflow",
    "stackoverflow": "Stack Overflow",
    "netflix": "Netflix",
    "twitch": "Twitch",
    "spotify": "Spotify",
}

STOPWORDS = frozenset("""
a an the and or but in on at to for of from with about by as into over
what when where which who whom whose why how that this these those there
was were is are be been being am have has had do does did done
will would could should may might can must shall
i me my mine we our you your he she it its they them their
ago last past previous yesterday today tonight
saw see seen look looked looking watch watched find found show showed
some any much many more most just only also very again
exact exactly verbatim
""".split())

# keyword -> answer field, checked in order, first hit wins
ANSWER_FIELDS: List[Tuple[str, str]] = [
    ("price", "price"),
    ("cost", "price"),
    ("how much", "price"),
    ("$", "price"),
    ("score", "score"),
    ("kills", "score"),
    ("points", "score"),
    ("xp", "score"),
    ("ranked", "score"),
    ("title", "title"),
    ("name", "title"),
    ("called", "title"),
    ("video", "title"),
]

_NUMBER_WORDS = {
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11,
    "twelve": 12, "a couple of": 2, "a couple": 2, "couple of": 2, "a few": 3,
}
_NUM = r"(?P<n>\d+|a couple of|a couple|couple of|a few|an|a|one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve)"

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
_MONTH = (r"(?P<month>jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?"
          r"|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)")
_WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

_QUOTED = re.compile(r'"([^"]+)"|“([^”]+)”')
_STRICT_WORDS = re.compile(r"\b(exact|exactly|verbatim)\b", re.IGNORECASE)
_TOKEN = re.compile(r"[\w$€£][\w'.\-]*")


def _number(text: str) -> int:
    text = text.lower()
    if text.isdigit():
        return int(text)
    return _NUMBER_WORDS[text]


def _start_of_day(ts: datetime) -> datetime:
    return ts.replace(hour=0, minute=0, second=0, microsecond=0)


def _unit_delta(unit: str, n: int):
    if unit == "minute":
        return timedelta(minutes=n)
    if unit == "hour":
        return timedelta(hours=n)
    if unit == "day":
        return timedelta(days=n)
    if unit == "week":
        return timedelta(weeks=n)
    if unit == "month":
        return relativedelta(months=n)
    return relativedelta(years=n)


def _ago(m: re.Match, now: datetime) -> TimeWindow:
    n = _number(m.group("n"))
    unit = m.group("unit").lower()
    anchor = now - _unit_delta(unit, n)
    if unit in ("minute", "hour"):
        return TimeWindow(anchor, anchor + _unit_delta(unit, 1))
    start = _start_of_day(anchor)
    return TimeWindow(start, start + _unit_delta(unit, 1))


def _last_n(m: re.Match, now: datetime) -> TimeWindow:
    n = _number(m.group("n"))
    unit = m.group("unit").lower()
    start = now - _unit_delta(unit, n)
    if unit not in ("minute", "hour"):
        start = _start_of_day(start)
    return TimeWindow(start, now)


def _today(m: re.Match, now: datetime) -> TimeWindow:
    start = _start_of_day(now)
    return TimeWindow(start, start + timedelta(days=1))


def _yesterday(m: re.Match, now: datetime) -> TimeWindow:
    end = _start_of_day(now)
    return TimeWindow(end - timedelta(days=1), end)


def _calendar(m: re.Match, now: datetime) -> TimeWindow:
    rel = m.group("rel").lower()
    unit = m.group("unit").lower()
    today = _start_of_day(now)
    if unit == "week":
        start = today - timedelta(days=today.weekday())
    elif unit == "month":
        start = today.replace(day=1)
    else:
        start = today.replace(month=1, day=1)
    step = _unit_delta(unit, 1)
    if rel in ("last", "previous"):
        start = start - step
    return TimeWindow(start, start + step)


def _weekday(m: re.Match, now: datetime) -> TimeWindow:
    target = _WEEKDAYS.index(m.group("wd").lower())
    today = _start_of_day(now)
    back = (today.weekday() - target) % 7
    if back == 0 and (m.group("rel") or "").lower() == "last":
        back = 7
    start = today - timedelta(days=back)
    return TimeWindow(start, start + timedelta(days=1))


def _month_index(name: str) -> int:
    return _MONTHS[name.lower()[:3]]


def _dated(year: Optional[int], month: int, day: int, now: datetime) -> Optional[datetime]:
    try:
        if year is not None:
            return datetime(year, month, day, tzinfo=now.tzinfo)
        candidate = datetime(now.year, month, day, tzinfo=now.tzinfo)
        if candidate > now:
            candidate = datetime(now.year - 1, month, day, tzinfo=now.tzinfo)
        return candidate
    except ValueError:
        return None


def _iso_date(m: re.Match, now: datetime) -> Optional[TimeWindow]:
    start = _dated(int(m.group("year")), int(m.group("mon")), int(m.group("day")), now)
    if start is None:
        return None
    return TimeWindow(start, start + timedelta(days=1))


def _month_day(m: re.Match, now: datetime) -> Optional[TimeWindow]:
    year = int(m.group("year")) if m.group("year") else None
    start = _dated(year, _month_index(m.group("month")), int(m.group("day")), now)
    if start is None:
        return None
    return TimeWindow(start, start + timedelta(days=1))


def _month_only(m: re.Match, now: datetime) -> Optional[TimeWindow]:
    month = _month_index(m.group("month"))
    if m.group("year"):
        start = datetime(int(m.group("year")), month, 1, tzinfo=now.tzinfo)
    else:
        start = datetime(now.year, month, 1, tzinfo=now.tzinfo)
        if start > now:
            start = start.replace(year=now.year - 1)
    return TimeWindow(start, start + relativedelta(months=1))


Resolver = Callable[[re.Match, datetime], Optional[TimeWindow]]

TIME_PATTERNS: List[Tuple[re.Pattern, Resolver]] = [
    (re.compile(r"\b" + _NUM + r"\s+(?P<unit>minute|hour|day|week|month|year)s?\s+ago\b", re.I), _ago),
    (re.compile(r"\b(?:last|past|previous)\s+" + _NUM + r"\s+(?P<unit>minute|hour|day|week|month|year)s?\b", re.I), _last_n),
    (re.compile(r"\btoday\b", re.I), _today),
    (re.compile(r"\byesterday\b", re.I), _yesterday),
    (re.compile(r"\b(?P<rel>last|this|previous)\s+(?P<unit>week|month|year)\b", re.I), _calendar),
    (re.compile(r"\b(?:(?P<rel>last|this|on)\s+)?(?P<wd>" + "|".join(_WEEKDAYS) + r")\b", re.I), _weekday),
    (re.compile(r"\b(?P<year>\d{4})-(?P<mon>\d{2})-(?P<day>\d{2})\b"), _iso_date),
    (re.compile(r"\b" + _MONTH + r"\.?\s+(?P<day>\d{1,2})(?:st|nd|rd|th)?(?:,?\s+(?P<year>\d{4}))?\b", re.I), _month_day),
    (re.compile(r"\b(?P<day>\d{1,2})(?:st|nd|rd|th)?\s+(?:of\s+)?" + _MONTH + r"(?:,?\s+(?P<year>\d{4}))?\b", re.I), _month_day),
    (re.compile(r"\bin\s+" + _MONTH + r"(?:\s+(?P<year>\d{4}))?\b", re.I), _month_only),
]


@dataclass
class _TimeMatch:
    start: int
    end: int
    window: TimeWindow


class QueryParser:
    """Turns raw query text into a StructuredQuery."""

    def __init__(self, app_aliases: Optional[Dict[str, str]] = None):
        aliases = dict(DEFAULT_APP_ALIASES)
        if app_aliases:
            aliases.update({k.lower(): v for k, v in app_aliases.items()})
        # longest alias first so "apex legends" beats "apex"
        self._alias_patterns = [
            (re.compile(r"(?<!\w)" + re.escape(alias) + r"(?!\w)", re.IGNORECASE), canonical)
            for alias, canonical in sorted(aliases.items(), key=lambda kv: -len(kv[0]))
        ]

    def parse(self, text: str, now: Optional[datetime] = None) -> StructuredQuery:
        if now is None:
            now = datetime.now(timezone.utc)

        consumed: List[Tuple[int, int]] = []

        time_window, time_spans = self._extract_time(text, now)
        consumed.extend(time_spans)

        app_hints, app_spans = self._extract_apps(text, consumed)
        consumed.extend(app_spans)

        phrases = [a or b for a, b in _QUOTED.findall(text)]
        strict = bool(phrases) or bool(_STRICT_WORDS.search(text))

        query = StructuredQuery(
            raw_text=text,
            time_window=time_window,
            app_hints=app_hints,
            topic_hints=self._extract_topics(text, consumed),
            answer_field=self._extract_answer_field(text),
            strict=strict,
            phrases=phrases,
        )

        logger.debug(
            f"Query parsed: {text!r} -> window={query.time_window.to_dict() if query.time_window else None} "
            f"apps={query.app_hints} topics={query.topic_hints[:5]} field={query.answer_field} strict={strict}"
        )
        return query

    def _extract_time(self, text: str, now: datetime) -> Tuple[Optional[TimeWindow], List[Tuple[int, int]]]:
        found: List[_TimeMatch] = []
        for pattern, resolver in TIME_PATTERNS:
            for m in pattern.finditer(text):
                try:
                    window = resolver(m, now)
                except (ValueError, OverflowError):
                    logger.debug(f"Ignoring out-of-range time expression: {m.group(0)!r}")
                    continue
                if window is not None:
                    found.append(_TimeMatch(m.start(), m.end(), window))

        # Keep the longest non-overlapping expressions, scanning left to right
        found.sort(key=lambda t: (t.start, -(t.end - t.start)))
        accepted: List[_TimeMatch] = []
        for match in found:
            if accepted and match.start < accepted[-1].end:
                continue
            accepted.append(match)

        if not accepted:
            return None, []

        # Narrowest window wins; on equal width the last one in the text wins
        best = min(accepted, key=lambda t: (t.window.width, -t.start))
        return best.window, [(t.start, t.end) for t in accepted]

    def _extract_apps(self, text: str, consumed: List[Tuple[int, int]]) -> Tuple[List[str], List[Tuple[int, int]]]:
        hits: List[Tuple[int, str]] = []
        spans: List[Tuple[int, int]] = []
        for pattern, canonical in self._alias_patterns:
            for m in pattern.finditer(text):
                if _overlaps(m.start(), m.end(), consumed + spans):
                    continue
                hits.append((m.start(), canonical))
                spans.append((m.start(), m.end()))

        hints: List[str] = []
        for _, canonical in sorted(hits):
            if canonical not in hints:
                hints.append(canonical)
        return hints, spans

    def _extract_topics(self, text: str, consumed: List[Tuple[int, int]]) -> List[str]:
        chars = list(text)
        for start, end in consumed:
            for i in range(start, end):
                chars[i] = " "
        remaining = "".join(chars).lower()

        topics: List[str] = []
        for token in _TOKEN.findall(remaining):
            token = token.strip(".'-")
            if len(token) < 2 or token in STOPWORDS or token.isdigit():
                continue
            if token not in topics:
                topics.append(token)
        return topics[:10]

    def _extract_answer_field(self, text: str) -> Optional[str]:
        lowered = text.lower()
        for keyword, answer_field in ANSWER_FIELDS:
            if not keyword[0].isalnum():
                if keyword in lowered:
                    return answer_field
            elif re.search(r"\b" + re.escape(keyword) + r"\b", lowered):
                return answer_field
        return None


def _overlaps(start: int, end: int, spans: List[Tuple[int, int]]) -> bool:
    return any(start < s_end and s_start < end for s_start, s_end in spans)
