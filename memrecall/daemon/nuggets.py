"""Nugget extraction from noisy OCR text.

An extractor is an ordered list of independent matchers, each a pure
``text -> Optional[Nugget]``. The first matcher that returns a nugget wins.
Confidences are fixed tunable constants, not estimates.
"""

import re
from typing import Iterable, List, Optional

from .config import NuggetConfig
from .errors import ExtractionFailure
from .models import Nugget, NuggetType


_UI_ELEMENTS = re.compile(
    r"^(ok|cancel|close|back|next|submit|menu|settings|options|preferences|search|filter|sort|view"
    r"|subscribe|like|share|comment|home|trending|subscriptions|profile|loading|please wait"
    r"|add to cart|buy now)$",
    re.IGNORECASE,
)
_TIMESTAMP = re.compile(r"^\d{1,2}:\d{2}(:\d{2})?$")
_PUNCT_ONLY = re.compile(r"^[^\w\s]+$")


def is_ui_element(text: str) -> bool:
    text = text.strip()
    return bool(_UI_ELEMENTS.match(text) or _TIMESTAMP.match(text) or _PUNCT_ONLY.match(text))


class NuggetMatcher:
    """Base matcher. ``field`` names the answer field the matcher serves."""

    name = "base"
    field: Optional[str] = None

    def match(self, text: str) -> Optional[Nugget]:
        raise NotImplementedError


class PriceMatcher(NuggetMatcher):
    """Currency amounts; the numerically largest one wins."""

    name = "price"
    field = "price"

    _AMOUNT = r"(?P<amount>\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)"
    PREFIX = re.compile(r"(?P<symbol>[$£€]|(?<![A-Za-z])(?:USD|GBP|EUR)\b)\s?" + _AMOUNT)
    SUFFIX = re.compile(_AMOUNT + r"\s?(?P<symbol>[$£€]|\b(?:USD|GBP|EUR)\b)")

    def __init__(self, confidence: float = 0.85):
        self.confidence = confidence

    def match(self, text: str) -> Optional[Nugget]:
        found = []
        taken = []
        for m in self.PREFIX.finditer(text):
            found.append((m.start(), m.group(0), m.group("amount")))
            taken.append((m.start(), m.end()))
        for m in self.SUFFIX.finditer(text):
            if any(m.start() < end and start < m.end() for start, end in taken):
                continue
            found.append((m.start(), m.group(0), m.group("amount")))

        if not found:
            return None

        found.sort(key=lambda f: f[0])
        best = max(found, key=lambda f: float(f[2].replace(",", "")))
        return Nugget(NuggetType.PRICE, " ".join(best[1].split()), self.confidence)


class ScoreMatcher(NuggetMatcher):
    """``LABEL: number`` against an allow-list of stat labels, first in scan order."""

    name = "score"
    field = "score"

    def __init__(self, labels: Iterable[str] = ("SCORE", "KILLS", "POINTS", "XP", "RANKED"),
                 confidence: float = 0.80):
        self.confidence = confidence
        alternatives = "|".join(re.escape(label) for label in labels)
        self.pattern = re.compile(
            r"(?<!\w)(?:" + alternatives + r")\s*[:=\-]?\s*(?P<value>\d{1,3}(?:,\d{3})+|\d+)(?!\d)",
            re.IGNORECASE,
        )

    def match(self, text: str) -> Optional[Nugget]:
        for m in self.pattern.finditer(text):
            value = m.group("value")
            if 0 <= int(value.replace(",", "")) <= 999999:
                return Nugget(NuggetType.SCORE, value, self.confidence)
        return None


class TitleMatcher(NuggetMatcher):
    """Media titles delimited the way video and streaming sites render them."""

    name = "title"
    field = "title"

    PLATFORMS = r"(?:YouTube|Netflix|Twitch|Vimeo|Spotify|Prime Video)"
    PATTERNS = [
        re.compile(r"^\s*(?P<title>.+?)\s*[-|–—]\s*" + PLATFORMS + r"\b", re.IGNORECASE | re.MULTILINE),
        re.compile(r"(?P<title>[^\n•]+?)\s*•\s*[\d.,]+\s*[KMB]?\s*views", re.IGNORECASE),
        re.compile(r'Watch\s*"(?P<title>[^"]+)"', re.IGNORECASE),
        re.compile(r"^\s*(?P<title>[^\n]+?)\s+-\s+[\d.,]+\s*[KMB]?\s*views", re.IGNORECASE | re.MULTILINE),
    ]

    def __init__(self, confidence: float = 0.90):
        self.confidence = confidence

    @staticmethod
    def is_valid_title(title: str) -> bool:
        return 10 <= len(title) <= 100 and not is_ui_element(title)

    def match(self, text: str) -> Optional[Nugget]:
        for pattern in self.PATTERNS:
            for m in pattern.finditer(text):
                title = m.group("title").strip()
                if self.is_valid_title(title):
                    return Nugget(NuggetType.TITLE, title, self.confidence)
        return None


class GenericMatcher(NuggetMatcher):
    """Leading meaningful line of the text."""

    name = "generic"
    field = None

    def __init__(self, confidence: float = 0.50, max_chars: int = 80):
        self.confidence = confidence
        self.max_chars = max_chars

    def match(self, text: str) -> Optional[Nugget]:
        for line in text.splitlines():
            line = " ".join(line.split())
            if len(line) <= 5 or is_ui_element(line):
                continue
            if len(line) > self.max_chars:
                line = line[:self.max_chars - 3].rstrip() + "..."
            return Nugget(NuggetType.GENERIC, line, self.confidence)
        return None


class NuggetExtractor:
    """Runs registered matchers in order; the first hit wins."""

    def __init__(self, matchers: Optional[List[NuggetMatcher]] = None):
        self.matchers: List[NuggetMatcher] = list(matchers) if matchers is not None else []

    @classmethod
    def from_config(cls, config: Optional[NuggetConfig] = None) -> "NuggetExtractor":
        config = config or NuggetConfig()
        return cls([
            PriceMatcher(config.price_confidence),
            ScoreMatcher(config.score_labels, config.score_confidence),
            TitleMatcher(config.title_confidence),
            GenericMatcher(config.generic_confidence, config.generic_max_chars),
        ])

    def register(self, matcher: NuggetMatcher, position: Optional[int] = None) -> None:
        if position is None:
            self.matchers.append(matcher)
        else:
            self.matchers.insert(position, matcher)

    def ordered(self, prefer: Optional[str] = None) -> List[NuggetMatcher]:
        """Registered order, with matchers serving ``prefer`` moved to the front."""
        if not prefer:
            return list(self.matchers)
        preferred = [m for m in self.matchers if m.field == prefer]
        return preferred + [m for m in self.matchers if m.field != prefer]

    def extract(self, text: str, prefer: Optional[str] = None) -> Optional[Nugget]:
        if not text:
            return None
        for matcher in self.ordered(prefer):
            nugget = matcher.match(text)
            if nugget is not None:
                return nugget
        return None

    def require(self, text: str, prefer: Optional[str] = None) -> Nugget:
        nugget = self.extract(text, prefer)
        if nugget is None:
            raise ExtractionFailure("no nugget matcher fired")
        return nugget
