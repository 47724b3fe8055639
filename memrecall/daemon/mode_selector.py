"""Exact-Hit vs Memory-Jog selection."""

from dataclasses import dataclass
from typing import List, Optional

from .config import ModeConfig
from .models import Candidate, ResponseMode


@dataclass
class ModeDecision:
    mode: ResponseMode
    confidence: float
    candidates: List[Candidate]


class ModeSelector:
    """Thresholds the top confidence and trims the list. Holds no state."""

    def __init__(self, config: Optional[ModeConfig] = None):
        self.config = config or ModeConfig()

    def select(self, candidates: List[Candidate]) -> ModeDecision:
        if not candidates:
            return ModeDecision(mode=ResponseMode.JOG, confidence=0.0, candidates=[])

        top = candidates[0].confidence
        if top >= self.config.high_threshold:
            return ModeDecision(
                mode=ResponseMode.EXACT,
                confidence=top,
                candidates=candidates[:self.config.exact_max_cards],
            )
        # never padded: fewer than jog_max_cards candidates are returned as-is
        return ModeDecision(
            mode=ResponseMode.JOG,
            confidence=top,
            candidates=candidates[:self.config.jog_max_cards],
        )
