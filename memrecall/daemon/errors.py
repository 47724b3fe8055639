"""Error taxonomy for the search engine.

Only ValidationError ever reaches a caller. Channel and cache failures are
recovered where they happen and exist so they can be logged and counted
with a stable name.
"""

from typing import Any, Dict, Optional


class MemRecallError(Exception):
    """Base class for memrecall errors."""


class ValidationError(MemRecallError):
    """Malformed search request, rejected before any retrieval."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": "validation_error",
                "field": self.field,
                "message": self.message,
            }
        }


class ChannelUnavailable(MemRecallError):
    """A retrieval backend (keyword index, vector store, embedder) failed."""

    def __init__(self, channel: str, reason: Optional[str] = None):
        super().__init__(f"{channel} channel unavailable: {reason or 'unknown'}")
        self.channel = channel
        self.reason = reason


class CacheError(MemRecallError):
    """Response cache read or write failed."""


class ExtractionFailure(MemRecallError):
    """No nugget matcher produced a fact."""
