"""Retrieval channels and the collaborator interfaces they consume."""

from .base import Embedder, KeywordIndex, RecordStore, VectorStore
from .keyword import KeywordChannel
from .semantic import SemanticChannel

__all__ = [
    "Embedder",
    "KeywordIndex",
    "RecordStore",
    "VectorStore",
    "KeywordChannel",
    "SemanticChannel",
]
