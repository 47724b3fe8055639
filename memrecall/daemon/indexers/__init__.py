"""Storage backends: SQLite FTS5 record store, numpy vector index, embedders."""

from .embedders import HttpEmbedder, SentenceTransformerEmbedder
from .sqlite_store import SQLiteMemoryStore
from .vector import NumpyVectorStore

__all__ = [
    "HttpEmbedder",
    "SentenceTransformerEmbedder",
    "SQLiteMemoryStore",
    "NumpyVectorStore",
]
