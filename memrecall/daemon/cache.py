"""Bounded LRU+TTL cache for search responses."""

import copy
import threading
from typing import Dict, Optional

from cachetools import TTLCache
from loguru import logger

from .errors import CacheError
from .models import SearchResponse


class ResponseCache:
    """
    Response cache shared by concurrent requests.

    Reads take the lock; writes only try it. A write that cannot get the lock
    immediately, or that fails, is dropped rather than delaying the request.
    """

    def __init__(self, max_size: int = 1000, ttl_seconds: float = 300, timer=None):
        """
        Initialize response cache.

        Args:
            max_size: Maximum cache entries (least recently used evicted first)
            ttl_seconds: Time to live for cache entries
            timer: Clock for TTL bookkeeping, injectable for tests
        """
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        if timer is None:
            self._entries = TTLCache(maxsize=max_size, ttl=ttl_seconds)
        else:
            self._entries = TTLCache(maxsize=max_size, ttl=ttl_seconds, timer=timer)
        self._lock = threading.Lock()
        self.stats: Dict[str, int] = {"hits": 0, "misses": 0, "writes": 0, "dropped": 0, "errors": 0}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[SearchResponse]:
        """Return a copy of a live entry, or None. Raises CacheError on failure."""
        try:
            with self._lock:
                response = self._entries.get(key)
        except Exception as e:
            self.stats["errors"] += 1
            raise CacheError(f"cache read failed: {e}") from e

        if response is None:
            self.stats["misses"] += 1
            return None
        self.stats["hits"] += 1
        return copy.deepcopy(response)

    def put(self, key: str, response: SearchResponse) -> bool:
        """Store a response. Returns False when the write was dropped."""
        if not self._lock.acquire(blocking=False):
            self.stats["dropped"] += 1
            logger.debug("Cache busy, dropping write")
            return False
        try:
            self._entries[key] = copy.deepcopy(response)
            self.stats["writes"] += 1
            return True
        except Exception as e:
            self.stats["errors"] += 1
            self.stats["dropped"] += 1
            logger.warning(f"Cache write failed, dropping: {e}")
            return False
        finally:
            self._lock.release()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
