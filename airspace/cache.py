"""
In-memory cache for the current display list.

Read-only API calls between polls are served from here. The list is
replaced as a whole after each successful poll, so readers never see a
partially updated list and need no coordination with the poll cycle.
"""

import logging
import threading
import time
from typing import Callable, List, Optional

from airspace.tracking.records import DisplayEntry

logger = logging.getLogger(__name__)


class DisplayCache:
    """
    Thread-safe TTL cache holding one display list.

    get() honours the TTL; peek() returns the last list regardless of age.
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock

        self._entries: Optional[List[DisplayEntry]] = None
        self._lock = threading.RLock()
        self._cached_at: float = 0

        # Statistics
        self._hits = 0
        self._misses = 0

    def set(self, entries: List[DisplayEntry]) -> None:
        """Replace the cached list atomically."""
        with self._lock:
            self._entries = list(entries)
            self._cached_at = self._clock()
        logger.debug(f'Display cache updated with {len(entries)} entries')

    def get(self) -> Optional[List[DisplayEntry]]:
        """Cached list, or None when empty or older than the TTL."""
        with self._lock:
            if self._entries is not None and self.age < self.ttl_seconds:
                self._hits += 1
                return self._entries
            self._misses += 1
            return None

    def peek(self) -> Optional[List[DisplayEntry]]:
        """Last cached list without TTL check."""
        with self._lock:
            return self._entries

    @property
    def age(self) -> float:
        if self._entries is None:
            return float('inf')
        return self._clock() - self._cached_at

    @property
    def is_fresh(self) -> bool:
        return self._entries is not None and self.age < self.ttl_seconds

    @property
    def stats(self) -> dict:
        """Get cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            return {
                'entries': len(self._entries) if self._entries is not None else 0,
                'cached': self._entries is not None,
                'fresh': self.is_fresh,
                'age_seconds': round(self.age, 1) if self._entries is not None else None,
                'ttl_seconds': self.ttl_seconds,
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': self._hits / total if total > 0 else 0,
            }
