"""In-memory dataset cache with TTL reads and stale-on-error fallback."""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cached rows for one dataset."""
    key: str
    payload: List
    fetched_at: float


class CacheStore:
    """
    Process-lifetime store keyed by dataset name.

    Entries never expire on their own: age is compared against the TTL
    only when ``read`` is called, and a miss leaves the entry in place so
    ``on_fetch_failure`` can still serve it.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        """
        Initialize an empty cache.

        Args:
            clock: Returns the current time in seconds (injectable for tests)
        """
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def read(self, key: str, ttl_seconds: float) -> Optional[List]:
        """
        Return cached rows if they are younger than the TTL.

        Args:
            key: Dataset name
            ttl_seconds: Maximum age of a fresh entry

        Returns:
            Cached payload, or None on a miss (absent or expired)
        """
        entry = self._entries.get(key)
        if entry is None:
            return None

        age = self._clock() - entry.fetched_at
        if age < ttl_seconds:
            logger.info(f"Using cached data for {key}")
            return entry.payload

        logger.info(f"Cached data for {key} expired ({age:.0f}s old)")
        return None

    def write(self, key: str, payload: List) -> None:
        """Store rows for a dataset, replacing any previous entry."""
        self._entries[key] = CacheEntry(key=key, payload=payload, fetched_at=self._clock())

    def on_fetch_failure(self, key: str) -> List:
        """
        Answer a failed refresh.

        Args:
            key: Dataset name

        Returns:
            The previously cached payload regardless of age, or an empty
            list if the dataset was never fetched
        """
        entry = self._entries.get(key)
        if entry is None:
            logger.warning(f"No cached data available for {key}")
            return []

        logger.warning(f"Using stale cache for {key}")
        return entry.payload

    def has(self, key: str) -> bool:
        return key in self._entries

    def lock(self, key: str) -> threading.Lock:
        """
        Return the mutex guarding the check -> fetch -> write sequence for a key.

        Args:
            key: Dataset name

        Returns:
            A lock shared by every caller using the same key
        """
        with self._locks_guard:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]

    def clear(self) -> None:
        """Drop every cached entry."""
        self._entries.clear()
        logger.info("Cache cleared")
