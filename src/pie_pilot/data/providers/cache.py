"""
Caching layer for API responses and the instrument catalogue.

Two stores live here:
- ResponseCache implementations hold HTTP responses for a few minutes so
  repeated calls inside one refresh do not hit the broker again
- FileCache keeps the raw instrument catalogue on disk for a day
"""

import json
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Hashable, Optional


DEFAULT_RESPONSE_TTL_SECONDS = 300
DEFAULT_CATALOGUE_TTL_HOURS = 24


class ResponseCache(ABC):
    """Key/value store for successful API responses with a fixed TTL."""

    @property
    @abstractmethod
    def ttl_seconds(self) -> float:
        """Lifetime of an entry in seconds."""
        pass

    @abstractmethod
    def get(self, key: Hashable) -> Optional[Any]:
        """
        Return the cached value for key.

        Returns:
            The value, or None if absent or older than the TTL
        """
        pass

    @abstractmethod
    def set(self, key: Hashable, value: Any) -> None:
        """Store value under key, replacing any previous entry."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Drop all entries."""
        pass


class MemoryResponseCache(ResponseCache):
    """
    In-process response cache safe for use from worker threads.

    Concurrent writers of the same key resolve last-writer-wins.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_RESPONSE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            ttl_seconds: Entry lifetime (default 5 minutes)
            clock: Time source in seconds, replaceable in tests
        """
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self._ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class FileCache:
    """
    File-based cache for the instrument catalogue.

    The catalogue changes rarely, so it is refreshed at a coarser cadence
    than API responses.
    """

    def __init__(
        self,
        cache_dir: str | Path = "data/cache",
        max_age_hours: float = DEFAULT_CATALOGUE_TTL_HOURS,
    ):
        """
        Initialize the file cache.

        Args:
            cache_dir: Directory to store cached data
            max_age_hours: Age after which a cached catalogue is ignored
        """
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.max_age_hours = max_age_hours

    def _catalogue_file(self, scope: str) -> Path:
        safe_scope = "".join(c for c in scope if c.isalnum() or c in "-_") or "default"
        return self.cache_dir / f"instruments_{safe_scope}.json"

    def get_catalogue(self, scope: str = "default") -> Optional[list[dict]]:
        """
        Get the cached catalogue if it is recent enough.

        Args:
            scope: Cache partition (usually the user id)

        Returns:
            List of raw instrument records or None if not cached
        """
        cache_file = self._catalogue_file(scope)
        if not cache_file.exists():
            return None

        mtime = datetime.fromtimestamp(cache_file.stat().st_mtime)
        if (datetime.now() - mtime).total_seconds() > self.max_age_hours * 3600:
            return None

        try:
            with open(cache_file, "r") as f:
                data = json.load(f)
        except (OSError, ValueError):
            # Corrupted cache, will re-fetch
            return None

        return data if isinstance(data, list) else None

    def save_catalogue(self, records: list[dict], scope: str = "default") -> None:
        """
        Save the raw catalogue to disk.

        Args:
            records: Raw instrument records from the broker
            scope: Cache partition (usually the user id)
        """
        cache_file = self._catalogue_file(scope)
        with open(cache_file, "w") as f:
            json.dump(records, f, default=str)

    def clear(self) -> None:
        """Clear all cached catalogues."""
        for cache_file in self.cache_dir.glob("instruments_*.json"):
            cache_file.unlink()
