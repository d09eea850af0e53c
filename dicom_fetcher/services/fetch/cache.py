"""Process-wide cache for fetched preview images and resolved study metadata."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

from cachetools import TTLCache

from dicom_fetcher.services.fetch.models import CacheEntry, Series
from dicom_fetcher.utils.logger import logger


def _entry_size(entry: CacheEntry) -> int:
    return len(entry.payload)


class ResultCache:
    """In-memory cache with TTL expiry and a least-recently-used byte cap.

    Two ``TTLCache`` tiers share the same TTL:

    * images, keyed by instance ID and sized by payload bytes;
    * study metadata, keyed by study ID and bounded by entry count.

    Every access goes through one lock. Periodic expiry runs in a worker thread
    while requests use the cache from the event loop.
    """

    def __init__(
        self,
        ttl_seconds: float = 24 * 3600,
        max_size_bytes: int = 512 * 1024**2,
        study_max_entries: int = 256,
        timer: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            ttl_seconds: Time-to-live for every entry
            max_size_bytes: Upper bound on the summed payload size of cached images
            study_max_entries: Maximum number of studies with cached series metadata
            timer: Clock used for expiry (injectable for tests)
        """
        self._ttl_seconds = ttl_seconds
        self._max_size_bytes = max_size_bytes
        self._lock = threading.RLock()
        self._images: TTLCache[str, CacheEntry] = TTLCache(
            maxsize=max_size_bytes, ttl=ttl_seconds, timer=timer, getsizeof=_entry_size
        )
        self._studies: TTLCache[str, list[Series]] = TTLCache(
            maxsize=study_max_entries, ttl=ttl_seconds, timer=timer
        )
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> CacheEntry | None:
        """Look up a cached image, refreshing its LRU position.

        Args:
            key: Instance ID

        Returns:
            CacheEntry if present and not expired, None otherwise
        """
        with self._lock:
            entry: CacheEntry | None = self._images.get(key)
            if entry is None:
                self.misses += 1
            else:
                self.hits += 1
            return entry

    def peek(self, key: str) -> CacheEntry | None:
        """Look up a cached image without touching the hit/miss counters."""
        with self._lock:
            entry: CacheEntry | None = self._images.get(key)
            return entry

    def put(self, key: str, payload: bytes, content_type: str) -> CacheEntry | None:
        """Store an image.

        Args:
            key: Instance ID
            payload: Encoded image bytes
            content_type: MIME type of the payload

        Returns:
            The stored entry, or None if the payload alone exceeds the byte cap
        """
        entry = CacheEntry(
            key=key, payload=payload, content_type=content_type, inserted_at=time.time()
        )
        if _entry_size(entry) > self._max_size_bytes:
            logger.warning(
                f"Not caching instance {key}: {len(payload)} bytes exceeds cache capacity"
            )
            return None
        with self._lock:
            self._images[key] = entry
        return entry

    def get_study(self, study_id: str) -> list[Series] | None:
        """Look up resolved series metadata for a study."""
        with self._lock:
            result: list[Series] | None = self._studies.get(study_id)
            return result

    def put_study(self, study_id: str, series: list[Series]) -> None:
        """Store resolved series metadata for a study."""
        with self._lock:
            self._studies[study_id] = list(series)
        logger.debug(f"Cached metadata for study {study_id} ({len(series)} series)")

    def evict_expired(self) -> int:
        """Remove every expired entry from both tiers.

        Returns:
            Number of entries removed
        """
        with self._lock:
            removed = len(self._images.expire()) + len(self._studies.expire())
        if removed > 0:
            logger.info(f"Evicted {removed} expired cache entries")
        return removed

    def clear(self) -> None:
        """Drop every entry and reset counters."""
        with self._lock:
            self._images.clear()
            self._studies.clear()
            self.hits = 0
            self.misses = 0
        logger.info("Cache cleared")

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._images

    def __len__(self) -> int:
        with self._lock:
            return len(self._images)

    @property
    def size_bytes(self) -> int:
        with self._lock:
            return int(self._images.currsize)

    def stats(self) -> dict[str, Any]:
        """Snapshot of cache occupancy after dropping expired entries."""
        with self._lock:
            self._images.expire()
            self._studies.expire()
            return {
                "instance_entries": len(self._images),
                "study_entries": len(self._studies),
                "size_bytes": int(self._images.currsize),
                "max_size_bytes": self._max_size_bytes,
                "cache_ttl_hours": self._ttl_seconds / 3600,
                "hits": self.hits,
                "misses": self.misses,
            }
