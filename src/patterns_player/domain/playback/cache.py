"""Bounded in-memory cache of generated audio.

Maps a track identity (optionally scoped by session) to the resolved audio
resource. Entries expire after ``max_age`` seconds and the oldest entries are
evicted once the cache holds more than ``max_size``. The cache owns resource
lifetime: every resource leaving the cache is released.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from loguru import logger

from ..library.models import Track

DEFAULT_MAX_SIZE = 50
DEFAULT_MAX_AGE_SECONDS = 30 * 60


class ReleasableResource(Protocol):
    def release(self) -> None: ...


@dataclass
class CacheEntry:
    key: str
    resource: ReleasableResource
    inserted_at: float  # Unix timestamp


def cache_key(track: Track, scope: Optional[str] = None) -> str:
    """Cache key for a track, prefixed with the session id for session-scoped entries."""
    if scope:
        return f"{scope}:{track.identity_key}"
    return track.identity_key


class MusicCache:
    """TTL + size bounded cache of audio resources."""

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        max_age: float = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.max_age = max_age
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.inserted_at > self.max_age

    def _drop(self, key: str) -> None:
        entry = self._entries.pop(key)
        _release(entry.resource)

    def get(self, track: Track, scope: Optional[str] = None) -> Optional[ReleasableResource]:
        """Cached resource for the track, or None if absent or expired.

        Expired entries are removed (and released) on access.
        """
        if not track.has_identity():
            logger.warning(f"Track without identity cannot be cached: {track!r}")
            return None

        key = cache_key(track, scope)
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._is_expired(entry):
            self._drop(key)
            logger.debug(f"Cache entry expired: {key}")
            return None

        logger.debug(f"Cache hit: {track.name}")
        return entry.resource

    def has(self, track: Track, scope: Optional[str] = None) -> bool:
        return self.get(track, scope) is not None

    def set(self, track: Track, resource: ReleasableResource, scope: Optional[str] = None) -> bool:
        """Store a resource for the track.

        An existing entry for the same key is released first. Oldest entries are
        evicted until the cache is back within ``max_size``.

        Returns:
            False if the track has no identity and was not cached
        """
        if not track.has_identity():
            logger.warning(f"Track without identity cannot be cached: {track!r}")
            return False

        key = cache_key(track, scope)
        existing = self._entries.pop(key, None)
        if existing is not None and existing.resource is not resource:
            _release(existing.resource)

        self._entries[key] = CacheEntry(key=key, resource=resource, inserted_at=self._clock())
        logger.debug(f"Cached track: {track.name}")

        self._evict_oldest()
        return True

    def delete(self, track: Track, scope: Optional[str] = None) -> bool:
        key = cache_key(track, scope)
        if key not in self._entries:
            return False
        self._drop(key)
        logger.debug(f"Removed from cache: {key}")
        return True

    def owns(self, resource: ReleasableResource) -> bool:
        """True if the resource is currently held by the cache."""
        return any(entry.resource is resource for entry in self._entries.values())

    def clear(self) -> None:
        for entry in self._entries.values():
            _release(entry.resource)
        count = len(self._entries)
        self._entries.clear()
        logger.debug(f"Cache cleared ({count} entries)")

    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def prune_expired(self) -> int:
        """Remove expired entries.

        Returns:
            Number of entries removed
        """
        expired_keys = [key for key, entry in self._entries.items() if self._is_expired(entry)]
        for key in expired_keys:
            self._drop(key)

        if expired_keys:
            logger.debug(f"Pruned {len(expired_keys)} expired cache entries")
        return len(expired_keys)

    def stats(self) -> dict:
        """Get cache statistics for monitoring."""
        expired = sum(1 for entry in self._entries.values() if self._is_expired(entry))
        return {
            "total_entries": len(self._entries),
            "valid_entries": len(self._entries) - expired,
            "expired_entries": expired,
            "max_size": self.max_size,
        }

    def _evict_oldest(self) -> None:
        overflow = len(self._entries) - self.max_size
        if overflow <= 0:
            return

        oldest = sorted(self._entries.values(), key=lambda entry: entry.inserted_at)[:overflow]
        for entry in oldest:
            self._drop(entry.key)
        logger.debug(f"Evicted {len(oldest)} old cache entries")


def _release(resource: ReleasableResource) -> None:
    try:
        resource.release()
    except Exception:
        logger.exception(f"Failed to release cached resource {resource!r}")
