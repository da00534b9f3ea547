"""Time-boxed memoization of expensive calendar lookups.

``SimpleTimedCache`` is a generic async memoizer: concurrent misses on the
same key share a single computation (per-key ``asyncio.Lock``), and
entries are dropped either on expiry or by an explicit ``clear``.
``MeetingCacheService`` layers the upcoming-events policy on top of it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from conference_room.config import settings

log = logging.getLogger("conference_room.cache")

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    key: str
    value: T
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class SimpleTimedCache:
    """Per-key TTL cache with compute-once semantics for concurrent misses."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def get_cached_value(
        self,
        key: str,
        ttl: float,
        factory: Callable[[], Awaitable[T]],
    ) -> T:
        entry = self._entries.get(key)
        if entry is not None and not entry.is_expired(self._clock()):
            return entry.value

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # another waiter may have filled it while we queued
            entry = self._entries.get(key)
            if entry is not None and not entry.is_expired(self._clock()):
                return entry.value

            log.debug("Cache miss for %s", key)
            value = await factory()
            self._entries[key] = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl)
            return value

    def clear(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            log.debug("Cache cleared for %s", key)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())


class MeetingCacheService:
    """Caches each room's upcoming meetings.

    Rooms tracked for push changes keep their entry much longer: change
    notifications evict it, so TTL expiry is only a backstop.
    """

    def __init__(self, cache: SimpleTimedCache | None = None) -> None:
        self._cache = cache or SimpleTimedCache()

    @staticmethod
    def _key(room_address: str) -> str:
        return f"Upcoming_{room_address}"

    async def get_upcoming_appointments_for_room(
        self,
        room_address: str,
        is_tracked: bool,
        factory: Callable[[], Awaitable[T]],
    ) -> T:
        ttl = settings.tracked_cache_seconds if is_tracked else settings.cache_seconds
        return await self._cache.get_cached_value(self._key(room_address), ttl, factory)

    def clear_upcoming_appointments_for_room(self, room_address: str) -> None:
        self._cache.clear(self._key(room_address))
