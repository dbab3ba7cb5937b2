"""
Response Cache

Short-lived read cache plus in-flight request de-duplication, keyed by
logical resource identity (see `CacheKeys`).

DESIGN DECISION: Only idempotent remote reads go through this cache.
Local-store reads are cheap and always fresh, and writes invalidate the keys
they can affect instead of updating cached values in place.
"""

import asyncio
import threading
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from pydantic import BaseModel


T = TypeVar("T")

_MISSING = object()


class CacheTTL(str, Enum):
    """TTL classes, selected per resource type by the caller."""
    SHORT = "short"        # frequently changing data (meals, summaries)
    DEFAULT = "default"
    LONG = "long"          # rarely changing data (mess, members)


class CacheEntry(BaseModel):
    value: Any
    expires_at: float


class CacheKeys:
    """Cache key builders. Prefixes matter: invalidation works on them."""

    @staticmethod
    def mess(mess_id: str) -> str:
        return f"mess:{mess_id}"

    @staticmethod
    def mess_by_code(code: str) -> str:
        return f"messCode:{code.upper()}"

    @staticmethod
    def mess_members(mess_id: str) -> str:
        return f"mess:{mess_id}:members"

    @staticmethod
    def active_month(mess_id: str) -> str:
        return f"month:active:{mess_id}"

    @staticmethod
    def months(mess_id: str) -> str:
        return f"months:{mess_id}"

    @staticmethod
    def meals(month_id: str) -> str:
        return f"meals:{month_id}"

    @staticmethod
    def user_meals(user_id: str, month_id: str) -> str:
        return f"meals:{month_id}:user:{user_id}"

    @staticmethod
    def deposits(month_id: str) -> str:
        return f"deposits:{month_id}"

    @staticmethod
    def user_deposits(user_id: str, month_id: str) -> str:
        return f"deposits:{month_id}:user:{user_id}"

    @staticmethod
    def meal_costs(month_id: str) -> str:
        return f"mealCosts:{month_id}"

    @staticmethod
    def other_costs(month_id: str) -> str:
        return f"otherCosts:{month_id}"

    @staticmethod
    def bazar_dates(mess_id: str) -> str:
        return f"bazarDates:{mess_id}"

    @staticmethod
    def notices(mess_id: str) -> str:
        return f"notices:{mess_id}"

    @staticmethod
    def active_notice(mess_id: str) -> str:
        return f"notices:{mess_id}:active"

    @staticmethod
    def notifications(user_id: str) -> str:
        return f"notifications:{user_id}"

    @staticmethod
    def notes(mess_id: str) -> str:
        return f"notes:{mess_id}"

    @staticmethod
    def join_requests(mess_id: str) -> str:
        return f"joinRequests:{mess_id}"

    @staticmethod
    def user_join_requests(user_id: str) -> str:
        return f"joinRequests:user:{user_id}"

    @staticmethod
    def user(user_id: str) -> str:
        return f"user:{user_id}"

    @staticmethod
    def month_summary(month_id: str) -> str:
        return f"summary:month:{month_id}"

    @staticmethod
    def member_summary(user_id: str, month_id: str) -> str:
        return f"summary:member:{user_id}:{month_id}"

    @staticmethod
    def all_members_summary(month_id: str) -> str:
        return f"summary:members:{month_id}"


class ResponseCache:
    """
    In-memory TTL cache with in-flight de-duplication.

    Expiry is strict: an entry set with TTL `t` at time `s` is served while
    `now <= s + t` and gone afterwards.
    """

    def __init__(
        self,
        short_ttl: float = 10.0,
        default_ttl: float = 30.0,
        long_ttl: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._ttls = {
            CacheTTL.SHORT: short_ttl,
            CacheTTL.DEFAULT: default_ttl,
            CacheTTL.LONG: long_ttl,
        }
        self._clock = clock or time.monotonic
        self._entries: dict[str, CacheEntry] = {}
        self._pending: dict[str, asyncio.Task] = {}
        # Bumped by invalidation; a fetch only caches under the generation it started in.
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()

    def ttl_for(self, kind: CacheTTL) -> float:
        return self._ttls[kind]

    def _resolve_ttl(self, ttl: Union[float, CacheTTL, None]) -> float:
        if ttl is None:
            return self._ttls[CacheTTL.DEFAULT]
        if isinstance(ttl, CacheTTL):
            return self._ttls[ttl]
        return float(ttl)

    def _lookup(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return _MISSING
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return _MISSING
            return entry.value

    def get(self, key: str, default: Any = None) -> Any:
        """Cached value if still valid, else `default`."""
        value = self._lookup(key)
        return default if value is _MISSING else value

    def contains(self, key: str) -> bool:
        return self._lookup(key) is not _MISSING

    def set(self, key: str, value: Any, ttl: Union[float, CacheTTL, None] = None) -> None:
        expires_at = self._clock() + self._resolve_ttl(ttl)
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=expires_at)

    def _generation(self, key: str) -> tuple[int, int]:
        return self._epoch, self._generations.get(key, 0)

    def _detach(self, key: str) -> None:
        """Stop an in-flight fetch for `key` from caching; later callers start a new one."""
        self._generations[key] = self._generations.get(key, 0) + 1
        self._pending.pop(key, None)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            if key in self._pending:
                self._detach(key)
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> list[str]:
        """Drop every entry whose key starts with `prefix`; returns dropped keys."""
        with self._lock:
            for key in [k for k in self._pending if k.startswith(prefix)]:
                self._detach(key)
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return doomed

    def clear(self) -> None:
        """Drop every entry. Fetches still in flight will not repopulate the cache."""
        with self._lock:
            self._entries.clear()
            self._pending.clear()
            self._generations.clear()
            self._epoch += 1

    def invalidate_mess_data(self, mess_id: str) -> list[str]:
        """Everything derived from mess-level state."""
        dropped = self.invalidate_prefix(f"mess:{mess_id}")
        dropped += self.invalidate_prefix("messCode:")
        dropped += self.invalidate_prefix("month:")
        dropped += self.invalidate_prefix("months:")
        dropped += self.invalidate_prefix("summary:")
        return dropped

    def invalidate_month_data(self, month_id: str) -> list[str]:
        """Activity lists of one month plus every summary."""
        dropped = []
        for key in (
            CacheKeys.meals(month_id),
            CacheKeys.deposits(month_id),
            CacheKeys.meal_costs(month_id),
            CacheKeys.other_costs(month_id),
        ):
            if self.invalidate(key):
                dropped.append(key)
        dropped += self.invalidate_prefix("summary:")
        return dropped

    async def dedupe_request(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: Union[float, CacheTTL, None] = None,
    ) -> T:
        """
        Collapse concurrent identical reads into one `fetcher()` call.

        A valid cached value is returned directly. Otherwise every concurrent
        caller awaits the same in-flight task. The result is cached only when
        the fetcher returns normally; the in-flight slot is always released
        when it settles, so a failure lets the next caller try again.
        Invalidating the key while the fetch runs detaches it: its waiters
        still get the result, but it is not cached.
        """
        cached = self._lookup(key)
        if cached is not _MISSING:
            return cached

        with self._lock:
            task = self._pending.get(key)
            if task is None:
                task = asyncio.ensure_future(
                    self._run(key, fetcher, ttl, self._generation(key))
                )
                self._pending[key] = task

        # Shielded so a cancelled waiter does not cancel the shared fetch.
        return await asyncio.shield(task)

    async def _run(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: Union[float, CacheTTL, None],
        generation: tuple[int, int],
    ) -> T:
        try:
            value = await fetcher()
            expires_at = self._clock() + self._resolve_ttl(ttl)
            with self._lock:
                if self._generation(key) == generation:
                    self._entries[key] = CacheEntry(value=value, expires_at=expires_at)
            return value
        finally:
            with self._lock:
                if self._pending.get(key) is asyncio.current_task():
                    del self._pending[key]

    def in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._pending

    def stats(self) -> dict:
        with self._lock:
            return {
                "size": len(self._entries),
                "keys": list(self._entries),
                "in_flight": list(self._pending),
            }
