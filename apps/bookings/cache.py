"""Memoization of conflict checks and availability windows.

Entries are derived data: the admission engine never trusts them and
re-checks conflicts under the resource lock. Every write that changes
the active bookings of a resource forgets the entries whose window
intersects the change. Each resource keeps an index of the keys cached
for it, so invalidation can be precise instead of wiping the namespace.
TTLs bound staleness if an invalidation is missed.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from datetime import date, timedelta, timezone as dt_timezone
from typing import Any, Callable, Dict, Iterable, List, Tuple

from django.core.cache import caches  # type: ignore
from django.utils import timezone  # type: ignore

from shared.domain.value_objects import TimeRange

from .conf import BookingPolicy

logger = logging.getLogger(__name__)

_MISSING = object()

IndexEntry = Tuple[float, float, float]  # window start, window end, expires at (epoch seconds)


class ConflictCache(ABC):
    """Key/value store with expiry behind the availability cache."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int | None) -> None:
        ...

    @abstractmethod
    def forget(self, key: str) -> None:
        ...

    def forget_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.forget(key)

    def remember(self, key: str, ttl: int, compute: Callable[[], Any]) -> Any:
        """Return the cached value for ``key`` or compute, store and return it."""
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = compute()
        self.set(key, value, ttl)
        return value


class DjangoConflictCache(ConflictCache):
    """
    Backed by a Django cache alias (Redis in production, LocMem otherwise).

    Backend failures are logged and degrade to a miss: reads return the
    default so the caller recomputes, writes and deletes are skipped.
    """

    def __init__(self, alias: str = "default"):
        self.alias = alias

    @property
    def backend(self):  # type: ignore
        return caches[self.alias]

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self.backend.get(key, default)
        except Exception as e:
            logger.error(f"Cache get error for key {key}: {e}", exc_info=True)
            return default

    def set(self, key: str, value: Any, ttl: int | None) -> None:
        try:
            self.backend.set(key, value, ttl)
        except Exception as e:
            logger.error(f"Cache set error for key {key}: {e}", exc_info=True)

    def forget(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except Exception as e:
            logger.error(f"Cache delete error for key {key}: {e}", exc_info=True)

    def forget_many(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        try:
            self.backend.delete_many(keys)
        except Exception as e:
            logger.error(f"Cache delete error for {len(keys)} keys: {e}", exc_info=True)


class NullConflictCache(ConflictCache):
    """Stores nothing. Used when caching is disabled."""

    def get(self, key: str, default: Any = None) -> Any:
        return default

    def set(self, key: str, value: Any, ttl: int | None) -> None:
        return None

    def forget(self, key: str) -> None:
        return None


def _week_bounds(day: date) -> Tuple[date, date]:
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def _local_dates(time_range: TimeRange) -> List[date]:
    first = timezone.localtime(time_range.start).date()
    # end is exclusive, so a range ending at midnight does not touch the next day
    last = timezone.localtime(time_range.end - timedelta(microseconds=1)).date()
    days = []
    current = first
    while current <= last:
        days.append(current)
        current += timedelta(days=1)
    return days


class AvailabilityCache:
    """Conflict and availability memoization for bookings."""

    def __init__(self, store: ConflictCache, policy: BookingPolicy):
        self.store = store
        self.policy = policy

    @classmethod
    def from_policy(cls, policy: BookingPolicy) -> "AvailabilityCache":
        store: ConflictCache = DjangoConflictCache() if policy.cache_enabled else NullConflictCache()
        return cls(store, policy)

    # ----- keys -----

    def conflict_key(self, resource_id: int, time_range: TimeRange) -> str:
        window = time_range.truncated_to_minute()
        start = window.start.astimezone(dt_timezone.utc).strftime("%Y%m%d%H%M")
        end = window.end.astimezone(dt_timezone.utc).strftime("%Y%m%d%H%M")
        return f"{self.policy.cache_prefix}:conflicts:{resource_id}:{start}:{end}"

    def availability_key(self, resource_id: int, start_date: date, end_date: date) -> str:
        return (
            f"{self.policy.cache_prefix}:availability:{resource_id}:"
            f"{start_date.strftime('%Y%m%d')}:{end_date.strftime('%Y%m%d')}"
        )

    def index_key(self, resource_id: int) -> str:
        return f"{self.policy.cache_prefix}:index:{resource_id}"

    # ----- memoization -----

    def remember_conflicts(self, resource_id: int, time_range: TimeRange, compute: Callable[[], Any]) -> Any:
        key = self.conflict_key(resource_id, time_range)
        window = time_range.truncated_to_minute()
        return self._remember(resource_id, key, window, self.policy.conflict_cache_timeout, compute)

    def remember_availability(
        self,
        resource_id: int,
        start_date: date,
        end_date: date,
        compute: Callable[[], Any],
    ) -> Any:
        key = self.availability_key(resource_id, start_date, end_date)
        window = TimeRange.for_dates(start_date, end_date, timezone.get_current_timezone())
        return self._remember(resource_id, key, window, self.policy.availability_cache_timeout, compute)

    def _remember(
        self,
        resource_id: int,
        key: str,
        window: TimeRange,
        ttl: int,
        compute: Callable[[], Any],
    ) -> Any:
        def compute_and_register() -> Any:
            # Indexed before it is stored, so an invalidation never misses it
            self._register(resource_id, key, window, ttl)
            return compute()

        return self.store.remember(key, ttl, compute_and_register)

    # ----- invalidation -----

    def invalidate_window(self, resource_id: int, time_range: TimeRange) -> List[str]:
        """Forget every entry of ``resource_id`` whose window meets ``time_range``."""
        index = self._load_index(resource_id)
        start, end = time_range.start.timestamp(), time_range.end.timestamp()
        stale = {key for key, (s, e, _) in index.items() if s < end and start < e}

        stale.add(self.conflict_key(resource_id, time_range))
        for day in _local_dates(time_range):
            stale.add(self.availability_key(resource_id, day, day))
            stale.add(self.availability_key(resource_id, *_week_bounds(day)))

        self.store.forget_many(sorted(stale))
        remaining = {key: entry for key, entry in index.items() if key not in stale}
        self._save_index(resource_id, remaining)
        logger.debug(f"Invalidated {len(stale)} cache keys for resource {resource_id} ({time_range})")
        return sorted(stale)

    def invalidate_resource(self, resource_id: int) -> None:
        """Forget everything cached for ``resource_id``."""
        index = self._load_index(resource_id)
        self.store.forget_many(index.keys())
        self.store.forget(self.index_key(resource_id))
        logger.debug(f"Invalidated all {len(index)} cache keys for resource {resource_id}")

    # ----- index -----

    def _load_index(self, resource_id: int) -> Dict[str, IndexEntry]:
        index = self.store.get(self.index_key(resource_id)) or {}
        now = time.time()
        return {key: entry for key, entry in index.items() if entry[2] > now}

    def _save_index(self, resource_id: int, index: Dict[str, IndexEntry]) -> None:
        if not index:
            self.store.forget(self.index_key(resource_id))
            return
        ttl = max(int(entry[2] - time.time()) + 1 for entry in index.values())
        self.store.set(self.index_key(resource_id), index, ttl)

    def _register(self, resource_id: int, key: str, window: TimeRange, ttl: int) -> None:
        index = self._load_index(resource_id)
        index[key] = (window.start.timestamp(), window.end.timestamp(), time.time() + ttl)
        self._save_index(resource_id, index)


__all__ = [
    "AvailabilityCache",
    "ConflictCache",
    "DjangoConflictCache",
    "NullConflictCache",
]
