"""Booking policy settings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from django.conf import settings  # type: ignore


@dataclass(frozen=True)
class BookingPolicy:
    min_duration: timedelta = timedelta(minutes=30)
    max_duration: timedelta = timedelta(hours=8)
    purpose_min_length: int = 10
    purpose_max_length: int = 500
    max_active_per_user: int = 5
    cancellation_buffer: timedelta = timedelta(hours=2)
    lock_timeout: float = 5.0
    cache_enabled: bool = True
    conflict_cache_timeout: int = 300
    availability_cache_timeout: int = 3600
    availability_max_days: int = 30
    cache_prefix: str = "bookings"

    @classmethod
    def from_settings(cls) -> "BookingPolicy":
        """Read the ``BOOKING_*`` settings, falling back to the defaults above."""
        return cls(
            min_duration=timedelta(minutes=getattr(settings, "BOOKING_MIN_DURATION_MINUTES", 30)),
            max_duration=timedelta(minutes=getattr(settings, "BOOKING_MAX_DURATION_MINUTES", 480)),
            purpose_min_length=getattr(settings, "BOOKING_PURPOSE_MIN_LENGTH", 10),
            purpose_max_length=getattr(settings, "BOOKING_PURPOSE_MAX_LENGTH", 500),
            max_active_per_user=getattr(settings, "BOOKING_MAX_ACTIVE_PER_USER", 5),
            cancellation_buffer=timedelta(
                minutes=getattr(settings, "BOOKING_CANCELLATION_BUFFER_MINUTES", 120)
            ),
            lock_timeout=float(getattr(settings, "BOOKING_LOCK_TIMEOUT_SECONDS", 5)),
            cache_enabled=getattr(settings, "BOOKING_CACHE_ENABLED", True),
            conflict_cache_timeout=getattr(settings, "BOOKING_CONFLICT_CACHE_TIMEOUT", 300),
            availability_cache_timeout=getattr(settings, "BOOKING_AVAILABILITY_CACHE_TIMEOUT", 3600),
            availability_max_days=getattr(settings, "BOOKING_AVAILABILITY_MAX_DAYS", 30),
            cache_prefix=getattr(settings, "BOOKING_CACHE_PREFIX", "bookings"),
        )
