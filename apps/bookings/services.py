"""Conflict detection for booking workflows."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Tuple

from django.db.models import Q, QuerySet  # type: ignore
from django.utils import timezone  # type: ignore

from shared.domain.value_objects import TimeRange

from .cache import AvailabilityCache
from .domain.lifecycle import ACTIVE_STATUSES
from .models import Booking

DISPLAY_FORMAT = "%Y-%m-%d %H:%M"


def _display(moment: datetime) -> str:
    return timezone.localtime(moment).strftime(DISPLAY_FORMAT)


def overlapping_filter(time_range: TimeRange) -> Q:
    """Half-open overlap: [a, b) and [c, d) overlap iff a < d and c < b."""
    return Q(start_time__lt=time_range.end) & Q(end_time__gt=time_range.start)


@dataclass(frozen=True)
class ConflictingBooking:
    id: int
    user_id: int
    user_name: str
    start_time: datetime
    end_time: datetime
    status: str

    @classmethod
    def from_booking(cls, booking: Booking) -> "ConflictingBooking":
        user = booking.user
        return cls(
            id=booking.pk,
            user_id=booking.user_id,
            user_name=user.display_name if user else "Unknown",
            start_time=booking.start_time,
            end_time=booking.end_time,
            status=booking.status,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "start_time": _display(self.start_time),
            "end_time": _display(self.end_time),
            "user": self.user_name,
            "status": self.status,
        }


@dataclass(frozen=True)
class ConflictReport:
    """Verdict of a conflict check. Picklable so it can be cached."""

    has_conflict: bool
    capacity: int
    overlapping_count: int
    reason: str = "No conflicts found"
    conflicting: Tuple[ConflictingBooking, ...] = field(default_factory=tuple)

    def conflicting_dicts(self) -> list[dict[str, Any]]:
        return [booking.to_dict() for booking in self.conflicting]


class ConflictDetector:
    """
    Decides whether a resource can take another booking for a window.

    ``check`` always queries the database and is the only verdict the
    admission engine acts on; it must run while the resource is locked.
    ``check_cached`` serves pre-submission hints through the availability
    cache.
    """

    def __init__(self, cache: AvailabilityCache | None = None):
        self.cache = cache

    def overlapping(
        self,
        resource_id: int,
        time_range: TimeRange,
        *,
        exclude_booking_id: int | None = None,
        using: str | None = None,
    ) -> QuerySet:
        queryset = (
            Booking.objects.using(using)
            .filter(resource_id=resource_id, status__in=ACTIVE_STATUSES)
            .filter(overlapping_filter(time_range))
        )
        if exclude_booking_id is not None:
            queryset = queryset.exclude(pk=exclude_booking_id)
        return queryset.select_related("user").order_by("start_time", "id")

    def check(
        self,
        resource_id: int,
        time_range: TimeRange,
        capacity: int,
        *,
        exclude_booking_id: int | None = None,
        using: str | None = None,
    ) -> ConflictReport:
        bookings = list(
            self.overlapping(
                resource_id, time_range, exclude_booking_id=exclude_booking_id, using=using
            )
        )
        return self.evaluate(bookings, capacity)

    def check_cached(
        self,
        resource_id: int,
        time_range: TimeRange,
        capacity: int,
        *,
        exclude_booking_id: int | None = None,
    ) -> ConflictReport:
        """Advisory check. Never use the result to admit a booking."""
        if self.cache is None or exclude_booking_id is not None:
            return self.check(resource_id, time_range, capacity, exclude_booking_id=exclude_booking_id)

        # The key has minute granularity, so compute on the same normalized window
        window = time_range.truncated_to_minute()
        report = self.cache.remember_conflicts(
            resource_id, window, lambda: self.check(resource_id, window, capacity)
        )
        if report.capacity != capacity:
            # Capacity changed since the entry was stored
            report = self.check(resource_id, window, capacity)
        return report

    @staticmethod
    def evaluate(bookings: Iterable[Booking], capacity: int) -> ConflictReport:
        """Apply the capacity rule to the bookings overlapping a window."""
        conflicting = tuple(ConflictingBooking.from_booking(booking) for booking in bookings)
        count = len(conflicting)

        if capacity == 1 and count > 0:
            first = conflicting[0]
            return ConflictReport(
                has_conflict=True,
                capacity=capacity,
                overlapping_count=count,
                reason=(
                    f"Resource is already booked from {_display(first.start_time)} "
                    f"to {_display(first.end_time)} by {first.user_name}."
                ),
                conflicting=conflicting,
            )

        if count >= capacity:
            return ConflictReport(
                has_conflict=True,
                capacity=capacity,
                overlapping_count=count,
                reason=f"Resource capacity ({capacity}) is fully booked for the selected time period.",
                conflicting=conflicting,
            )

        return ConflictReport(has_conflict=False, capacity=capacity, overlapping_count=count)
