"""Errors raised by the booking core."""

from __future__ import annotations

from typing import Any

from shared.domain.exceptions import ConflictError, RateLimitError


class BookingConflictError(ConflictError):
    """The requested interval would exceed the resource capacity."""

    default_code = "booking_conflict"

    def __init__(self, message: str, conflicting: list[dict[str, Any]], **details: Any):
        self.conflicting = conflicting
        super().__init__(message, details={"conflicting_bookings": conflicting, **details})


class ResourceUnavailableError(ConflictError):
    default_code = "resource_unavailable"
    default_message = "Resource is not available for booking."


class InvalidTransitionError(ConflictError):
    default_code = "invalid_transition"


class ActiveBookingLimitError(RateLimitError):
    default_code = "active_booking_limit"

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(
            f"You have reached the maximum number of active bookings ({limit}).",
            details={"limit": limit},
        )
