"""
Booking Domain Events

Events that represent booking state changes. They are collected by the
unit of work and published after the transaction commits, once the
resource lock is released.
"""

from dataclasses import dataclass
from datetime import datetime

from shared.domain.base import DomainEvent


@dataclass(kw_only=True)
class BookingEvent(DomainEvent):
    """Fields every booking notification needs."""

    booking_id: int
    resource_id: int
    resource_name: str
    recipient_id: int
    start_time: datetime
    end_time: datetime

    event_type = "booking"

    def payload(self) -> dict:
        return {
            "booking_id": self.booking_id,
            "resource_name": self.resource_name,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
        }


@dataclass(kw_only=True)
class BookingCreated(BookingEvent):
    """
    Event: a booking request was admitted as pending

    Triggers:
    - In-app notification to the requester
    """

    event_type = "created"


@dataclass(kw_only=True)
class BookingApproved(BookingEvent):
    event_type = "approved"


@dataclass(kw_only=True)
class BookingRejected(BookingEvent):
    event_type = "rejected"


@dataclass(kw_only=True)
class BookingCancelled(BookingEvent):
    """Event: a pending or approved booking was cancelled by its owner or an admin"""

    reason: str = ""
    cancelled_by: int | None = None

    event_type = "cancelled"

    def payload(self) -> dict:
        data = super().payload()
        data["reason"] = self.reason
        return data


BOOKING_EVENTS = (BookingCreated, BookingApproved, BookingRejected, BookingCancelled)

EVENT_FOR_STATUS = {
    "approved": BookingApproved,
    "rejected": BookingRejected,
    "cancelled": BookingCancelled,
}
