"""
Event handlers wiring booking events to the notification sink.

Handlers run after the booking transaction has committed and the
resource lock has been released.
"""

from __future__ import annotations

import logging

from apps.bookings.domain.events import BookingEvent
from shared.application.message_bus import message_bus

from . import services

logger = logging.getLogger(__name__)


def handle_booking_event(event: BookingEvent) -> None:
    services.default_sink.notify(
        event.booking_id,
        event.event_type,
        event.recipient_id,
        event.payload(),
    )


def register_handlers() -> None:
    # Subscribing to the base class covers every booking event
    message_bus.register_event_handler(BookingEvent, handle_booking_event)
    logger.debug("Registered booking notification handler")
