"""Celery tasks for notifications."""

from __future__ import annotations

import logging
from typing import Any

from celery import shared_task  # type: ignore

from .services import deliver_booking_notification

logger = logging.getLogger(__name__)


@shared_task(name="notifications.send_booking_notification", ignore_result=True)
def send_booking_notification(
    booking_id: int,
    event_type: str,
    recipient_user_id: int,
    payload: dict[str, Any],
) -> int | None:
    """Deliver one booking notification. Failures are logged, never raised."""
    try:
        notification = deliver_booking_notification(booking_id, event_type, recipient_user_id, payload)
    except Exception as e:
        logger.error(
            f"Booking notification failed for booking {booking_id} ({event_type}): {e}",
            exc_info=True,
        )
        return None
    return notification.pk if notification else None
