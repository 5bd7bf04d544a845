"""Notification sink and delivery for booking events."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from django.conf import settings  # type: ignore
from django.contrib.auth import get_user_model  # type: ignore
from django.core.mail import send_mail  # type: ignore

from .models import Notification

logger = logging.getLogger(__name__)

BOOKING_MESSAGES = {
    Notification.EventType.CREATED: "Your booking request has been submitted and is awaiting approval.",
    Notification.EventType.APPROVED: "Your booking has been approved!",
    Notification.EventType.REJECTED: "Your booking request has been rejected.",
    Notification.EventType.CANCELLED: "Your booking has been cancelled.",
}


class NotificationSink(ABC):
    """Where the booking core's state changes are delivered. Fire and forget."""

    @abstractmethod
    def notify(
        self,
        booking_id: int,
        event_type: str,
        recipient_user_id: int,
        payload: dict[str, Any],
    ) -> None:
        ...


class CeleryNotificationSink(NotificationSink):
    """Enqueues ``notifications.send_booking_notification``."""

    def notify(self, booking_id, event_type, recipient_user_id, payload):  # type: ignore
        from .tasks import send_booking_notification

        try:
            send_booking_notification.delay(booking_id, event_type, recipient_user_id, payload)
        except Exception as e:
            logger.error(
                f"Failed to enqueue {event_type} notification for booking {booking_id}: {e}",
                exc_info=True,
            )


def booking_title(event_type: str) -> str:
    return f"Booking {event_type.capitalize()}"


def deliver_booking_notification(
    booking_id: int,
    event_type: str,
    recipient_user_id: int,
    payload: dict[str, Any],
) -> Notification | None:
    """
    Store the in-app notification and send the email copy.

    Each channel is skipped when the recipient has switched it off.
    Returns the stored notification, if any.
    """
    if event_type not in BOOKING_MESSAGES:
        logger.warning(f"Unknown booking notification type '{event_type}' for booking {booking_id}")
        return None

    User = get_user_model()
    try:
        user = User.objects.get(pk=recipient_user_id)
    except User.DoesNotExist:
        logger.warning(f"Notification recipient {recipient_user_id} no longer exists")
        return None

    preferences = user.get_notification_preferences()
    title = booking_title(event_type)
    message = BOOKING_MESSAGES[event_type]
    data = {"booking_id": booking_id, **payload}

    notification = None
    if preferences.get("in_app_booking_updates", True):
        from apps.bookings.models import Booking

        notification = Notification.objects.create(
            user=user,
            booking=Booking.objects.filter(pk=booking_id).first(),
            event_type=event_type,
            title=title,
            message=message,
            data=data,
        )

    if preferences.get("email_booking_updates", True) and user.email:
        send_email_notification(user.email, title, message, data)

    logger.info(f"Delivered {event_type} notification for booking {booking_id} to user {user.pk}")
    return notification


def send_email_notification(recipient_email: str, subject: str, message: str, data: dict[str, Any]) -> bool:
    lines = [message, ""]
    if data.get("resource_name"):
        lines.append(f"Resource: {data['resource_name']}")
    if data.get("start_time") and data.get("end_time"):
        lines.append(f"When: {data['start_time']} - {data['end_time']}")
    if data.get("reason"):
        lines.append(f"Reason: {data['reason']}")
    try:
        send_mail(
            subject=subject,
            message="\n".join(lines),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[recipient_email],
            fail_silently=False,
        )
        logger.info(f"Email sent successfully to {recipient_email}: {subject}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {recipient_email}: {e}", exc_info=True)
        return False


default_sink: NotificationSink = CeleryNotificationSink()
