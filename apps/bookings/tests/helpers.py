"""Builders shared by the booking tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from itertools import count

from django.utils import timezone

from apps.bookings.models import Booking
from apps.resources.models import Resource
from apps.users.models import User

_sequence = count(1)


def tomorrow_at(hour: int, minute: int = 0) -> datetime:
    day = timezone.localtime(timezone.now() + timedelta(days=1))
    return day.replace(hour=hour, minute=minute, second=0, microsecond=0)


def make_user(role: str = User.RoleChoices.STUDENT, **extra) -> User:
    number = next(_sequence)
    return User.objects.create_user(
        email=extra.pop("email", f"user{number}@example.com"),
        password="UserPass12345",
        role=role,
        **extra,
    )


def make_admin(**extra) -> User:
    return make_user(role=User.RoleChoices.ADMIN, **extra)


def make_resource(capacity: int = 1, **extra) -> Resource:
    number = next(_sequence)
    return Resource.objects.create(
        name=extra.pop("name", f"Room {number}"),
        capacity=capacity,
        location=extra.pop("location", "Main building"),
        **extra,
    )


def make_booking(
    resource: Resource,
    user: User,
    start: datetime,
    end: datetime,
    status: str = Booking.Status.PENDING,
    purpose: str = "Weekly team meeting",
) -> Booking:
    """Insert a booking directly, bypassing admission."""
    return Booking.objects.create(
        resource=resource,
        user=user,
        start_time=start,
        end_time=end,
        status=status,
        purpose=purpose,
    )
