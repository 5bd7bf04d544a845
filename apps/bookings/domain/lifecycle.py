"""
Booking Lifecycle State Machine

Statuses and the transitions allowed between them:

    pending  -> approved   (admin)
    pending  -> rejected   (admin)
    pending  -> cancelled  (owner outside the cancellation buffer, admin anytime)
    approved -> cancelled  (owner outside the cancellation buffer, admin anytime)

``approved`` is not terminal: it may still be cancelled. ``rejected`` and
``cancelled`` are. No transition re-enters ``pending``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, FrozenSet

from apps.users.actor import Actor
from shared.domain.exceptions import PermissionDeniedError

from ..exceptions import InvalidTransitionError

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
CANCELLED = "cancelled"

ALL_STATUSES: FrozenSet[str] = frozenset({PENDING, APPROVED, REJECTED, CANCELLED})
ACTIVE_STATUSES: FrozenSet[str] = frozenset({PENDING, APPROVED})
TERMINAL_STATUSES: FrozenSet[str] = frozenset({REJECTED, CANCELLED})

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PENDING: frozenset({APPROVED, REJECTED, CANCELLED}),
    APPROVED: frozenset({CANCELLED}),
    REJECTED: frozenset(),
    CANCELLED: frozenset(),
}

ADMIN_ONLY_TARGETS: FrozenSet[str] = frozenset({APPROVED, REJECTED})


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


class BookingLifecycle:
    """Decides who may move a booking between statuses, and when."""

    def __init__(self, cancellation_buffer: timedelta = timedelta(hours=2)):
        self.cancellation_buffer = cancellation_buffer

    def ensure_transition(
        self,
        *,
        actor: Actor,
        owner_id: int,
        current: str,
        target: str,
        start_time: datetime,
        now: datetime,
    ) -> None:
        if target not in ALL_STATUSES:
            raise InvalidTransitionError(f"Unknown booking status '{target}'.")
        if current == target:
            raise InvalidTransitionError(
                f"Booking is already {current}.",
                details={"status": current},
            )
        if target == CANCELLED:
            self.ensure_can_cancel(
                actor=actor, owner_id=owner_id, current=current, start_time=start_time, now=now
            )
            return
        if target in ADMIN_ONLY_TARGETS and not actor.is_admin:
            raise PermissionDeniedError(f"Only administrators can mark a booking as {target}.")
        if not can_transition(current, target):
            raise InvalidTransitionError(
                f"Cannot change booking status from {current} to {target}.",
                details={"status": current, "requested_status": target},
            )

    def ensure_can_cancel(
        self,
        *,
        actor: Actor,
        owner_id: int,
        current: str,
        start_time: datetime,
        now: datetime,
    ) -> None:
        if not actor.is_admin and actor.user_id != owner_id:
            raise PermissionDeniedError("You can only cancel your own bookings.")
        if not can_transition(current, CANCELLED):
            raise InvalidTransitionError(
                f"A {current} booking cannot be cancelled.",
                details={"status": current},
            )
        if actor.is_admin:
            return
        if not now + self.cancellation_buffer < start_time:
            minutes = int(self.cancellation_buffer.total_seconds() // 60)
            raise InvalidTransitionError(
                f"Bookings can only be cancelled at least {minutes} minutes before they start.",
                code="cancellation_window_closed",
                details={"status": current},
            )

    def ensure_can_edit(self, *, actor: Actor, owner_id: int, current: str) -> None:
        """Owners edit pending bookings only; admins edit anything."""
        if actor.is_admin:
            return
        if actor.user_id != owner_id:
            raise PermissionDeniedError("You can only edit your own bookings.")
        if current != PENDING:
            raise InvalidTransitionError(
                "Only pending bookings can be edited.",
                code="booking_not_editable",
                details={"status": current},
            )
