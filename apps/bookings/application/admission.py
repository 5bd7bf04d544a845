"""
Booking Admission Engine

The use cases of the booking domain. Every operation that changes the
set of active bookings runs in one unit of work:

1. Validate the request
2. Lock the resource (process mutex + SELECT FOR UPDATE)
3. Re-check conflicts against committed bookings, under the lock
4. Persist the change and collect a domain event
5. Commit and release the lock
6. Forget cached answers that the change made stale, then publish events

Operations:
- create: admit a new pending booking
- update: change times, purpose or (admins) status
- cancel / approve / reject: lifecycle transitions
- purge: administrative hard delete
- check_availability / resource_availability: read-only queries
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List
import logging

import structlog  # type: ignore
from django.contrib.auth import get_user_model  # type: ignore
from django.db import DatabaseError  # type: ignore
from django.db.models import QuerySet  # type: ignore
from django.utils import timezone  # type: ignore

from apps.resources.models import Resource
from apps.resources.registry import ResourceRegistry
from apps.users.actor import Actor
from shared.application.uow import DjangoUnitOfWork
from shared.domain.exceptions import (
    InfrastructureError,
    NotFoundError,
    PermissionDeniedError,
    RequestValidationError,
)
from shared.domain.value_objects import TimeRange

from ..cache import AvailabilityCache
from ..conf import BookingPolicy
from ..domain import lifecycle
from ..domain.events import (
    BookingCancelled,
    BookingCreated,
    EVENT_FOR_STATUS,
)
from ..exceptions import ActiveBookingLimitError, BookingConflictError, ResourceUnavailableError
from ..models import Booking
from ..services import ConflictDetector, ConflictReport, overlapping_filter

logger = logging.getLogger(__name__)
audit_logger = structlog.get_logger("apps.bookings.audit")

USER_CANCELLATION_REASON = "Cancelled by user"
ADMIN_CANCELLATION_REASON = "Cancelled by administrator"


# ===== Commands =====

@dataclass
class CreateBookingCommand:
    resource_id: int
    start_time: datetime
    end_time: datetime
    purpose: str


@dataclass
class UpdateBookingCommand:
    """Fields left as ``None`` are not changed."""
    start_time: datetime | None = None
    end_time: datetime | None = None
    purpose: str | None = None
    status: str | None = None
    cancellation_reason: str | None = None

    def changes_interval(self) -> bool:
        return self.start_time is not None or self.end_time is not None


@dataclass
class AvailabilityCheck:
    resource: Resource
    time_range: TimeRange
    available: bool
    reason: str
    report: ConflictReport | None = None


def _aware(moment: datetime) -> datetime:
    if timezone.is_naive(moment):
        return timezone.make_aware(moment)
    return moment


def _format_duration(duration: timedelta) -> str:
    minutes = int(duration.total_seconds() // 60)
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour{'s' if hours != 1 else ''}"
    return f"{minutes} minutes"


class BookingAdmissionEngine:
    """Orchestrates validation, locking, conflict detection and persistence."""

    def __init__(
        self,
        policy: BookingPolicy | None = None,
        registry: ResourceRegistry | None = None,
        detector: ConflictDetector | None = None,
        cache: AvailabilityCache | None = None,
        booking_lifecycle: lifecycle.BookingLifecycle | None = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.policy = policy or BookingPolicy.from_settings()
        self.cache = cache or AvailabilityCache.from_policy(self.policy)
        self.registry = registry or ResourceRegistry(lock_timeout=self.policy.lock_timeout)
        self.detector = detector or ConflictDetector(self.cache)
        self.lifecycle = booking_lifecycle or lifecycle.BookingLifecycle(self.policy.cancellation_buffer)
        self.clock = clock

    # ===== Commands =====

    def create(self, actor: Actor, command: CreateBookingCommand) -> Booking:
        """Admit a new booking as pending or raise the reason it was refused."""
        start, end = _aware(command.start_time), _aware(command.end_time)
        purpose = (command.purpose or "").strip()

        errors: Dict[str, List[str]] = {}
        self._validate_purpose(purpose, errors)
        time_range = self._validate_interval(start, end, errors)
        if errors:
            raise RequestValidationError(errors)

        logger.info(
            f"Admitting booking for resource {command.resource_id}, "
            f"user {actor.user_id}, window {time_range}"
        )

        try:
            with DjangoUnitOfWork() as uow:
                resource = self.registry.get_for_update(command.resource_id, uow)
                self._ensure_resource_active(resource)
                self._ensure_no_conflict(resource, time_range, using=uow.using)
                self._lock_actor(actor.user_id, using=uow.using)
                self._ensure_below_active_limit(actor.user_id, using=uow.using)

                booking = Booking.objects.create(
                    resource=resource,
                    user_id=actor.user_id,
                    start_time=time_range.start,
                    end_time=time_range.end,
                    purpose=purpose,
                    status=Booking.Status.PENDING,
                )
                uow.collect(self._event(BookingCreated, booking, resource))
                self._invalidate_after_commit(uow, resource.pk, time_range)
        except DatabaseError as e:
            self._infrastructure_failure(
                "create", e, actor=actor, resource_id=command.resource_id, time_range=time_range
            )

        audit_logger.info(
            "booking_created",
            booking_id=booking.pk,
            user_id=actor.user_id,
            resource_id=resource.pk,
            start_time=time_range.start.isoformat(),
            end_time=time_range.end.isoformat(),
        )
        return self.get_booking(booking.pk, actor)

    def update(self, booking_id: int, actor: Actor, command: UpdateBookingCommand) -> Booking:
        """
        Change a booking's interval, purpose or status.

        Owners may edit their pending bookings; admins may edit any booking
        and move its status through the lifecycle. Conflicts are re-checked
        under the lock, excluding the booking itself.
        """
        errors: Dict[str, List[str]] = {}
        purpose = None
        if command.purpose is not None:
            purpose = command.purpose.strip()
            self._validate_purpose(purpose, errors)
        if command.status is not None and command.status not in lifecycle.ALL_STATUSES:
            errors.setdefault("status", []).append(f"'{command.status}' is not a valid status.")
        if errors:
            raise RequestValidationError(errors)
        if command.status is not None and not actor.is_admin:
            raise PermissionDeniedError("Only administrators can change a booking's status.")

        try:
            with DjangoUnitOfWork() as uow:
                booking = self._locked_booking(booking_id, uow)
                self.lifecycle.ensure_can_edit(
                    actor=actor, owner_id=booking.user_id, current=booking.status
                )
                previous_range = booking.time_range
                previous_status = booking.status

                time_range = previous_range
                if command.changes_interval():
                    start = _aware(command.start_time or booking.start_time)
                    end = _aware(command.end_time or booking.end_time)
                    time_range = self._validate_interval(
                        start, end, errors, check_past=command.start_time is not None
                    )
                    if errors:
                        raise RequestValidationError(errors)

                target_status = command.status or previous_status
                if target_status != previous_status:
                    self.lifecycle.ensure_transition(
                        actor=actor,
                        owner_id=booking.user_id,
                        current=previous_status,
                        target=target_status,
                        start_time=booking.start_time,
                        now=self.clock(),
                    )

                if target_status in lifecycle.ACTIVE_STATUSES and time_range != previous_range:
                    self._ensure_resource_active(booking.resource)
                    self._ensure_no_conflict(
                        booking.resource, time_range, exclude_booking_id=booking.pk, using=uow.using
                    )

                booking.start_time, booking.end_time = time_range.start, time_range.end
                if purpose is not None:
                    booking.purpose = purpose
                booking.status = target_status
                if target_status == lifecycle.CANCELLED and previous_status != lifecycle.CANCELLED:
                    booking.cancelled_at = self.clock()
                    booking.cancellation_reason = self._cancellation_reason(
                        actor, booking, command.cancellation_reason
                    )
                booking.save()

                if target_status != previous_status:
                    uow.collect(self._status_event(booking, actor))
                self._invalidate_after_commit(uow, booking.resource_id, previous_range, time_range)
        except DatabaseError as e:
            self._infrastructure_failure("update", e, actor=actor, booking_id=booking_id)

        audit_logger.info(
            "booking_updated",
            booking_id=booking.pk,
            actor_id=actor.user_id,
            resource_id=booking.resource_id,
            status=booking.status,
            start_time=booking.start_time.isoformat(),
            end_time=booking.end_time.isoformat(),
        )
        return self.get_booking(booking.pk, actor)

    def cancel(self, booking_id: int, actor: Actor, reason: str | None = None) -> Booking:
        booking = self._transition(booking_id, actor, lifecycle.CANCELLED, reason=reason)
        audit_logger.info(
            "booking_cancelled",
            booking_id=booking.pk,
            actor_id=actor.user_id,
            resource_id=booking.resource_id,
            reason=booking.cancellation_reason,
        )
        return booking

    def approve(self, booking_id: int, actor: Actor) -> Booking:
        if not actor.is_admin:
            raise PermissionDeniedError("Only administrators can approve bookings.")
        booking = self._transition(booking_id, actor, lifecycle.APPROVED)
        audit_logger.info("booking_approved", booking_id=booking.pk, actor_id=actor.user_id)
        return booking

    def reject(self, booking_id: int, actor: Actor) -> Booking:
        if not actor.is_admin:
            raise PermissionDeniedError("Only administrators can reject bookings.")
        booking = self._transition(booking_id, actor, lifecycle.REJECTED)
        audit_logger.info("booking_rejected", booking_id=booking.pk, actor_id=actor.user_id)
        return booking

    def purge(self, booking_id: int, actor: Actor) -> None:
        """Hard delete. Admin only, emits no event."""
        if not actor.is_admin:
            raise PermissionDeniedError("Only administrators can delete bookings.")
        try:
            with DjangoUnitOfWork() as uow:
                booking = self._locked_booking(booking_id, uow)
                resource_id, time_range = booking.resource_id, booking.time_range
                booking.delete()
                self._invalidate_after_commit(uow, resource_id, time_range)
        except DatabaseError as e:
            self._infrastructure_failure("purge", e, actor=actor, booking_id=booking_id)

        audit_logger.info(
            "booking_purged", booking_id=booking_id, actor_id=actor.user_id, resource_id=resource_id
        )

    # ===== Queries =====

    def visible_bookings(self, actor: Actor) -> QuerySet:
        """Admins see every booking, everyone else only their own."""
        queryset = Booking.objects.select_related("resource", "user")
        if actor.is_admin:
            return queryset
        return queryset.filter(user_id=actor.user_id)

    def get_booking(self, booking_id: int, actor: Actor) -> Booking:
        try:
            return self.visible_bookings(actor).get(pk=booking_id)
        except (Booking.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Booking not found.", details={"booking_id": booking_id})

    def check_availability(
        self,
        resource_id: int,
        start_time: datetime,
        end_time: datetime,
        *,
        exclude_booking_id: int | None = None,
    ) -> AvailabilityCheck:
        """Advisory availability for a window. Served from the cache when possible."""
        start, end = _aware(start_time), _aware(end_time)
        errors: Dict[str, List[str]] = {}
        if start < self.clock():
            errors["start_time"] = ["The start time must not be in the past."]
        if end <= start:
            errors["end_time"] = ["The end time must be after the start time."]
        if errors:
            raise RequestValidationError(errors)

        time_range = TimeRange(start, end)
        resource = self.registry.get(resource_id)
        if not resource.is_active:
            return AvailabilityCheck(
                resource=resource,
                time_range=time_range,
                available=False,
                reason=ResourceUnavailableError.default_message,
            )

        report = self.detector.check_cached(
            resource.pk, time_range, resource.capacity, exclude_booking_id=exclude_booking_id
        )
        return AvailabilityCheck(
            resource=resource,
            time_range=time_range,
            available=not report.has_conflict,
            reason=report.reason,
            report=report,
        )

    def resource_availability(self, resource_id: int, start_date: date, end_date: date) -> Dict[str, Any]:
        """Active bookings of a resource within whole days, ordered by start."""
        errors: Dict[str, List[str]] = {}
        today = timezone.localdate(self.clock())
        if start_date < today:
            errors["start_date"] = ["The start date must be today or later."]
        if end_date < start_date:
            errors["end_date"] = ["The end date must not be before the start date."]
        elif (end_date - start_date).days > self.policy.availability_max_days:
            errors["end_date"] = [
                f"Date range cannot exceed {self.policy.availability_max_days} days."
            ]
        if errors:
            raise RequestValidationError(errors)

        resource = self.registry.get(resource_id)
        window = TimeRange.for_dates(start_date, end_date, timezone.get_current_timezone())

        def compute() -> List[Dict[str, Any]]:
            bookings = (
                Booking.objects.filter(resource_id=resource.pk, status__in=lifecycle.ACTIVE_STATUSES)
                .filter(overlapping_filter(window))
                .order_by("start_time", "id")
                .values("id", "start_time", "end_time", "status")
            )
            return [
                {
                    "id": row["id"],
                    "start_time": row["start_time"].isoformat(),
                    "end_time": row["end_time"].isoformat(),
                    "status": row["status"],
                }
                for row in bookings
            ]

        availability = self.cache.remember_availability(resource.pk, start_date, end_date, compute)
        return {
            "resource": {
                "id": resource.pk,
                "name": resource.name,
                "capacity": resource.capacity,
                "is_active": resource.is_active,
            },
            "availability": availability,
            "date_range": {
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
            },
        }

    # ===== Helpers =====

    def _transition(
        self,
        booking_id: int,
        actor: Actor,
        target: str,
        *,
        reason: str | None = None,
    ) -> Booking:
        try:
            with DjangoUnitOfWork() as uow:
                booking = self._locked_booking(booking_id, uow)
                self.lifecycle.ensure_transition(
                    actor=actor,
                    owner_id=booking.user_id,
                    current=booking.status,
                    target=target,
                    start_time=booking.start_time,
                    now=self.clock(),
                )
                booking.status = target
                update_fields = ["status", "updated_at"]
                if target == lifecycle.CANCELLED:
                    booking.cancelled_at = self.clock()
                    booking.cancellation_reason = self._cancellation_reason(actor, booking, reason)
                    update_fields += ["cancelled_at", "cancellation_reason"]
                booking.save(update_fields=update_fields)
                uow.collect(self._status_event(booking, actor))
                self._invalidate_after_commit(uow, booking.resource_id, booking.time_range)
        except DatabaseError as e:
            self._infrastructure_failure(target, e, actor=actor, booking_id=booking_id)

        return self.get_booking(booking.pk, actor)

    def _locked_booking(self, booking_id: int, uow: DjangoUnitOfWork) -> Booking:
        """Lock the booking's resource, then read the booking again."""
        try:
            resource_id = Booking.objects.values_list("resource_id", flat=True).get(pk=booking_id)
        except (Booking.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Booking not found.", details={"booking_id": booking_id})

        resource = self.registry.get_for_update(resource_id, uow)
        try:
            booking = Booking.objects.using(uow.using).select_related("user").get(pk=booking_id)
        except Booking.DoesNotExist:
            raise NotFoundError("Booking not found.", details={"booking_id": booking_id})
        booking.resource = resource
        return booking

    def _invalidate_after_commit(
        self, uow: DjangoUnitOfWork, resource_id: int, *windows: TimeRange
    ) -> None:
        """Forget cached answers for ``windows`` once the transaction has committed."""
        for window in dict.fromkeys(windows):
            uow.after_commit(lambda window=window: self.cache.invalidate_window(resource_id, window))

    def _validate_purpose(self, purpose: str, errors: Dict[str, List[str]]) -> None:
        if len(purpose) < self.policy.purpose_min_length:
            errors.setdefault("purpose", []).append(
                f"The purpose must be at least {self.policy.purpose_min_length} characters."
            )
        elif len(purpose) > self.policy.purpose_max_length:
            errors.setdefault("purpose", []).append(
                f"The purpose may not be greater than {self.policy.purpose_max_length} characters."
            )

    def _validate_interval(
        self,
        start: datetime,
        end: datetime,
        errors: Dict[str, List[str]],
        *,
        check_past: bool = True,
    ) -> TimeRange | None:
        if check_past and start < self.clock():
            errors.setdefault("start_time", []).append("The start time must not be in the past.")
        if end <= start:
            errors.setdefault("end_time", []).append("The end time must be after the start time.")
            return None

        time_range = TimeRange(start, end)
        duration = time_range.duration
        if duration < self.policy.min_duration:
            errors.setdefault("end_time", []).append(
                f"Booking duration must be at least {_format_duration(self.policy.min_duration)}."
            )
        elif duration > self.policy.max_duration:
            errors.setdefault("end_time", []).append(
                f"Booking duration cannot exceed {_format_duration(self.policy.max_duration)}."
            )
        return time_range

    def _ensure_resource_active(self, resource: Resource) -> None:
        if not resource.is_active:
            raise ResourceUnavailableError(
                "Resource is not available for booking.", details={"resource_id": resource.pk}
            )

    def _ensure_no_conflict(
        self,
        resource: Resource,
        time_range: TimeRange,
        *,
        exclude_booking_id: int | None = None,
        using: str | None = None,
    ) -> None:
        report = self.detector.check(
            resource.pk,
            time_range,
            resource.capacity,
            exclude_booking_id=exclude_booking_id,
            using=using,
        )
        if report.has_conflict:
            logger.info(
                f"Conflict on resource {resource.pk} for {time_range}: "
                f"{report.overlapping_count} overlapping, capacity {report.capacity}"
            )
            raise BookingConflictError(
                report.reason,
                report.conflicting_dicts(),
                capacity=report.capacity,
            )

    def _lock_actor(self, user_id: int, *, using: str | None = None) -> None:
        """
        Lock the booking owner's row until the transaction ends.

        Admissions for the same user on different resources hold different
        resource locks; this serializes their active-booking count. Always
        taken after the resource lock.
        """
        list(
            get_user_model()
            .objects.using(using)
            .select_for_update()
            .filter(pk=user_id)
            .values_list("pk", flat=True)
        )

    def _ensure_below_active_limit(self, user_id: int, *, using: str | None = None) -> None:
        active = Booking.objects.using(using).filter(
            user_id=user_id,
            status__in=lifecycle.ACTIVE_STATUSES,
            end_time__gt=self.clock(),
        ).count()
        if active >= self.policy.max_active_per_user:
            raise ActiveBookingLimitError(self.policy.max_active_per_user)

    def _cancellation_reason(self, actor: Actor, booking: Booking, reason: str | None) -> str:
        reason = (reason or "").strip()
        if reason:
            return reason[:255]
        if actor.is_admin and actor.user_id != booking.user_id:
            return ADMIN_CANCELLATION_REASON
        return USER_CANCELLATION_REASON

    def _event(self, event_class, booking: Booking, resource: Resource, **extra):  # type: ignore
        return event_class(
            aggregate_id=booking.pk,
            booking_id=booking.pk,
            resource_id=resource.pk,
            resource_name=resource.name,
            recipient_id=booking.user_id,
            start_time=booking.start_time,
            end_time=booking.end_time,
            **extra,
        )

    def _status_event(self, booking: Booking, actor: Actor):  # type: ignore
        event_class = EVENT_FOR_STATUS[booking.status]
        if event_class is BookingCancelled:
            return self._event(
                event_class,
                booking,
                booking.resource,
                reason=booking.cancellation_reason,
                cancelled_by=actor.user_id,
            )
        return self._event(event_class, booking, booking.resource)

    def _infrastructure_failure(self, operation: str, error: Exception, **context: Any) -> None:
        actor = context.pop("actor", None)
        time_range = context.pop("time_range", None)
        logger.error(
            f"Booking {operation} failed: {error} "
            f"(actor={getattr(actor, 'user_id', None)}, admin={getattr(actor, 'is_admin', None)}, "
            f"window={time_range}, context={context})",
            exc_info=True,
        )
        raise InfrastructureError(code=f"booking_{operation}_failed") from error


__all__ = [
    "ADMIN_CANCELLATION_REASON",
    "USER_CANCELLATION_REASON",
    "AvailabilityCheck",
    "BookingAdmissionEngine",
    "CreateBookingCommand",
    "UpdateBookingCommand",
]
