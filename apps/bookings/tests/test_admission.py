"""Admission engine: validation, conflicts, limits, lifecycle and side effects."""

from __future__ import annotations

from datetime import timedelta
from unittest import mock

import pytest
from django.core import mail
from django.db import DatabaseError
from django.utils import timezone

from apps.bookings.application.admission import (
    ADMIN_CANCELLATION_REASON,
    USER_CANCELLATION_REASON,
    BookingAdmissionEngine,
    CreateBookingCommand,
    UpdateBookingCommand,
)
from apps.bookings.cache import DjangoConflictCache
from apps.bookings.exceptions import (
    ActiveBookingLimitError,
    BookingConflictError,
    InvalidTransitionError,
    ResourceUnavailableError,
)
from apps.bookings.models import Booking
from apps.notifications.models import Notification
from apps.users.actor import Actor
from shared.domain.exceptions import (
    InfrastructureError,
    NotFoundError,
    PermissionDeniedError,
    RequestValidationError,
)
from shared.domain.value_objects import TimeRange

from .helpers import make_admin, make_booking, make_resource, make_user, tomorrow_at

PURPOSE = "Group study for finals"


@pytest.fixture
def engine():
    return BookingAdmissionEngine()


@pytest.fixture
def student(db):
    return make_user(first_name="Sam", last_name="Student")


@pytest.fixture
def admin(db):
    return make_admin()


@pytest.fixture
def resource(db):
    return make_resource(capacity=1, name="Seminar Room")


def actor_for(user) -> Actor:
    return Actor.from_user(user)


def command(resource, start, end, purpose=PURPOSE) -> CreateBookingCommand:
    return CreateBookingCommand(resource_id=resource.pk, start_time=start, end_time=end, purpose=purpose)


# ----- create -----

@pytest.mark.django_db
def test_create_admits_pending_booking(engine, student, resource):
    booking = engine.create(actor_for(student), command(resource, tomorrow_at(10), tomorrow_at(11)))

    assert booking.status == Booking.Status.PENDING
    assert booking.user_id == student.pk
    assert booking.resource_id == resource.pk
    assert booking.purpose == PURPOSE


@pytest.mark.django_db
def test_create_trims_purpose(engine, student, resource):
    booking = engine.create(
        actor_for(student), command(resource, tomorrow_at(10), tomorrow_at(11), purpose=f"  {PURPOSE}  ")
    )
    assert booking.purpose == PURPOSE


@pytest.mark.django_db
@pytest.mark.parametrize(
    "start_offset,duration,field,message",
    [
        (timedelta(days=1), timedelta(minutes=20), "end_time", "Booking duration must be at least 30 minutes."),
        (timedelta(days=1), timedelta(hours=9), "end_time", "Booking duration cannot exceed 8 hours."),
        (timedelta(days=1), timedelta(0), "end_time", "The end time must be after the start time."),
        (-timedelta(hours=1), timedelta(hours=2), "start_time", "The start time must not be in the past."),
    ],
)
def test_create_rejects_invalid_interval(engine, student, resource, start_offset, duration, field, message):
    start = timezone.now() + start_offset
    with pytest.raises(RequestValidationError) as excinfo:
        engine.create(actor_for(student), command(resource, start, start + duration))

    assert message in excinfo.value.errors[field]
    assert excinfo.value.status_code == 422
    assert not Booking.objects.exists()


@pytest.mark.django_db
def test_create_rejects_short_purpose(engine, student, resource):
    with pytest.raises(RequestValidationError) as excinfo:
        engine.create(actor_for(student), command(resource, tomorrow_at(10), tomorrow_at(11), purpose="Study"))

    assert excinfo.value.errors["purpose"] == ["The purpose must be at least 10 characters."]


@pytest.mark.django_db
def test_create_unknown_resource_is_not_found(engine, student, resource):
    bad = CreateBookingCommand(
        resource_id=resource.pk + 1000, start_time=tomorrow_at(10), end_time=tomorrow_at(11), purpose=PURPOSE
    )
    with pytest.raises(NotFoundError):
        engine.create(actor_for(student), bad)


@pytest.mark.django_db
def test_create_on_inactive_resource_is_refused(engine, student):
    closed = make_resource(is_active=False)
    with pytest.raises(ResourceUnavailableError) as excinfo:
        engine.create(actor_for(student), command(closed, tomorrow_at(10), tomorrow_at(11)))
    assert excinfo.value.status_code == 409


@pytest.mark.django_db
def test_create_overlapping_booking_reports_conflict(engine, student, resource):
    other = make_user(first_name="Olga", last_name="Other")
    existing = make_booking(resource, other, tomorrow_at(10), tomorrow_at(11), status=Booking.Status.APPROVED)

    with pytest.raises(BookingConflictError) as excinfo:
        engine.create(actor_for(student), command(resource, tomorrow_at(10, 30), tomorrow_at(11, 30)))

    error = excinfo.value
    assert error.status_code == 409
    assert error.message.endswith("by Olga Other.")
    assert [c["id"] for c in error.details["conflicting_bookings"]] == [existing.pk]
    assert error.details["capacity"] == 1
    assert Booking.objects.filter(user=student).count() == 0


@pytest.mark.django_db
def test_back_to_back_booking_is_admitted(engine, student, resource):
    make_booking(resource, make_user(), tomorrow_at(10), tomorrow_at(11), status=Booking.Status.APPROVED)

    booking = engine.create(actor_for(student), command(resource, tomorrow_at(11), tomorrow_at(12)))

    assert booking.pk is not None


@pytest.mark.django_db
def test_shared_resource_takes_bookings_up_to_capacity(engine):
    hall = make_resource(capacity=2)
    engine.create(actor_for(make_user()), command(hall, tomorrow_at(9), tomorrow_at(10)))
    engine.create(actor_for(make_user()), command(hall, tomorrow_at(9), tomorrow_at(10)))

    with pytest.raises(BookingConflictError) as excinfo:
        engine.create(actor_for(make_user()), command(hall, tomorrow_at(9, 30), tomorrow_at(10, 30)))

    assert excinfo.value.message == "Resource capacity (2) is fully booked for the selected time period."


@pytest.mark.django_db
def test_sixth_active_booking_is_rate_limited(engine, student):
    for day in range(1, 6):
        start = tomorrow_at(9) + timedelta(days=day)
        make_booking(make_resource(), student, start, start + timedelta(hours=1))
    make_booking(
        make_resource(), student, tomorrow_at(9), tomorrow_at(10), status=Booking.Status.CANCELLED
    )

    with pytest.raises(ActiveBookingLimitError) as excinfo:
        engine.create(actor_for(student), command(make_resource(), tomorrow_at(13), tomorrow_at(14)))

    assert excinfo.value.status_code == 429
    assert excinfo.value.message == "You have reached the maximum number of active bookings (5)."


@pytest.mark.django_db
def test_finished_bookings_do_not_count_towards_limit(engine, student):
    past = timezone.now() - timedelta(days=2)
    for _ in range(5):
        make_booking(make_resource(), student, past, past + timedelta(hours=1), status=Booking.Status.APPROVED)

    booking = engine.create(actor_for(student), command(make_resource(), tomorrow_at(13), tomorrow_at(14)))

    assert booking.status == Booking.Status.PENDING


# ----- events and cache -----

@pytest.mark.django_db
def test_created_event_is_delivered_after_commit(engine, student, resource, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        booking = engine.create(actor_for(student), command(resource, tomorrow_at(10), tomorrow_at(11)))
        assert not Notification.objects.exists()

    assert len(callbacks) == 1
    notification = Notification.objects.get(user=student)
    assert notification.booking_id == booking.pk
    assert notification.event_type == "created"
    assert notification.title == "Booking Created"
    assert notification.data["resource_name"] == "Seminar Room"
    assert len(mail.outbox) == 1


@pytest.mark.django_db
def test_refused_booking_publishes_nothing(engine, student, resource, django_capture_on_commit_callbacks):
    make_booking(resource, make_user(), tomorrow_at(10), tomorrow_at(11))

    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        with pytest.raises(BookingConflictError):
            engine.create(actor_for(student), command(resource, tomorrow_at(10), tomorrow_at(11)))

    assert callbacks == []
    assert not Notification.objects.exists()


@pytest.mark.django_db
def test_create_invalidates_cached_availability(engine, student, resource, django_capture_on_commit_callbacks):
    before = engine.check_availability(resource.pk, tomorrow_at(10), tomorrow_at(11))
    assert before.available

    with django_capture_on_commit_callbacks(execute=True):
        engine.create(actor_for(student), command(resource, tomorrow_at(10, 30), tomorrow_at(11, 30)))

    after = engine.check_availability(resource.pk, tomorrow_at(10), tomorrow_at(11))
    assert not after.available
    assert after.report.overlapping_count == 1


@pytest.mark.django_db
def test_cancel_invalidates_cached_availability(engine, student, resource, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        booking = engine.create(actor_for(student), command(resource, tomorrow_at(10), tomorrow_at(11)))
    assert not engine.check_availability(resource.pk, tomorrow_at(10), tomorrow_at(11)).available

    with django_capture_on_commit_callbacks(execute=True):
        engine.cancel(booking.pk, actor_for(student))

    assert engine.check_availability(resource.pk, tomorrow_at(10), tomorrow_at(11)).available


@pytest.mark.django_db
def test_cache_is_invalidated_only_after_commit(engine, student, resource, django_capture_on_commit_callbacks):
    with mock.patch.object(engine.cache, "invalidate_window") as invalidate:
        with django_capture_on_commit_callbacks(execute=True):
            engine.create(actor_for(student), command(resource, tomorrow_at(10), tomorrow_at(11)))
            invalidate.assert_not_called()

    invalidate.assert_called_once()
    assert invalidate.call_args.args[0] == resource.pk


@pytest.mark.django_db
def test_moving_a_booking_invalidates_both_windows(engine, student, resource, django_capture_on_commit_callbacks):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))
    old_window = booking.time_range

    with mock.patch.object(engine.cache, "invalidate_window") as invalidate:
        with django_capture_on_commit_callbacks(execute=True):
            engine.update(
                booking.pk,
                actor_for(student),
                UpdateBookingCommand(start_time=tomorrow_at(14), end_time=tomorrow_at(15)),
            )

    windows = [call.args[1] for call in invalidate.call_args_list]
    assert windows == [old_window, TimeRange(tomorrow_at(14), tomorrow_at(15))]


@pytest.mark.django_db
def test_cache_outage_does_not_fail_a_committed_booking(engine, student, resource, django_capture_on_commit_callbacks):
    failing = mock.Mock()
    failing.get.side_effect = ConnectionError("cache down")
    failing.set.side_effect = ConnectionError("cache down")
    failing.delete.side_effect = ConnectionError("cache down")
    failing.delete_many.side_effect = ConnectionError("cache down")

    with mock.patch.object(DjangoConflictCache, "backend", new_callable=mock.PropertyMock, return_value=failing):
        assert engine.check_availability(resource.pk, tomorrow_at(10), tomorrow_at(11)).available

        with django_capture_on_commit_callbacks(execute=True):
            booking = engine.create(actor_for(student), command(resource, tomorrow_at(10), tomorrow_at(11)))

        assert not engine.check_availability(resource.pk, tomorrow_at(10), tomorrow_at(11)).available

    assert Booking.objects.filter(pk=booking.pk, status=Booking.Status.PENDING).exists()
    assert failing.delete_many.called


@pytest.mark.django_db
def test_failing_invalidation_after_commit_keeps_the_booking(engine, student, resource, django_capture_on_commit_callbacks):
    with mock.patch.object(engine.cache, "invalidate_window", side_effect=ConnectionError("cache down")):
        with django_capture_on_commit_callbacks(execute=True):
            booking = engine.create(actor_for(student), command(resource, tomorrow_at(10), tomorrow_at(11)))

    assert booking.status == Booking.Status.PENDING
    assert Booking.objects.filter(pk=booking.pk).exists()
    assert Notification.objects.filter(user=student, event_type="created").exists()


# ----- storage failures -----

@pytest.mark.django_db
def test_database_error_on_create_becomes_infrastructure_error(engine, student, resource):
    with mock.patch.object(Booking.objects, "create", side_effect=DatabaseError("disk I/O error")):
        with pytest.raises(InfrastructureError) as excinfo:
            engine.create(actor_for(student), command(resource, tomorrow_at(10), tomorrow_at(11)))

    assert excinfo.value.code == "booking_create_failed"
    assert excinfo.value.status_code == 500
    assert "disk I/O error" not in excinfo.value.message
    assert isinstance(excinfo.value.__cause__, DatabaseError)
    assert not Booking.objects.exists()


@pytest.mark.django_db
def test_database_error_on_cancel_leaves_booking_untouched(engine, student, resource, django_capture_on_commit_callbacks):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))

    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        with mock.patch.object(Booking, "save", side_effect=DatabaseError("connection reset")):
            with pytest.raises(InfrastructureError) as excinfo:
                engine.cancel(booking.pk, actor_for(student))

    assert excinfo.value.code == "booking_cancelled_failed"
    assert callbacks == []
    booking.refresh_from_db()
    assert booking.status == Booking.Status.PENDING


@pytest.mark.django_db
def test_create_locks_the_owner_after_the_resource(engine, student, resource):
    calls = []
    lock_resource = engine.registry.get_for_update

    def record_resource(resource_id, uow):
        calls.append("resource")
        return lock_resource(resource_id, uow)

    with mock.patch.object(engine.registry, "get_for_update", side_effect=record_resource), \
            mock.patch.object(engine, "_lock_actor", side_effect=lambda user_id, using: calls.append(user_id)):
        engine.create(actor_for(student), command(resource, tomorrow_at(10), tomorrow_at(11)))

    assert calls == ["resource", student.pk]


# ----- update -----

@pytest.mark.django_db
def test_owner_moves_pending_booking_over_its_own_slot(engine, student, resource):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))

    updated = engine.update(
        booking.pk,
        actor_for(student),
        UpdateBookingCommand(start_time=tomorrow_at(10, 30), end_time=tomorrow_at(11, 30)),
    )

    assert updated.start_time == tomorrow_at(10, 30)
    assert updated.end_time == tomorrow_at(11, 30)


@pytest.mark.django_db
def test_update_into_another_booking_conflicts(engine, student, resource):
    make_booking(resource, make_user(), tomorrow_at(12), tomorrow_at(13))
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))

    with pytest.raises(BookingConflictError):
        engine.update(
            booking.pk, actor_for(student), UpdateBookingCommand(end_time=tomorrow_at(12, 30))
        )

    booking.refresh_from_db()
    assert booking.end_time == tomorrow_at(11)


@pytest.mark.django_db
def test_update_validates_new_interval(engine, student, resource):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))

    with pytest.raises(RequestValidationError) as excinfo:
        engine.update(booking.pk, actor_for(student), UpdateBookingCommand(end_time=tomorrow_at(10, 10)))

    assert "end_time" in excinfo.value.errors


@pytest.mark.django_db
def test_owner_cannot_edit_approved_booking(engine, student, resource):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11), status=Booking.Status.APPROVED)

    with pytest.raises(InvalidTransitionError):
        engine.update(booking.pk, actor_for(student), UpdateBookingCommand(purpose="A different purpose"))


@pytest.mark.django_db
def test_stranger_cannot_edit(engine, student, resource):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))

    with pytest.raises(PermissionDeniedError):
        engine.update(booking.pk, actor_for(make_user()), UpdateBookingCommand(purpose="Taking this one over"))


@pytest.mark.django_db
def test_only_admin_changes_status_through_update(engine, student, admin, resource):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))

    with pytest.raises(PermissionDeniedError):
        engine.update(booking.pk, actor_for(student), UpdateBookingCommand(status="approved"))

    updated = engine.update(booking.pk, actor_for(admin), UpdateBookingCommand(status="approved"))
    assert updated.status == Booking.Status.APPROVED


@pytest.mark.django_db
def test_admin_cannot_reopen_cancelled_booking(engine, student, admin, resource):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11), status=Booking.Status.CANCELLED)

    with pytest.raises(InvalidTransitionError):
        engine.update(booking.pk, actor_for(admin), UpdateBookingCommand(status="pending"))


# ----- lifecycle -----

@pytest.mark.django_db
def test_approve_twice_is_an_invalid_transition(engine, student, admin, resource):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))

    approved = engine.approve(booking.pk, actor_for(admin))
    assert approved.status == Booking.Status.APPROVED

    with pytest.raises(InvalidTransitionError) as excinfo:
        engine.approve(booking.pk, actor_for(admin))
    assert "already approved" in excinfo.value.message


@pytest.mark.django_db
def test_non_admin_cannot_approve_or_reject(engine, student, resource):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))

    with pytest.raises(PermissionDeniedError):
        engine.approve(booking.pk, actor_for(student))
    with pytest.raises(PermissionDeniedError):
        engine.reject(booking.pk, actor_for(student))


@pytest.mark.django_db
def test_rejected_booking_cannot_be_approved(engine, student, admin, resource):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))
    engine.reject(booking.pk, actor_for(admin))

    with pytest.raises(InvalidTransitionError):
        engine.approve(booking.pk, actor_for(admin))


@pytest.mark.django_db
def test_owner_cancel_uses_default_reason(engine, student, resource):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))

    cancelled = engine.cancel(booking.pk, actor_for(student))

    assert cancelled.status == Booking.Status.CANCELLED
    assert cancelled.cancellation_reason == USER_CANCELLATION_REASON
    assert cancelled.cancelled_at is not None


@pytest.mark.django_db
def test_admin_cancel_records_reason(engine, student, admin, resource):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11), status=Booking.Status.APPROVED)

    assert engine.cancel(booking.pk, actor_for(admin)).cancellation_reason == ADMIN_CANCELLATION_REASON

    other = make_booking(resource, student, tomorrow_at(12), tomorrow_at(13))
    cancelled = engine.cancel(other.pk, actor_for(admin), reason="Room under maintenance")
    assert cancelled.cancellation_reason == "Room under maintenance"


@pytest.mark.django_db
def test_owner_cannot_cancel_inside_buffer(engine, student, resource):
    soon = timezone.now() + timedelta(hours=1)
    booking = make_booking(resource, student, soon, soon + timedelta(hours=1))

    with pytest.raises(InvalidTransitionError) as excinfo:
        engine.cancel(booking.pk, actor_for(student))

    assert excinfo.value.code == "cancellation_window_closed"
    booking.refresh_from_db()
    assert booking.status == Booking.Status.PENDING


@pytest.mark.django_db
def test_cancelling_twice_is_an_invalid_transition(engine, student, resource):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))
    engine.cancel(booking.pk, actor_for(student))

    with pytest.raises(InvalidTransitionError):
        engine.cancel(booking.pk, actor_for(student))


@pytest.mark.django_db
def test_status_events_notify_the_owner(engine, student, admin, resource, django_capture_on_commit_callbacks):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))

    with django_capture_on_commit_callbacks(execute=True):
        engine.approve(booking.pk, actor_for(admin))
    with django_capture_on_commit_callbacks(execute=True):
        engine.cancel(booking.pk, actor_for(admin), reason="Double booked")

    kinds = list(Notification.objects.filter(user=student).order_by("id").values_list("event_type", flat=True))
    assert kinds == ["approved", "cancelled"]
    assert Notification.objects.get(event_type="cancelled").data["reason"] == "Double booked"


# ----- purge and queries -----

@pytest.mark.django_db
def test_admin_purges_booking(engine, student, admin, resource):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))

    with pytest.raises(PermissionDeniedError):
        engine.purge(booking.pk, actor_for(student))

    engine.purge(booking.pk, actor_for(admin))
    assert not Booking.objects.filter(pk=booking.pk).exists()

    with pytest.raises(NotFoundError):
        engine.purge(booking.pk, actor_for(admin))


@pytest.mark.django_db
def test_visibility_is_scoped_to_owner(engine, student, admin, resource):
    mine = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))
    theirs = make_booking(resource, make_user(), tomorrow_at(12), tomorrow_at(13))

    assert list(engine.visible_bookings(actor_for(student))) == [mine]
    assert set(engine.visible_bookings(actor_for(admin))) == {mine, theirs}
    with pytest.raises(NotFoundError):
        engine.get_booking(theirs.pk, actor_for(student))


@pytest.mark.django_db
def test_check_availability_reports_inactive_resource(engine):
    closed = make_resource(is_active=False)

    result = engine.check_availability(closed.pk, tomorrow_at(10), tomorrow_at(11))

    assert not result.available
    assert result.reason == "Resource is not available for booking."


@pytest.mark.django_db
def test_check_availability_can_exclude_a_booking(engine, student, resource):
    booking = make_booking(resource, student, tomorrow_at(10), tomorrow_at(11))

    assert not engine.check_availability(resource.pk, tomorrow_at(10), tomorrow_at(11)).available
    assert engine.check_availability(
        resource.pk, tomorrow_at(10), tomorrow_at(11), exclude_booking_id=booking.pk
    ).available


@pytest.mark.django_db
def test_check_availability_validates_window(engine, resource):
    with pytest.raises(RequestValidationError):
        engine.check_availability(resource.pk, tomorrow_at(11), tomorrow_at(10))
