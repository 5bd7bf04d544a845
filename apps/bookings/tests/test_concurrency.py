"""Concurrent admissions serialize on the resource lock and the owner's row."""

from __future__ import annotations

import threading
from datetime import timedelta
from unittest import mock

from django.db import connection
from django.test import TransactionTestCase

from apps.bookings.application.admission import BookingAdmissionEngine, CreateBookingCommand
from apps.bookings.exceptions import ActiveBookingLimitError, BookingConflictError
from apps.bookings.models import Booking
from apps.users.actor import Actor

from .helpers import make_booking, make_resource, make_user, tomorrow_at


class ConcurrentAdmissionTests(TransactionTestCase):
    def setUp(self) -> None:
        self.users = [make_user(), make_user()]
        self.room = make_resource(capacity=1)
        self.hall = make_resource(capacity=2)

        # Notification delivery is not under test here
        patcher = mock.patch("apps.notifications.services.default_sink")
        patcher.start()
        self.addCleanup(patcher.stop)

    def _race(self, resource, users):
        return self._race_pairs([(resource, user) for user in users])

    def _race_pairs(self, attempts):
        barrier = threading.Barrier(len(attempts))
        outcomes = []
        guard = threading.Lock()

        def attempt(resource, user):
            try:
                barrier.wait(timeout=5)
                booking = BookingAdmissionEngine().create(
                    Actor.from_user(user),
                    CreateBookingCommand(
                        resource_id=resource.pk,
                        start_time=tomorrow_at(10),
                        end_time=tomorrow_at(11),
                        purpose="Concurrent booking attempt",
                    ),
                )
                result = booking
            except Exception as e:
                result = e
            finally:
                connection.close()
            with guard:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=pair) for pair in attempts]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        return outcomes

    def test_only_one_of_two_overlapping_requests_is_admitted(self) -> None:
        outcomes = self._race(self.room, self.users)

        admitted = [o for o in outcomes if isinstance(o, Booking)]
        refused = [o for o in outcomes if isinstance(o, BookingConflictError)]
        self.assertEqual(len(outcomes), 2, outcomes)
        self.assertEqual(len(admitted), 1, outcomes)
        self.assertEqual(len(refused), 1, outcomes)
        self.assertEqual(Booking.objects.filter(resource=self.room).count(), 1)

    def test_capacity_is_never_exceeded_under_contention(self) -> None:
        users = self.users + [make_user(), make_user()]

        outcomes = self._race(self.hall, users)

        admitted = [o for o in outcomes if isinstance(o, Booking)]
        self.assertEqual(len(admitted), 2, outcomes)
        self.assertTrue(all(isinstance(o, (Booking, BookingConflictError)) for o in outcomes), outcomes)
        self.assertEqual(Booking.objects.filter(resource=self.hall).count(), 2)

    def test_active_limit_holds_across_resources_under_contention(self) -> None:
        user = self.users[0]
        for day in range(1, 5):
            start = tomorrow_at(9) + timedelta(days=day)
            make_booking(make_resource(), user, start, start + timedelta(hours=1))

        outcomes = self._race_pairs([(self.room, user), (self.hall, user)])

        admitted = [o for o in outcomes if isinstance(o, Booking)]
        limited = [o for o in outcomes if isinstance(o, ActiveBookingLimitError)]
        self.assertEqual(len(admitted), 1, outcomes)
        self.assertEqual(len(limited), 1, outcomes)
        self.assertEqual(Booking.objects.filter(user=user).count(), 5)
