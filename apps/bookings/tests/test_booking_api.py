"""API tests for booking admission, lifecycle actions and listing."""

from __future__ import annotations

from datetime import timedelta
from unittest import mock

from django.db import DatabaseError
from django.test import override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.bookings.models import Booking
from apps.resources.locks import resource_locks

from .helpers import make_admin, make_booking, make_resource, make_user, tomorrow_at


class BookingAPITests(APITestCase):
    def setUp(self) -> None:
        self.student = make_user(first_name="Stu", last_name="Dent")
        self.other = make_user(first_name="Otto", last_name="Other")
        self.admin = make_admin()
        self.room = make_resource(capacity=1, name="Study Room 1")
        self.list_url = reverse("booking-list")
        self.client.force_authenticate(self.student)

    def _payload(self, start, end, **overrides):
        payload = {
            "resource_id": self.room.pk,
            "start_time": start.isoformat(),
            "end_time": end.isoformat(),
            "purpose": "Preparing the group presentation",
        }
        payload.update(overrides)
        return payload

    def _detail(self, booking, action=None):
        if action:
            return reverse(f"booking-{action}", args=[booking.pk])
        return reverse("booking-detail", args=[booking.pk])

    def test_create_booking(self) -> None:
        response = self.client.post(
            self.list_url, self._payload(tomorrow_at(10), tomorrow_at(11)), format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data["status"], "pending")
        self.assertEqual(response.data["resource"]["id"], self.room.pk)
        self.assertEqual(response.data["user"]["email"], self.student.email)
        self.assertEqual(response.data["user"]["name"], "Stu Dent")

    def test_conflicting_booking_returns_409_with_details(self) -> None:
        existing = make_booking(self.room, self.other, tomorrow_at(10), tomorrow_at(11), status="approved")

        response = self.client.post(
            self.list_url, self._payload(tomorrow_at(10, 30), tomorrow_at(11, 30)), format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "booking_conflict")
        self.assertTrue(response.data["detail"].endswith("by Otto Other."))
        self.assertEqual(len(response.data["conflicting_bookings"]), 1)
        conflict = response.data["conflicting_bookings"][0]
        self.assertEqual(conflict["id"], existing.pk)
        self.assertEqual(conflict["user"], "Otto Other")
        self.assertEqual(conflict["status"], "approved")

    def test_invalid_request_returns_422(self) -> None:
        response = self.client.post(
            self.list_url,
            self._payload(tomorrow_at(10), tomorrow_at(10, 20), purpose="short"),
            format="json",
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.data["code"], "validation_error")
        self.assertIn("end_time", response.data["errors"])
        self.assertIn("purpose", response.data["errors"])

    def test_storage_failure_returns_generic_500(self) -> None:
        with mock.patch.object(Booking.objects, "create", side_effect=DatabaseError("could not write to table booking")):
            response = self.client.post(
                self.list_url, self._payload(tomorrow_at(10), tomorrow_at(11)), format="json"
            )

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(
            response.data,
            {
                "detail": "An unexpected error occurred. Please try again later.",
                "code": "booking_create_failed",
            },
        )
        self.assertNotIn("could not write", str(response.data))
        self.assertFalse(Booking.objects.exists())

    @override_settings(BOOKING_LOCK_TIMEOUT_SECONDS=0.1)
    def test_busy_resource_returns_lock_timeout(self) -> None:
        held = resource_locks.acquire(self.room.pk, timeout=1)
        try:
            response = self.client.post(
                self.list_url, self._payload(tomorrow_at(10), tomorrow_at(11)), format="json"
            )
        finally:
            held.release()

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data["code"], "lock_timeout")
        self.assertEqual(response.data["detail"], "The resource is busy. Please try again.")
        self.assertEqual(response.data["resource_id"], self.room.pk)
        self.assertFalse(Booking.objects.exists())

    def test_malformed_payload_returns_422(self) -> None:
        response = self.client.post(self.list_url, {"resource_id": "abc"}, format="json")

        self.assertEqual(response.status_code, 422)
        self.assertIn("resource_id", response.data["errors"])
        self.assertIn("start_time", response.data["errors"])

    def test_active_booking_ceiling_returns_429(self) -> None:
        for day in range(1, 6):
            start = tomorrow_at(9) + timedelta(days=day)
            make_booking(make_resource(), self.student, start, start + timedelta(hours=1))

        response = self.client.post(
            self.list_url, self._payload(tomorrow_at(10), tomorrow_at(11)), format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(response.data["code"], "active_booking_limit")

    def test_inactive_resource_returns_409(self) -> None:
        self.room.is_active = False
        self.room.save()

        response = self.client.post(
            self.list_url, self._payload(tomorrow_at(10), tomorrow_at(11)), format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "resource_unavailable")

    def test_list_is_scoped_to_current_user(self) -> None:
        mine = make_booking(self.room, self.student, tomorrow_at(10), tomorrow_at(11))
        make_booking(self.room, self.other, tomorrow_at(12), tomorrow_at(13))

        response = self.client.get(self.list_url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([item["id"] for item in response.data["results"]], [mine.pk])

        self.client.force_authenticate(self.admin)
        response = self.client.get(self.list_url)
        self.assertEqual(response.data["count"], 2)

    def test_list_filters_by_status(self) -> None:
        make_booking(self.room, self.student, tomorrow_at(10), tomorrow_at(11))
        approved = make_booking(self.room, self.student, tomorrow_at(12), tomorrow_at(13), status="approved")

        response = self.client.get(self.list_url, {"status": "approved"})

        self.assertEqual([item["id"] for item in response.data["results"]], [approved.pk])

    def test_other_users_booking_is_not_found(self) -> None:
        theirs = make_booking(self.room, self.other, tomorrow_at(10), tomorrow_at(11))

        response = self.client.get(self._detail(theirs))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_owner_updates_pending_booking(self) -> None:
        booking = make_booking(self.room, self.student, tomorrow_at(10), tomorrow_at(11))

        response = self.client.patch(
            self._detail(booking), {"end_time": tomorrow_at(12).isoformat()}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        booking.refresh_from_db()
        self.assertEqual(booking.end_time, tomorrow_at(12))

    def test_resource_of_booking_cannot_change(self) -> None:
        booking = make_booking(self.room, self.student, tomorrow_at(10), tomorrow_at(11))

        response = self.client.patch(
            self._detail(booking), {"resource_id": make_resource().pk}, format="json"
        )

        self.assertEqual(response.status_code, 422)
        self.assertIn("resource_id", response.data["errors"])

    def test_owner_cancels_booking(self) -> None:
        booking = make_booking(self.room, self.student, tomorrow_at(10), tomorrow_at(11))

        response = self.client.post(self._detail(booking, "cancel"), {}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["status"], "cancelled")
        self.assertEqual(response.data["cancellation_reason"], "Cancelled by user")

    def test_cannot_cancel_someone_elses_booking(self) -> None:
        theirs = make_booking(self.room, self.other, tomorrow_at(10), tomorrow_at(11))

        response = self.client.post(self._detail(theirs, "cancel"), {}, format="json")

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_approval_is_admin_only(self) -> None:
        booking = make_booking(self.room, self.student, tomorrow_at(10), tomorrow_at(11))

        response = self.client.post(self._detail(booking, "approve"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.admin)
        response = self.client.post(self._detail(booking, "approve"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "approved")

        response = self.client.post(self._detail(booking, "approve"))
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "invalid_transition")

    def test_admin_rejects_booking(self) -> None:
        booking = make_booking(self.room, self.student, tomorrow_at(10), tomorrow_at(11))
        self.client.force_authenticate(self.admin)

        response = self.client.post(self._detail(booking, "reject"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "rejected")

    def test_check_availability(self) -> None:
        url = reverse("booking-check-availability")
        payload = {
            "resource_id": self.room.pk,
            "start_time": tomorrow_at(10).isoformat(),
            "end_time": tomorrow_at(11).isoformat(),
        }

        response = self.client.post(url, payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["available"])

        make_booking(self.room, self.other, tomorrow_at(10, 30), tomorrow_at(11, 30))
        # Direct inserts bypass invalidation, so ask about a different window
        payload["end_time"] = tomorrow_at(12).isoformat()
        response = self.client.post(url, payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertFalse(response.data["available"])
        self.assertEqual(len(response.data["conflicting_bookings"]), 1)

    def test_purge_is_admin_only(self) -> None:
        booking = make_booking(self.room, self.student, tomorrow_at(10), tomorrow_at(11))

        response = self.client.delete(self._detail(booking))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.admin)
        response = self.client.delete(self._detail(booking))
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Booking.objects.filter(pk=booking.pk).exists())

    def test_requires_authentication(self) -> None:
        self.client.force_authenticate(None)
        response = self.client.get(self.list_url)
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
