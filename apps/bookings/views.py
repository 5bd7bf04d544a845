"""API views for the booking domain."""

from __future__ import annotations

from django.utils import timezone  # type: ignore
from rest_framework import mixins, permissions, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.pagination import PageNumberPagination  # type: ignore
from rest_framework.response import Response  # type: ignore

from apps.users.actor import Actor
from shared.infrastructure.validation import validated_data

from .application.admission import (
    BookingAdmissionEngine,
    CreateBookingCommand,
    UpdateBookingCommand,
)
from .domain.lifecycle import ALL_STATUSES
from .serializers import (
    AvailabilityCheckSerializer,
    BookingCancelSerializer,
    BookingCreateSerializer,
    BookingSerializer,
    BookingUpdateSerializer,
)

TRUTHY = {"1", "true", "yes", "on"}


class BookingPagination(PageNumberPagination):
    page_size = 10
    page_size_query_param = "page_size"
    max_page_size = 50


class BookingViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    Bookings of the current user, or every booking for administrators.

    All writes go through the admission engine; the viewset only parses
    input and renders results.
    """

    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated]
    pagination_class = BookingPagination

    def get_engine(self) -> BookingAdmissionEngine:
        return BookingAdmissionEngine()

    def get_actor(self) -> Actor:
        return Actor.from_user(self.request.user)

    def get_queryset(self):  # type: ignore
        qs = self.get_engine().visible_bookings(self.get_actor())
        params = self.request.query_params

        booking_status = params.get("status")
        if booking_status in ALL_STATUSES:
            qs = qs.filter(status=booking_status)
        if params.get("upcoming", "").lower() in TRUTHY:
            qs = qs.filter(start_time__gt=timezone.now())
        resource_id = params.get("resource")
        if resource_id and resource_id.isdigit():
            qs = qs.filter(resource_id=int(resource_id))
        return qs.order_by("-start_time", "-id")

    def retrieve(self, request, pk=None):  # type: ignore
        booking = self.get_engine().get_booking(pk, self.get_actor())
        return Response(BookingSerializer(booking).data)

    def create(self, request):  # type: ignore
        data = validated_data(BookingCreateSerializer, request.data)
        booking = self.get_engine().create(self.get_actor(), CreateBookingCommand(**data))
        return Response(BookingSerializer(booking).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):  # type: ignore
        data = validated_data(BookingUpdateSerializer, request.data)
        booking = self.get_engine().update(pk, self.get_actor(), UpdateBookingCommand(**data))
        return Response(BookingSerializer(booking).data)

    def update(self, request, pk=None):  # type: ignore
        return self.partial_update(request, pk=pk)

    def destroy(self, request, pk=None):  # type: ignore
        self.get_engine().purge(pk, self.get_actor())
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):  # type: ignore
        data = validated_data(BookingCancelSerializer, request.data)
        booking = self.get_engine().cancel(pk, self.get_actor(), data.get("reason"))
        return Response(BookingSerializer(booking).data)

    @action(detail=True, methods=["post"])
    def approve(self, request, pk=None):  # type: ignore
        booking = self.get_engine().approve(pk, self.get_actor())
        return Response(BookingSerializer(booking).data)

    @action(detail=True, methods=["post"])
    def reject(self, request, pk=None):  # type: ignore
        booking = self.get_engine().reject(pk, self.get_actor())
        return Response(BookingSerializer(booking).data)

    @action(detail=False, methods=["post"], url_path="check-availability")
    def check_availability(self, request):  # type: ignore
        """Advisory check before submitting a booking. 409 when the window is taken."""
        data = validated_data(AvailabilityCheckSerializer, request.data)
        result = self.get_engine().check_availability(
            data["resource_id"],
            data["start_time"],
            data["end_time"],
            exclude_booking_id=data.get("exclude_booking_id"),
        )
        payload = {
            "available": result.available,
            "message": result.reason,
            "resource": {
                "id": result.resource.pk,
                "name": result.resource.name,
                "capacity": result.resource.capacity,
                "is_active": result.resource.is_active,
            },
            "start_time": result.time_range.start.isoformat(),
            "end_time": result.time_range.end.isoformat(),
            "conflicting_bookings": result.report.conflicting_dicts() if result.report else [],
        }
        response_status = status.HTTP_200_OK if result.available else status.HTTP_409_CONFLICT
        return Response(payload, status=response_status)
