"""Resource API views."""

from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend  # type: ignore
from rest_framework import viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.filters import OrderingFilter  # type: ignore
from rest_framework.response import Response  # type: ignore

from apps.bookings.application.admission import BookingAdmissionEngine
from apps.users.permissions import IsAdminOrReadOnly
from shared.infrastructure.validation import validated_data

from .filters import ResourceFilterSet
from .models import Resource
from .serializers import ResourceAvailabilityQuerySerializer, ResourceSerializer


class ResourceViewSet(viewsets.ModelViewSet):
    """Resources are readable by any authenticated user and managed by administrators."""

    queryset = Resource.objects.all()
    serializer_class = ResourceSerializer
    permission_classes = [IsAdminOrReadOnly]
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_class = ResourceFilterSet
    ordering_fields = ["name", "capacity", "created_at"]
    ordering = ["name"]

    @action(detail=True, methods=["get"])
    def availability(self, request, pk=None):  # type: ignore
        """Active bookings of the resource between ``start_date`` and ``end_date``."""
        params = validated_data(ResourceAvailabilityQuerySerializer, request.query_params)
        data = BookingAdmissionEngine().resource_availability(
            pk, params["start_date"], params["end_date"]
        )
        return Response(data)
