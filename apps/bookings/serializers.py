"""Serializers for the booking domain."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from apps.resources.serializers import ResourceSummarySerializer
from apps.users.serializers import UserSummarySerializer

from .domain.lifecycle import ALL_STATUSES
from .models import Booking


class BookingCreateSerializer(serializers.Serializer):
    """Shape of a booking request. Business rules live in the admission engine."""

    resource_id = serializers.IntegerField(min_value=1)
    start_time = serializers.DateTimeField()
    end_time = serializers.DateTimeField()
    purpose = serializers.CharField(allow_blank=True, max_length=2000)


class BookingUpdateSerializer(serializers.Serializer):
    start_time = serializers.DateTimeField(required=False)
    end_time = serializers.DateTimeField(required=False)
    purpose = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    status = serializers.ChoiceField(choices=sorted(ALL_STATUSES), required=False)
    cancellation_reason = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate(self, attrs):  # type: ignore
        if "resource_id" in self.initial_data:
            raise serializers.ValidationError(
                {"resource_id": ["The resource of an existing booking cannot be changed."]}
            )
        return attrs


class BookingCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)


class AvailabilityCheckSerializer(serializers.Serializer):
    resource_id = serializers.IntegerField(min_value=1)
    start_time = serializers.DateTimeField()
    end_time = serializers.DateTimeField()
    exclude_booking_id = serializers.IntegerField(required=False, min_value=1)


class BookingSerializer(serializers.ModelSerializer):
    """Booking with its resource and requester denormalized for display."""

    resource = ResourceSummarySerializer(read_only=True)
    user = UserSummarySerializer(read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "resource",
            "user",
            "start_time",
            "end_time",
            "status",
            "purpose",
            "cancelled_at",
            "cancellation_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields
