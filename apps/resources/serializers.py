"""Serializers for resources."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import Resource


class ResourceSerializer(serializers.ModelSerializer):
    capacity = serializers.IntegerField(min_value=1, required=False, default=1)

    class Meta:
        model = Resource
        fields = [
            "id",
            "name",
            "description",
            "location",
            "capacity",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]


class ResourceSummarySerializer(serializers.ModelSerializer):
    """Compact resource block embedded in booking responses."""

    class Meta:
        model = Resource
        fields = ["id", "name", "location", "capacity"]
        read_only_fields = fields


class ResourceAvailabilityQuerySerializer(serializers.Serializer):
    start_date = serializers.DateField()
    end_date = serializers.DateField()
