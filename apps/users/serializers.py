"""Serializers for user-related API endpoints."""

from __future__ import annotations

from django.contrib.auth import get_user_model  # type: ignore
from rest_framework import serializers  # type: ignore

from .models import DEFAULT_NOTIFICATION_PREFERENCES

User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ["id", "email", "username", "first_name", "last_name", "role", "created_at"]
        read_only_fields = fields


class UserSummarySerializer(serializers.ModelSerializer):
    """Compact user block embedded in booking responses."""

    name = serializers.CharField(source="display_name", read_only=True)

    class Meta:
        model = User
        fields = ["id", "name", "email"]
        read_only_fields = fields


class NotificationPreferencesSerializer(serializers.Serializer):
    """Partial update of the known preference flags."""

    email_booking_updates = serializers.BooleanField(required=False)
    in_app_booking_updates = serializers.BooleanField(required=False)
    push_reminders = serializers.BooleanField(required=False)

    def validate(self, attrs):  # type: ignore
        unknown = set(self.initial_data) - set(DEFAULT_NOTIFICATION_PREFERENCES)
        if unknown:
            raise serializers.ValidationError(
                {key: ["Unknown preference."] for key in sorted(unknown)}
            )
        return attrs
