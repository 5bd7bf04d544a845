"""User API views."""

from __future__ import annotations

from rest_framework import permissions  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import APIView  # type: ignore

from shared.infrastructure.validation import validated_data

from .serializers import NotificationPreferencesSerializer, UserSerializer


class MeView(APIView):
    """Profile of the current user."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):  # type: ignore
        return Response(UserSerializer(request.user).data)


class NotificationPreferencesView(APIView):
    """Read and partially update the current user's notification preferences."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):  # type: ignore
        return Response(request.user.get_notification_preferences())

    def patch(self, request):  # type: ignore
        changes = validated_data(NotificationPreferencesSerializer, request.data)
        preferences = request.user.update_notification_preferences(dict(changes))
        return Response(preferences)

    def put(self, request):  # type: ignore
        return self.patch(request)
