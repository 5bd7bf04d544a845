"""Permission classes shared by the API apps."""

from __future__ import annotations

from rest_framework import permissions  # type: ignore


class IsPlatformAdmin(permissions.BasePermission):
    """Role ``admin`` or superuser."""

    message = "Administrator privileges are required."

    def has_permission(self, request, view):  # type: ignore
        user = request.user
        return bool(user and user.is_authenticated and user.is_admin())


class IsAdminOrReadOnly(permissions.BasePermission):
    """Authenticated users may read, only administrators may write."""

    def has_permission(self, request, view):  # type: ignore
        user = request.user
        if not (user and user.is_authenticated):
            return False
        if request.method in permissions.SAFE_METHODS:
            return True
        return user.is_admin()
