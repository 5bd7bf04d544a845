"""User domain models.

Users log in by email. The ``role`` field separates administrators, who
manage resources and decide on bookings, from everybody else. Superusers
are always treated as administrators.
"""

from __future__ import annotations

from typing import Any

from django.contrib.auth.models import AbstractUser, BaseUserManager  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


DEFAULT_NOTIFICATION_PREFERENCES: dict[str, bool] = {
    "email_booking_updates": True,
    "in_app_booking_updates": True,
    "push_reminders": False,
}


class CustomUserManager(BaseUserManager):
    """User manager that uses email as the login."""

    use_in_migrations = True

    def _create_user(self, email: str, password: str | None, **extra_fields: Any):
        if not email:
            raise ValueError("An email address is required to create a user.")
        email = self.normalize_email(email)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_user(self, email: str, password: str | None = None, **extra_fields: Any):
        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)
        extra_fields.setdefault("role", CustomUser.RoleChoices.REGULAR)
        return self._create_user(email, password, **extra_fields)

    def create_superuser(self, email: str, password: str | None = None, **extra_fields: Any):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("role", CustomUser.RoleChoices.ADMIN)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        return self._create_user(email, password, **extra_fields)


class CustomUser(AbstractUser):
    """Platform user with a role and notification preferences."""

    class RoleChoices(models.TextChoices):
        ADMIN = "admin", _("Administrator")
        STAFF = "staff", _("Staff")
        STUDENT = "student", _("Student")
        REGULAR = "regular", _("Regular user")

    username = models.CharField(
        _("Display name"),
        max_length=150,
        blank=True,
        help_text=_("Optional, shown in notifications and listings."),
    )
    email = models.EmailField(_("Email"), unique=True)
    role = models.CharField(
        _("Role"),
        max_length=20,
        choices=RoleChoices.choices,
        default=RoleChoices.REGULAR,
    )
    notification_preferences = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = CustomUserManager()

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS: list[str] = []

    class Meta:
        verbose_name = _("User")
        verbose_name_plural = _("Users")
        ordering = ["email"]

    def __str__(self) -> str:
        return self.email

    @property
    def display_name(self) -> str:
        full_name = self.get_full_name()
        return full_name or self.username or self.email

    def is_admin(self) -> bool:
        return self.is_superuser or self.role == self.RoleChoices.ADMIN

    def get_notification_preferences(self) -> dict[str, bool]:
        """Stored preferences merged over the defaults."""
        merged = dict(DEFAULT_NOTIFICATION_PREFERENCES)
        merged.update(self.notification_preferences or {})
        return merged

    def update_notification_preferences(self, changes: dict[str, bool]) -> dict[str, bool]:
        merged = self.get_notification_preferences()
        merged.update(changes)
        self.notification_preferences = merged
        self.save(update_fields=["notification_preferences", "updated_at"])
        return merged


User = CustomUser
