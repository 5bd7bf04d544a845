"""Booking models."""

from __future__ import annotations

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.domain.value_objects import TimeRange


class Booking(models.Model):
    """A reservation of a resource for a half-open time interval."""

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        APPROVED = "approved", _("Approved")
        REJECTED = "rejected", _("Rejected")
        CANCELLED = "cancelled", _("Cancelled")

    resource = models.ForeignKey(
        "resources.Resource",
        on_delete=models.CASCADE,
        related_name="bookings",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="bookings",
    )
    start_time = models.DateTimeField(_("Start"))
    end_time = models.DateTimeField(_("End"))
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
    )
    purpose = models.CharField(_("Purpose"), max_length=500)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Booking")
        verbose_name_plural = _("Bookings")
        ordering = ["-start_time", "-id"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(end_time__gt=models.F("start_time")),
                name="booking_end_after_start",
            ),
        ]
        indexes = [
            models.Index(
                fields=["resource", "status", "start_time", "end_time"],
                name="booking_resource_window_idx",
            ),
            models.Index(fields=["user", "status", "end_time"], name="booking_user_active_idx"),
        ]

    def __str__(self) -> str:
        return f"Booking #{self.pk} of resource {self.resource_id} ({self.status})"

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(self.start_time, self.end_time)
