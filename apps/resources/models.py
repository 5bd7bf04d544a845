"""Resource models."""

from __future__ import annotations

from django.core.validators import MinValueValidator  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Resource(models.Model):
    """A shared room or piece of equipment.

    ``capacity`` is how many active bookings may overlap at any instant.
    """

    name = models.CharField(_("Name"), max_length=100)
    description = models.TextField(_("Description"), blank=True)
    location = models.CharField(_("Location"), max_length=255, blank=True)
    capacity = models.PositiveIntegerField(
        _("Capacity"), default=1, validators=[MinValueValidator(1)]
    )
    is_active = models.BooleanField(_("Active"), default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Resource")
        verbose_name_plural = _("Resources")
        ordering = ["name"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(capacity__gte=1),
                name="resource_capacity_at_least_one",
            ),
        ]
        indexes = [
            models.Index(fields=["is_active", "name"], name="resource_active_name_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.name} (capacity {self.capacity})"
