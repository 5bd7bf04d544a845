"""Model signal handlers for availability cache invalidation."""

from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from apps.resources.models import Resource

from .cache import AvailabilityCache
from .conf import BookingPolicy


@receiver([post_save, post_delete], sender=Resource)
def resource_cache_invalidator(sender, instance, **_: object) -> None:
    """Capacity or active flag may have changed: forget everything cached for the resource."""
    AvailabilityCache.from_policy(BookingPolicy.from_settings()).invalidate_resource(instance.pk)
