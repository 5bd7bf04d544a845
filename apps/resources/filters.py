"""FilterSet definitions for resource search and listing."""

from __future__ import annotations

import django_filters  # type: ignore
from django.db.models import Count, F, Q  # type: ignore

from apps.bookings.domain.lifecycle import ACTIVE_STATUSES

from .models import Resource


class ResourceFilterSet(django_filters.FilterSet):
    """Keyword, active flag and free-capacity filters."""

    keyword = django_filters.CharFilter(method="filter_keyword")
    is_active = django_filters.BooleanFilter(field_name="is_active")
    capacity_min = django_filters.NumberFilter(field_name="capacity", lookup_expr="gte")
    location = django_filters.CharFilter(field_name="location", lookup_expr="icontains")
    available_from = django_filters.IsoDateTimeFilter(method="filter_available")
    available_to = django_filters.IsoDateTimeFilter(method="filter_available")

    class Meta:
        model = Resource
        fields = ["is_active", "location"]

    def filter_keyword(self, queryset, name, value):  # type: ignore
        if not value:
            return queryset
        return queryset.filter(Q(name__icontains=value) | Q(description__icontains=value))

    def filter_available(self, queryset, name, value):  # type: ignore
        # Applied once both bounds are present; the second call does the work
        start = self.form.cleaned_data.get("available_from")
        end = self.form.cleaned_data.get("available_to")
        if not start or not end or end <= start or name != "available_to":
            return queryset
        overlapping = Q(
            bookings__status__in=sorted(ACTIVE_STATUSES),
            bookings__start_time__lt=end,
            bookings__end_time__gt=start,
        )
        return queryset.annotate(
            active_overlaps=Count("bookings", filter=overlapping, distinct=True)
        ).filter(active_overlaps__lt=F("capacity"))
