"""Admin registration for bookings."""

from __future__ import annotations

from django.contrib import admin

from .models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "resource",
        "user",
        "status",
        "start_time",
        "end_time",
        "created_at",
    )
    list_filter = ("status", "resource", "start_time")
    search_fields = ("purpose", "resource__name", "user__email")
    readonly_fields = ("created_at", "updated_at", "cancelled_at")
    list_select_related = ("resource", "user")
