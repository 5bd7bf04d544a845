"""Admin registration for resources."""

from __future__ import annotations

from django.contrib import admin

from .models import Resource


@admin.register(Resource)
class ResourceAdmin(admin.ModelAdmin):
    list_display = ("name", "location", "capacity", "is_active", "updated_at")
    list_filter = ("is_active",)
    search_fields = ("name", "description", "location")
    readonly_fields = ("created_at", "updated_at")
