"""Celery application. Booking notifications are delivered by its workers."""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.dev")

app = Celery("resource_booking")

app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()

# Notification delivery runs on its own queue
app.conf.task_routes = {
    "notifications.*": {"queue": "notifications"},
}
