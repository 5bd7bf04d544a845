"""Notifications app package.

Reacts to booking domain events: the message bus handlers hand each event
to a notification sink, which enqueues a Celery task that stores an in-app
notification and, when the recipient wants it, sends an email.
"""
