"""
Unit of Work Pattern

Manages database transactions, the locks taken inside them and the
domain events they produce. Events are published only after the
transaction has committed and every lock has been released.
"""

from abc import ABC, abstractmethod
from typing import Callable, List
import logging

from django.db import transaction

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)


class AbstractUnitOfWork(ABC):
    """Abstract Unit of Work pattern"""

    @abstractmethod
    def commit(self):
        """Commit the transaction"""

    @abstractmethod
    def rollback(self):
        """Rollback the transaction"""

    @abstractmethod
    def collect(self, event: DomainEvent):
        """Queue a domain event for publication after commit"""


class DjangoUnitOfWork(AbstractUnitOfWork):
    """
    Django implementation of Unit of Work

    Wraps ``transaction.atomic``. Locks acquired while it is open register
    a release callback; callbacks run once the transaction is over, whether
    it committed or rolled back. Collected events are handed to the message
    bus through ``transaction.on_commit`` after the locks are gone, so event
    handlers never run while a resource is locked.

    Work registered with ``after_commit`` runs in the same ``on_commit``
    hook, before the events are published. A failing callback is logged
    and never undoes the committed transaction.

    Usage:
        with DjangoUnitOfWork() as uow:
            resource = registry.get_for_update(resource_id, uow)
            booking = Booking.objects.create(...)
            uow.collect(BookingCreated(...))
            uow.after_commit(lambda: cache.invalidate_window(...))
        # Lock released, cache invalidated, events published after commit
    """

    def __init__(self, using: str | None = None):
        self.using = using
        self._events: List[DomainEvent] = []
        self._committed_events: List[DomainEvent] = []
        self._commit_callbacks: List[Callable[[], None]] = []
        self._release_callbacks: List[Callable[[], None]] = []
        self._transaction = None

    def __enter__(self):
        """Start database transaction"""
        self._transaction = transaction.atomic(using=self.using)
        self._transaction.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Complete or rollback transaction, then release locks"""
        succeeded = False
        try:
            try:
                if exc_type is None:
                    self.commit()
                else:
                    self.rollback()
            finally:
                if self._transaction:
                    self._transaction.__exit__(exc_type, exc_val, exc_tb)
            succeeded = exc_type is None
        finally:
            self._release_locks()

        if succeeded:
            self._schedule_publication()
        return False

    def commit(self):
        logger.debug(f"Committing transaction with {len(self._events)} events")
        self._committed_events = self._events.copy()
        self._events.clear()

    def rollback(self):
        """Rollback changes and discard events and commit callbacks"""
        if self._events:
            logger.warning(f"Rolling back transaction, discarding {len(self._events)} events")
        self._events.clear()
        self._commit_callbacks.clear()

    def collect(self, event: DomainEvent):
        self._events.append(event)

    def after_commit(self, callback: Callable[[], None]):
        """Run ``callback`` once the transaction has committed, before events are published."""
        self._commit_callbacks.append(callback)

    def on_release(self, callback: Callable[[], None]):
        """Run ``callback`` once the transaction has ended."""
        self._release_callbacks.append(callback)

    def _release_locks(self):
        callbacks, self._release_callbacks = self._release_callbacks, []
        for callback in reversed(callbacks):
            try:
                callback()
            except Exception as e:
                logger.error(f"Error releasing lock: {e}", exc_info=True)

    def _schedule_publication(self):
        events, self._committed_events = self._committed_events, []
        callbacks, self._commit_callbacks = self._commit_callbacks, []
        if events or callbacks:
            transaction.on_commit(lambda: self._after_commit(callbacks, events), using=self.using)

    def _after_commit(self, callbacks: List[Callable[[], None]], events: List[DomainEvent]):
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Error in after-commit callback: {e}", exc_info=True)
        if events:
            self._publish_events(events)

    def _publish_events(self, events: List[DomainEvent]):
        """
        Publish collected events to message bus

        Called after successful transaction commit.
        """
        from shared.application.message_bus import message_bus

        logger.info(f"Publishing {len(events)} domain events after commit")

        try:
            message_bus.publish_events(events)
        except Exception as e:
            logger.error(f"Error publishing events: {e}", exc_info=True)
            # The booking is already committed; delivery is best effort
