"""
Message Bus

Routes domain events to the handlers subscribed to them, so the booking
core never imports the code that reacts to its state changes.

A handler subscribed to an event class also receives every subclass of
it: subscribing to ``BookingEvent`` covers created, approved, rejected
and cancelled alike.
"""

from typing import Callable, Dict, Iterable, List, Type
import logging

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, '__qualname__', None) or repr(handler)


class MessageBus:
    """In-process event dispatcher. Handlers run synchronously, in subscription order."""

    def __init__(self):
        self._subscriptions: Dict[Type[DomainEvent], List[EventHandler]] = {}

    def register_event_handler(self, event_type: Type[DomainEvent], handler: EventHandler):
        """Subscribe ``handler`` to ``event_type``. Subscribing twice has no effect."""
        subscribed = self._subscriptions.setdefault(event_type, [])
        if handler not in subscribed:
            subscribed.append(handler)
            logger.debug(f"{_handler_name(handler)} subscribed to {event_type.__name__}")

    def unregister_event_handler(self, event_type: Type[DomainEvent], handler: EventHandler):
        subscribed = self._subscriptions.get(event_type)
        if subscribed and handler in subscribed:
            subscribed.remove(handler)

    def handlers_for(self, event_type: Type[DomainEvent]) -> List[EventHandler]:
        """Handlers of ``event_type`` and of its base classes, most specific first."""
        found: List[EventHandler] = []
        for klass in event_type.__mro__:
            for handler in self._subscriptions.get(klass, ()):
                if handler not in found:
                    found.append(handler)
        return found

    def publish_events(self, events: Iterable[DomainEvent]):
        """
        Deliver each event to its handlers.

        A failing handler is logged and skipped; the remaining handlers
        and events are still delivered.
        """
        for event in events:
            handlers = self.handlers_for(type(event))
            if not handlers:
                logger.warning(f"Nobody is listening for {type(event).__name__}")
                continue

            logger.info(f"Publishing {type(event).__name__} {event.event_id} to {len(handlers)} handler(s)")
            for handler in handlers:
                self._dispatch(handler, event)

    def _dispatch(self, handler: EventHandler, event: DomainEvent):
        try:
            handler(event)
        except Exception as e:
            logger.error(
                f"{_handler_name(handler)} failed on {type(event).__name__} {event.event_id}: {e}",
                exc_info=True,
            )


message_bus = MessageBus()
