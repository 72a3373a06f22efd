"""EventHandlerRegistry: central registry for outbox event handlers."""

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.models.event_outbox import EventOutbox

logger = logging.getLogger(__name__)

EventHandler = Callable[[AsyncSession, EventOutbox], Awaitable[None]]


class EventHandlerRegistry:
    """Class-level registry of async handlers keyed by event type.

    A handler receives the relay's session and the event row. Several
    handlers may listen to the same event type.
    """

    _handlers: dict[str, list[EventHandler]] = defaultdict(list)

    @classmethod
    def register(cls, event_type: str, handler: EventHandler) -> None:
        if handler not in cls._handlers[event_type]:
            cls._handlers[event_type].append(handler)
            logger.debug("Registered handler %s for event type %s", handler.__name__, event_type)

    @classmethod
    def get_handlers(cls, event_type: str) -> list[EventHandler]:
        return list(cls._handlers.get(event_type, []))

    @classmethod
    async def dispatch(cls, session: AsyncSession, event: EventOutbox) -> list[str]:
        """Run every handler for the event. Returns handler names; the first failure propagates."""
        names = []
        for handler in cls.get_handlers(event.event_type):
            await handler(session, event)
            names.append(handler.__name__)
        return names

    @classmethod
    def clear(cls) -> None:
        """Remove all registered handlers. Useful for testing."""
        cls._handlers.clear()
