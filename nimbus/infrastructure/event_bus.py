"""
Event Bus Infrastructure

Architectural Intent:
- In-process delivery of provisioning events to async handlers

Design Decisions:
- Dispatch walks the event's class hierarchy, so handlers registered for
  ProvisioningEvent receive every event, most specific handlers first
- A handler that raises is logged and skipped; the remaining handlers and
  events are still delivered
"""

import logging
from collections import defaultdict

from nimbus.domain.events.provisioning_events import ProvisioningEvent
from nimbus.domain.ports.event_bus_port import EventHandler

logger = logging.getLogger(__name__)


class EventBus:
    def __init__(self) -> None:
        self._handlers: defaultdict[type, list[EventHandler]] = defaultdict(list)

    def subscribe(
        self, event_type: type[ProvisioningEvent], handler: EventHandler
    ) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(
        self, event_type: type[ProvisioningEvent], handler: EventHandler
    ) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def _handlers_for(self, event: ProvisioningEvent) -> list[EventHandler]:
        return [
            handler
            for cls in type(event).__mro__
            for handler in self._handlers.get(cls, ())
        ]

    async def publish(self, events: list[ProvisioningEvent]) -> None:
        for event in events:
            handlers = self._handlers_for(event)
            logger.debug(
                "Publishing %s for %s to %d handler(s)",
                event.event_type,
                event.aggregate_id,
                len(handlers),
            )
            for handler in handlers:
                try:
                    await handler(event)
                except Exception:
                    logger.exception(
                        "Handler %r failed on %s", handler, event.event_type
                    )
