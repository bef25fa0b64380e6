"""
Event Bus Port

Architectural Intent:
- How the provisioner announces outcomes (provisioned, failed,
  compensated) without knowing who listens

Design Decisions:
- Subscriptions are by event class and cover subclasses, so a listener
  for ProvisioningEvent sees everything
- A failing handler must not stop delivery to the others
"""

from typing import Awaitable, Callable, Protocol, runtime_checkable

from nimbus.domain.events.provisioning_events import ProvisioningEvent

EventHandler = Callable[[ProvisioningEvent], Awaitable[None]]


@runtime_checkable
class EventBusPort(Protocol):
    async def publish(self, events: list[ProvisioningEvent]) -> None: ...

    def subscribe(
        self, event_type: type[ProvisioningEvent], handler: EventHandler
    ) -> None: ...
