"""Events published by the provisioning workflow."""

from nimbus.domain.events.provisioning_events import (
    ProvisioningEvent,
    InstanceProvisionedEvent,
    ProvisioningFailedEvent,
    CompensationAttemptedEvent,
)

__all__ = [
    "ProvisioningEvent",
    "InstanceProvisionedEvent",
    "ProvisioningFailedEvent",
    "CompensationAttemptedEvent",
]
