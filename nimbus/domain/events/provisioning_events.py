"""
Provisioning Events

Architectural Intent:
- Published by the provisioner so other components (notifications,
  auditing, telemetry) can react without coupling to the workflow
- Every event is keyed by aggregate_id: the instance id once the control
  plane has reported one, otherwise the name the caller asked for

Design Decisions:
- ProvisioningEvent is the common base; subscribing to it receives every
  event the provisioner publishes
- occurred_at is a timezone-aware datetime and is excluded from equality,
  so two events describing the same outcome compare equal
- to_dict is the serialized form handed to log sinks and webhooks
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any


@dataclass(frozen=True)
class ProvisioningEvent:
    aggregate_id: str = ""
    occurred_at: datetime = field(
        default_factory=lambda: datetime.now(UTC),
        init=False,
        repr=False,
        compare=False,
    )

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "aggregate_id": self.aggregate_id,
            "occurred_at": self.occurred_at.isoformat(),
        }


@dataclass(frozen=True)
class InstanceProvisionedEvent(ProvisioningEvent):
    name: str = ""
    image_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "name": self.name, "image_id": self.image_id}


@dataclass(frozen=True)
class ProvisioningFailedEvent(ProvisioningEvent):
    step: str = ""
    error_message: str = ""
    remote_resource_created: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "step": self.step,
            "error_message": self.error_message,
            "remote_resource_created": self.remote_resource_created,
        }


@dataclass(frozen=True)
class CompensationAttemptedEvent(ProvisioningEvent):
    """One terminate attempt for an instance left behind by a failure."""

    succeeded: bool = False
    error_message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "succeeded": self.succeeded,
            "error_message": self.error_message,
        }
