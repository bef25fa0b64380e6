"""
Instance Entity

Architectural Intent:
- Immutable record of a compute instance launched by nimbus
- Constructed only once the control plane has confirmed the launch
- Owned by the InstanceStateStore once registered; never mutated in place
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, UTC
from enum import Enum


class InstanceState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    TERMINATED = "terminated"


class Infrastructure(Enum):
    AWS = "aws"


@dataclass(frozen=True)
class Instance:
    id: str
    name: str
    image_id: str
    state: InstanceState = InstanceState.PENDING
    infrastructure: Infrastructure = Infrastructure.AWS
    created: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Instance id cannot be empty")

    def with_state(self, state: InstanceState) -> "Instance":
        return replace(self, state=state)

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "state": self.state.value,
            "infrastructure": self.infrastructure.value,
            "image_id": self.image_id,
            "created": self.created.isoformat(),
        }
