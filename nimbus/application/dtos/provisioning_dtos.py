"""
Provisioning DTOs

Architectural Intent:
- Data Transfer Objects for the provisioning use case boundary
- Input validation at the application boundary
- Decouples external representation (CLI, API) from the domain model
"""

from dataclasses import dataclass, field
from typing import Optional

from nimbus.domain.entities.instance import Instance
from nimbus.domain.errors import ProvisioningError


def parse_pairs(items: list[str], label: str) -> dict[str, str]:
    """Parse ["k=v", ...] into a dict, rejecting malformed or duplicate keys."""
    pairs: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid {label} {item!r}, expected KEY=VALUE")
        if key in pairs:
            raise ValueError(f"Duplicate {label} {key!r}")
        pairs[key] = value
    return pairs


@dataclass(frozen=True)
class ProvisionRequest:
    name: str
    image_id: str
    mount_spec: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("name cannot be empty")
        if not self.image_id:
            raise ValueError("image_id cannot be empty")
        for mount_point, volume_id in self.mount_spec.items():
            if not mount_point.startswith("/"):
                raise ValueError(f"Mount point must be absolute: {mount_point!r}")
            if not volume_id:
                raise ValueError(f"No volume given for mount point {mount_point!r}")


@dataclass(frozen=True)
class ProvisionResponse:
    success: bool
    message: str
    instance: Optional[dict[str, str]] = None
    failed_step: Optional[str] = None
    remote_resource_created: bool = False
    compensation_attempted: tuple[str, ...] = ()
    compensation_failures: tuple[str, ...] = ()

    @classmethod
    def from_instance(cls, instance: Instance) -> "ProvisionResponse":
        return cls(
            success=True,
            message=f"Instance {instance.id} created",
            instance=instance.to_dict(),
        )

    @classmethod
    def from_error(cls, error: ProvisioningError) -> "ProvisionResponse":
        report = error.compensation
        return cls(
            success=False,
            message=str(error),
            failed_step=error.step.value,
            remote_resource_created=error.remote_resource_created,
            compensation_attempted=report.attempted if report else (),
            compensation_failures=(
                tuple(str(w) for w in report.failures) if report else ()
            ),
        )
