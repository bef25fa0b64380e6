"""
Control Plane Port

Architectural Intent:
- Port interface for the remote service that owns instance lifecycles
- Narrow on purpose: only the calls the provisioning workflow issues
- Implemented by the EC2 adapter and the in-memory simulator

Design Decisions:
- Uses Protocol for structural typing (no inheritance needed)
- Failures are raised as ControlPlaneError so the retry policy can
  classify them without knowing the SDK
"""

from typing import Protocol, runtime_checkable
from nimbus.domain.value_objects.image import Image


@runtime_checkable
class ControlPlanePort(Protocol):
    """Port for instance lifecycle operations on the control plane."""

    async def lookup_image(self, image_id: str) -> Image:
        """Fetch an image. Raises ResourceNotFoundError if it does not exist."""
        ...

    async def create_instance(
        self,
        image_id: str,
        count: int = 1,
        user_data: str = "",
        client_token: str = "",
    ) -> list[str]:
        """Launch instances and return the ids the control plane reported.

        Repeating a call with the same non-empty client_token must not launch
        again; it reports the instances of the first call.
        """
        ...

    async def terminate_instance(self, instance_id: str) -> None: ...

    async def stop_instance(self, instance_id: str) -> None: ...

    async def start_instance(self, instance_id: str) -> None: ...

    async def attach_volume(
        self, volume_id: str, instance_id: str, mount_point: str
    ) -> None: ...

    async def create_tags(self, resource_id: str, tags: dict[str, str]) -> None: ...
