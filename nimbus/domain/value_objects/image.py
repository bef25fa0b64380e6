"""
Image Value Object

Architectural Intent:
- Immutable description of a bootable image and the storage it declares
- The mapping mounted at "/" is the boot volume; every other mapping is a
  mount point the caller has to bind to a volume at launch time
"""

from dataclasses import dataclass
from typing import Optional

ROOT_MOUNT_POINT = "/"


@dataclass(frozen=True)
class DeviceMapping:
    mount_point: str
    device_name: str = ""
    size_gb: Optional[int] = None

    @property
    def is_root(self) -> bool:
        return self.mount_point == ROOT_MOUNT_POINT


@dataclass(frozen=True)
class Image:
    id: str
    device_mappings: tuple[DeviceMapping, ...] = ()

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Image id cannot be empty")
        seen: set[str] = set()
        for mapping in self.device_mappings:
            if mapping.mount_point in seen:
                raise ValueError(f"Duplicate mount point: {mapping.mount_point!r}")
            seen.add(mapping.mount_point)

    def required_mount_points(self) -> list[str]:
        """Mount points, in declaration order, that need a volume bound."""
        return [m.mount_point for m in self.device_mappings if not m.is_root]

    def missing_mount_points(self, mount_spec: dict[str, str]) -> list[str]:
        return [mp for mp in self.required_mount_points() if mp not in mount_spec]

    def device_for(self, mount_point: str) -> Optional[DeviceMapping]:
        for mapping in self.device_mappings:
            if mapping.mount_point == mount_point:
                return mapping
        return None
