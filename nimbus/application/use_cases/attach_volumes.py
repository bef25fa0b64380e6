"""
Attach Volumes Use Case

Architectural Intent:
- Binds caller-supplied volumes to a freshly launched instance
- The provider does not support attaching while the instance runs, so the
  sequence is stop -> attach each volume -> start

Design Decisions:
- The first failing call aborts the sequence and its error propagates
  unchanged; volumes attached by earlier iterations stay attached
  (terminating the instance cleans them up)
"""

import logging
from nimbus.domain.ports.control_plane_port import ControlPlanePort

logger = logging.getLogger(__name__)


class AttachVolumes:
    def __init__(self, control_plane: ControlPlanePort):
        self.control_plane = control_plane

    async def execute(self, instance_id: str, mount_spec: dict[str, str]) -> None:
        logger.debug("Stopping instance %s for volume attach", instance_id)
        await self.control_plane.stop_instance(instance_id)

        for mount_point, volume_id in mount_spec.items():
            logger.debug(
                "Attaching volume %s to instance %s at %s",
                volume_id,
                instance_id,
                mount_point,
            )
            await self.control_plane.attach_volume(volume_id, instance_id, mount_point)

        logger.debug("Starting instance %s after volume attach", instance_id)
        await self.control_plane.start_instance(instance_id)
