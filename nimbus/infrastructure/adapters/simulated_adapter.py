"""
Simulated Control Plane Adapter

Architectural Intent:
- Implements ControlPlanePort entirely in memory, mirroring the shape of
  EC2 instance records, so the provisioning workflow can be exercised in
  tests and local runs with zero cloud credentials
- Enforces the provider rules that matter to the workflow: volumes can
  only be attached to a stopped instance, at a mount point the image
  declares

Design Decisions:
- Every call is recorded in `calls` as (operation, args) for assertions
- fail(operation, *errors) queues exceptions that the next calls to that
  operation raise in order, which is how tests inject transient and
  permanent faults
- lose_launch_response(*errors) lets a launch succeed remotely and then
  raise, the way a read timeout does after EC2 accepted the request
- A repeated create_instance with the same client token reports the
  instances of the first call instead of launching again, as EC2 does
- launch_count lets a test make create_instance report an unexpected
  number of instances
"""

import logging
import uuid
import datetime
from collections import defaultdict, deque
from typing import Any, Iterable, Optional

from nimbus.domain.errors import ControlPlaneError, ResourceNotFoundError
from nimbus.domain.value_objects.image import Image

logger = logging.getLogger(__name__)


def _make_instance_id() -> str:
    """Return a plausible EC2 instance ID."""
    return "i-" + uuid.uuid4().hex[:17]


class SimulatedControlPlane:
    def __init__(
        self,
        images: Iterable[Image] = (),
        launch_count: Optional[int] = None,
    ) -> None:
        self.images: dict[str, Image] = {image.id: image for image in images}
        self.launch_count = launch_count
        self.instances: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, tuple]] = []
        self._faults: dict[str, deque[Exception]] = defaultdict(deque)
        self._launches_by_token: dict[str, list[str]] = {}
        self._lost_launch_responses: deque[Exception] = deque()

    def add_image(self, image: Image) -> None:
        self.images[image.id] = image

    def fail(self, operation: str, *errors: Exception) -> None:
        self._faults[operation].extend(errors)

    def lose_launch_response(self, *errors: Exception) -> None:
        self._lost_launch_responses.extend(errors)

    def calls_to(self, operation: str) -> list[tuple]:
        return [args for name, args in self.calls if name == operation]

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        faults = self._faults.get(operation)
        if faults:
            raise faults.popleft()

    def _instance(self, operation: str, instance_id: str) -> dict[str, Any]:
        instance = self.instances.get(instance_id)
        if instance is None:
            raise ResourceNotFoundError(
                f"{operation}: instance {instance_id} not found",
                code="InvalidInstanceID.NotFound",
            )
        return instance

    @staticmethod
    def _incorrect_state(operation: str, instance: dict[str, Any]) -> ControlPlaneError:
        return ControlPlaneError(
            f"{operation}: instance {instance['InstanceId']} is "
            f"{instance['State']['Name']}",
            status_code=400,
            code="IncorrectInstanceState",
        )

    # ------------------------------------------------------------------
    # ControlPlanePort implementation
    # ------------------------------------------------------------------

    async def lookup_image(self, image_id: str) -> Image:
        self._record("lookup_image", image_id)
        image = self.images.get(image_id)
        if image is None:
            raise ResourceNotFoundError(
                f"describe_images: image {image_id} not found",
                code="InvalidAMIID.NotFound",
            )
        return image

    async def create_instance(
        self,
        image_id: str,
        count: int = 1,
        user_data: str = "",
        client_token: str = "",
    ) -> list[str]:
        self._record("create_instance", image_id, count, user_data, client_token)
        if client_token in self._launches_by_token:
            return list(self._launches_by_token[client_token])
        if image_id not in self.images:
            raise ResourceNotFoundError(
                f"run_instances: image {image_id} not found",
                code="InvalidAMIID.NotFound",
            )

        launched = count if self.launch_count is None else self.launch_count
        now = datetime.datetime.now(datetime.UTC).isoformat()
        instance_ids = []
        for _ in range(launched):
            instance_id = _make_instance_id()
            self.instances[instance_id] = {
                "InstanceId": instance_id,
                "ImageId": image_id,
                "State": {"Code": 16, "Name": "running"},
                "UserData": user_data,
                "LaunchTime": now,
                "Tags": [],
                "BlockDeviceMappings": [],
            }
            instance_ids.append(instance_id)
        if client_token:
            self._launches_by_token[client_token] = list(instance_ids)
        logger.info("Simulated run_instances image=%s -> %s", image_id, instance_ids)
        if self._lost_launch_responses:
            raise self._lost_launch_responses.popleft()
        return instance_ids

    async def terminate_instance(self, instance_id: str) -> None:
        self._record("terminate_instance", instance_id)
        instance = self._instance("terminate_instances", instance_id)
        instance["State"] = {"Code": 48, "Name": "terminated"}
        logger.info("Simulated terminate_instances instance_id=%s", instance_id)

    async def stop_instance(self, instance_id: str) -> None:
        self._record("stop_instance", instance_id)
        instance = self._instance("stop_instances", instance_id)
        if instance["State"]["Name"] == "terminated":
            raise self._incorrect_state("stop_instances", instance)
        instance["State"] = {"Code": 80, "Name": "stopped"}

    async def start_instance(self, instance_id: str) -> None:
        self._record("start_instance", instance_id)
        instance = self._instance("start_instances", instance_id)
        if instance["State"]["Name"] != "stopped":
            raise self._incorrect_state("start_instances", instance)
        instance["State"] = {"Code": 16, "Name": "running"}

    async def attach_volume(
        self, volume_id: str, instance_id: str, mount_point: str
    ) -> None:
        self._record("attach_volume", volume_id, instance_id, mount_point)
        instance = self._instance("attach_volume", instance_id)
        if instance["State"]["Name"] != "stopped":
            raise self._incorrect_state("attach_volume", instance)

        mapping = self.images[instance["ImageId"]].device_for(mount_point)
        if mapping is None:
            raise ControlPlaneError(
                f"attach_volume: image {instance['ImageId']} declares no device "
                f"for mount point {mount_point}",
                status_code=400,
                code="InvalidMountPoint",
            )
        instance["BlockDeviceMappings"].append(
            {"DeviceName": mapping.device_name, "Ebs": {"VolumeId": volume_id}}
        )

    async def create_tags(self, resource_id: str, tags: dict[str, str]) -> None:
        self._record("create_tags", resource_id, dict(tags))
        instance = self._instance("create_tags", resource_id)
        existing = {t["Key"]: t["Value"] for t in instance["Tags"]}
        existing.update(tags)
        instance["Tags"] = [{"Key": k, "Value": v} for k, v in existing.items()]
