"""
EC2 Control Plane Adapter

Architectural Intent:
- Implements ControlPlanePort for AWS EC2 with boto3
- Translates botocore failures into ControlPlaneError with the status code,
  error code and retryable/throttle flags the RetryPolicy classifies on
- SDK-level retries are disabled; RetryingControlPlane owns retry timing

Design Decisions:
- boto3 clients are blocking, so every call runs in a worker thread via
  asyncio.to_thread; the await is the cancellation point. The client itself
  is built lazily inside that worker thread, never on the event loop
- Images carry no mount points natively: the root device maps to "/" and
  other devices are mapped through "nimbus:mount:<device>" image tags
- stop/start block on the instance_stopped/instance_running waiters since
  volumes can only be attached to a stopped instance
- run_instances carries the caller's ClientToken so a retried launch is
  idempotent on the EC2 side
- attach_volume resolves the device name for a mount point through the
  instance's image; images are immutable so lookups are cached
"""

import asyncio
import base64
import logging
import threading
from typing import Any, Callable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
    WaiterError,
)

from nimbus.domain.errors import ControlPlaneError, ResourceNotFoundError
from nimbus.domain.value_objects.image import DeviceMapping, Image, ROOT_MOUNT_POINT

logger = logging.getLogger(__name__)

MOUNT_TAG_PREFIX = "nimbus:mount:"

THROTTLE_ERROR_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "RequestThrottledException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "RequestThrottled",
        "EC2ThrottledException",
        "PriorRequestNotComplete",
        "SlowDown",
    }
)

RETRYABLE_ERROR_CODES = frozenset(
    {
        "RequestError",
        "RequestTimeout",
        "RequestTimeoutException",
        "ResponseTimeout",
        "InternalError",
        "InternalFailure",
        "ServiceUnavailable",
        "Unavailable",
    }
)


def translate_error(operation: str, error: Exception) -> ControlPlaneError:
    """Map a botocore exception onto the ControlPlaneError taxonomy."""
    if isinstance(error, ClientError):
        details = error.response.get("Error", {})
        code = details.get("Code", "")
        message = details.get("Message") or str(error)
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code.endswith(".NotFound"):
            return ResourceNotFoundError(f"{operation}: {message}", code=code)
        return ControlPlaneError(
            f"{operation}: {message}",
            status_code=status,
            code=code,
            retryable=code in RETRYABLE_ERROR_CODES,
            throttle=code in THROTTLE_ERROR_CODES,
        )
    if isinstance(error, (BotoConnectionError, HTTPClientError)):
        return ControlPlaneError(
            f"{operation}: {error}", code="RequestError", retryable=True
        )
    if isinstance(error, WaiterError):
        return ControlPlaneError(f"{operation}: {error}", code="WaiterError")
    return ControlPlaneError(f"{operation}: {error}")


def image_from_description(description: dict[str, Any]) -> Image:
    """Build an Image from a DescribeImages entry."""
    tags = {t["Key"]: t["Value"] for t in description.get("Tags", [])}
    declared = {
        key[len(MOUNT_TAG_PREFIX):]: value
        for key, value in tags.items()
        if key.startswith(MOUNT_TAG_PREFIX)
    }
    root_device = description.get("RootDeviceName", "")

    mappings: list[DeviceMapping] = []
    for bdm in description.get("BlockDeviceMappings", []):
        device = bdm.get("DeviceName", "")
        mount_point = ROOT_MOUNT_POINT if device == root_device else declared.get(device)
        if not mount_point:
            # Ephemeral or undeclared devices are not caller-bindable.
            continue
        mappings.append(
            DeviceMapping(
                mount_point=mount_point,
                device_name=device,
                size_gb=bdm.get("Ebs", {}).get("VolumeSize"),
            )
        )
    return Image(id=description["ImageId"], device_mappings=tuple(mappings))


class EC2ControlPlane:
    """
    AWS EC2 control plane adapter.

    Configuration parameters
    ------------------------
    region : str
        AWS region name (e.g. "us-east-1").
    profile : str | None
        AWS credentials profile name passed to boto3.Session.
    endpoint_url : str | None
        Alternative EC2 endpoint (e.g. a local emulator).
    client : Any
        Pre-built EC2 client; when given, region/profile/endpoint_url are
        not used to build one.
    waiter_delay, waiter_max_attempts : int
        Polling settings for the stop/start waiters.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        profile: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        client: Any = None,
        waiter_delay: int = 5,
        waiter_max_attempts: int = 60,
    ) -> None:
        self.region = region
        self.profile = profile
        self.endpoint_url = endpoint_url
        self.waiter_delay = waiter_delay
        self.waiter_max_attempts = waiter_max_attempts
        self._client = client
        self._client_lock = threading.Lock()
        self._images: dict[str, Image] = {}

        logger.debug(
            "EC2ControlPlane initialised (region=%s, profile=%s, endpoint=%s)",
            region,
            profile,
            endpoint_url,
        )

    @property
    def client(self) -> Any:
        """The EC2 client. Building it is blocking; call from a worker thread."""
        with self._client_lock:
            if self._client is None:
                session = boto3.Session(
                    profile_name=self.profile, region_name=self.region
                )
                self._client = session.client(
                    "ec2",
                    endpoint_url=self.endpoint_url,
                    config=Config(retries={"total_max_attempts": 1, "mode": "standard"}),
                )
            return self._client

    async def _call(self, operation: str, request: Callable[[Any], Any]) -> Any:
        """Run request(client) in a worker thread, translating SDK failures."""
        try:
            return await asyncio.to_thread(lambda: request(self.client))
        except (ClientError, BotoConnectionError, HTTPClientError, WaiterError) as e:
            raise translate_error(operation, e) from e

    # ------------------------------------------------------------------
    # ControlPlanePort implementation
    # ------------------------------------------------------------------

    async def lookup_image(self, image_id: str) -> Image:
        cached = self._images.get(image_id)
        if cached is not None:
            return cached

        logger.debug("EC2 describe_images image_id=%s", image_id)
        response = await self._call(
            "describe_images", lambda ec2: ec2.describe_images(ImageIds=[image_id])
        )
        descriptions = response.get("Images", [])
        if not descriptions:
            raise ResourceNotFoundError(
                f"describe_images: image {image_id} not found",
                code="InvalidAMIID.NotFound",
            )
        image = image_from_description(descriptions[0])
        self._images[image_id] = image
        return image

    async def create_instance(
        self,
        image_id: str,
        count: int = 1,
        user_data: str = "",
        client_token: str = "",
    ) -> list[str]:
        # boto3 base64-encodes RunInstances UserData itself, so hand it the
        # decoded payload to keep the wire value equal to user_data.
        params: dict[str, Any] = {
            "ImageId": image_id,
            "MinCount": count,
            "MaxCount": count,
            "UserData": base64.b64decode(user_data).decode("utf-8") if user_data else "",
        }
        if client_token:
            params["ClientToken"] = client_token
        response = await self._call(
            "run_instances", lambda ec2: ec2.run_instances(**params)
        )
        instance_ids = [i.get("InstanceId", "") for i in response.get("Instances", [])]
        logger.info(
            "EC2 run_instances image=%s token=%s -> %s",
            image_id,
            client_token or "-",
            instance_ids,
        )
        return instance_ids

    async def terminate_instance(self, instance_id: str) -> None:
        await self._call(
            "terminate_instances",
            lambda ec2: ec2.terminate_instances(InstanceIds=[instance_id]),
        )
        logger.info(
            "EC2 terminate_instances instance_id=%s",
            instance_id,
            extra={"instance_id": instance_id},
        )

    async def stop_instance(self, instance_id: str) -> None:
        await self._call(
            "stop_instances", lambda ec2: ec2.stop_instances(InstanceIds=[instance_id])
        )
        await self._wait("instance_stopped", instance_id)

    async def start_instance(self, instance_id: str) -> None:
        await self._call(
            "start_instances",
            lambda ec2: ec2.start_instances(InstanceIds=[instance_id]),
        )
        await self._wait("instance_running", instance_id)

    async def attach_volume(
        self, volume_id: str, instance_id: str, mount_point: str
    ) -> None:
        device = await self._device_for(instance_id, mount_point)
        await self._call(
            "attach_volume",
            lambda ec2: ec2.attach_volume(
                VolumeId=volume_id, InstanceId=instance_id, Device=device
            ),
        )

    async def create_tags(self, resource_id: str, tags: dict[str, str]) -> None:
        await self._call(
            "create_tags",
            lambda ec2: ec2.create_tags(
                Resources=[resource_id],
                Tags=[{"Key": key, "Value": value} for key, value in tags.items()],
            ),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _wait(self, waiter_name: str, instance_id: str) -> None:
        await self._call(
            waiter_name,
            lambda ec2: ec2.get_waiter(waiter_name).wait(
                InstanceIds=[instance_id],
                WaiterConfig={
                    "Delay": self.waiter_delay,
                    "MaxAttempts": self.waiter_max_attempts,
                },
            ),
        )

    async def _device_for(self, instance_id: str, mount_point: str) -> str:
        response = await self._call(
            "describe_instances",
            lambda ec2: ec2.describe_instances(InstanceIds=[instance_id]),
        )
        instances = [
            instance
            for reservation in response.get("Reservations", [])
            for instance in reservation.get("Instances", [])
        ]
        if not instances:
            raise ResourceNotFoundError(
                f"describe_instances: instance {instance_id} not found",
                code="InvalidInstanceID.NotFound",
            )

        image = await self.lookup_image(instances[0]["ImageId"])
        mapping = image.device_for(mount_point)
        if mapping is None or not mapping.device_name:
            raise ControlPlaneError(
                f"image {image.id} declares no device for mount point {mount_point}",
                status_code=400,
                code="InvalidMountPoint",
            )
        return mapping.device_name
