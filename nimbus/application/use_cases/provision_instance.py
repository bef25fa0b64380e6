"""
Provision Instance Use Case

Architectural Intent:
- The single entry point for creating an instance: resolve image, validate
  mounts, encode environment, launch, attach volumes, tag, register
- Steps run strictly in order; each failure is wrapped in the
  ProvisioningError subclass naming the step
- Anything launched before a failure is terminated via ProvisionalInstances,
  so a failed attempt never leaves a billable instance behind

Design Decisions:
- The control plane handed in is expected to already retry transient
  faults (RetryingControlPlane); only exhausted or permanent failures
  reach this layer
- Registration in the InstanceStateStore is the commit point: an instance
  is in the store iff every step succeeded
- An optional deadline (timeout_seconds) cancels the workflow at the next
  suspension point and surfaces as DeadlineExceededError naming the step
  it interrupted; compensation runs after the deadline scope, so cleanup
  is never cut short by it
- Each launch carries a fresh client token, reused across retries, so a
  launch whose response was lost is not repeated
"""

from __future__ import annotations
import asyncio
import logging
import time
import uuid
from typing import Any, Optional

from nimbus.application.orchestration.compensation import ProvisionalInstances
from nimbus.application.use_cases.attach_volumes import AttachVolumes
from nimbus.domain.entities.instance import Infrastructure, Instance, InstanceState
from nimbus.domain.errors import (
    CompensationWarning,
    ControlPlaneError,
    DeadlineExceededError,
    EncodingError,
    LaunchCountMismatchError,
    LaunchError,
    ProvisioningError,
    ProvisioningStep,
    ResourceLookupError,
    TaggingError,
    ValidationError,
    VolumeAttachError,
)

from nimbus.domain.events.provisioning_events import (
    CompensationAttemptedEvent,
    InstanceProvisionedEvent,
    ProvisioningEvent,
    ProvisioningFailedEvent,
)
from nimbus.domain.ports.control_plane_port import ControlPlanePort
from nimbus.domain.ports.event_bus_port import EventBusPort
from nimbus.domain.ports.instance_store_port import InstanceStorePort
from nimbus.domain.value_objects.image import Image
from nimbus.domain.value_objects.user_data import UserData

logger = logging.getLogger(__name__)

INSTANCE_ID_TAG = "nimbus-instance-id"
NAME_TAG = "Name"


class ProvisionInstance:
    def __init__(
        self,
        control_plane: ControlPlanePort,
        store: InstanceStorePort,
        volume_attacher: Optional[AttachVolumes] = None,
        event_bus: Optional[EventBusPort] = None,
        telemetry: Optional[Any] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.control_plane = control_plane
        self.store = store
        self.volume_attacher = volume_attacher or AttachVolumes(control_plane)
        self.event_bus = event_bus
        self.telemetry = telemetry
        self.timeout_seconds = timeout_seconds

    async def execute(
        self,
        name: str,
        image_id: str,
        mount_spec: Optional[dict[str, str]] = None,
        env: Optional[dict[str, str]] = None,
    ) -> Instance:
        mount_spec = dict(mount_spec or {})
        env = dict(env or {})
        logger.info(
            "Running instance %s (image-id=%s, mounts=%s, env=%s)",
            name,
            image_id,
            mount_spec,
            sorted(env),
            extra={"image_id": image_id},
        )

        started = time.monotonic()
        try:
            instance = await self._provision(name, image_id, mount_spec, env)
        except ProvisioningError as e:
            logger.error(
                "Provisioning %s failed at step '%s': %s",
                name,
                e.step.value,
                e.message,
                extra={"step": e.step.value, "instance_id": e.instance_id},
            )
            if self.telemetry is not None:
                self.telemetry.record_provision_failure(e.step.value)
            await self._publish_quietly(
                ProvisioningFailedEvent(
                    aggregate_id=e.instance_id or name,
                    step=e.step.value,
                    error_message=e.message,
                    remote_resource_created=e.remote_resource_created,
                )
            )
            raise

        duration_ms = (time.monotonic() - started) * 1000
        if self.telemetry is not None:
            self.telemetry.record_provision_success(duration_ms)
        if self.event_bus is not None:
            await self.event_bus.publish(
                [
                    InstanceProvisionedEvent(
                        aggregate_id=instance.id, name=name, image_id=instance.image_id
                    )
                ]
            )
        logger.info(
            "Instance %s (%s) created successfully",
            instance.id,
            name,
            extra={"instance_id": instance.id},
        )
        return instance

    def _deadline(self) -> Optional[float]:
        if not self.timeout_seconds:
            return None
        return asyncio.get_running_loop().time() + self.timeout_seconds

    def _deadline_exceeded(
        self, step: ProvisioningStep, instance_id: str = ""
    ) -> DeadlineExceededError:
        return DeadlineExceededError(
            f"deadline of {self.timeout_seconds}s exceeded", step=step, instance_id=instance_id
        )

    async def _provision(
        self,
        name: str,
        image_id: str,
        mount_spec: dict[str, str],
        env: dict[str, str],
    ) -> Instance:
        deadline = self._deadline()

        scope = asyncio.timeout_at(deadline)
        try:
            async with scope:
                image = await self._resolve_image(image_id)
        except TimeoutError as e:
            if not scope.expired():
                raise
            raise self._deadline_exceeded(ProvisioningStep.RESOLVE_IMAGE) from e
        self._validate_mounts(image, mount_spec)
        user_data = self._encode_env(env)

        # The deadline covers the steps only; cleanup on the way out of the
        # ProvisionalInstances block runs without one.
        async with ProvisionalInstances(
            self.control_plane, on_compensated=self._compensated
        ) as provisional:
            step = ProvisioningStep.LAUNCH
            instance_id = ""
            scope = asyncio.timeout_at(deadline)
            try:
                async with scope:
                    instance_id = await self._launch(name, image, user_data, provisional)

                    if mount_spec:
                        step = ProvisioningStep.ATTACH_VOLUMES
                        try:
                            await self.volume_attacher.execute(instance_id, mount_spec)
                        except ControlPlaneError as e:
                            raise VolumeAttachError(
                                f"attaching volumes to instance {instance_id}: {e}",
                                instance_id=instance_id,
                            ) from e

                    step = ProvisioningStep.TAG
                    logger.debug(
                        "Tagging instance %s", instance_id, extra={"instance_id": instance_id}
                    )
                    try:
                        await self.control_plane.create_tags(
                            instance_id, {INSTANCE_ID_TAG: instance_id, NAME_TAG: name}
                        )
                    except ControlPlaneError as e:
                        raise TaggingError(
                            f"tagging instance {instance_id}: {e}", instance_id=instance_id
                        ) from e
            except TimeoutError as e:
                if not scope.expired():
                    raise
                raise self._deadline_exceeded(step, instance_id) from e

            instance = Instance(
                id=instance_id,
                name=name,
                image_id=image.id,
                state=InstanceState.PENDING,
                infrastructure=Infrastructure.AWS,
            )
            self.store.register(instance)
            provisional.commit()

        return instance

    async def _resolve_image(self, image_id: str) -> Image:
        try:
            return await self.control_plane.lookup_image(image_id)
        except ControlPlaneError as e:
            raise ResourceLookupError(f"getting image {image_id}: {e}") from e

    @staticmethod
    def _validate_mounts(image: Image, mount_spec: dict[str, str]) -> None:
        missing = image.missing_mount_points(mount_spec)
        if missing:
            logger.warning(
                "Required mount point(s) missing: %s (image %s requires %s)",
                missing,
                image.id,
                image.required_mount_points(),
            )
            raise ValidationError(
                f"required mount point missing from input: {', '.join(missing)}",
                mount_point=missing[0],
            )

    @staticmethod
    def _encode_env(env: dict[str, str]) -> UserData:
        try:
            return UserData.from_env(env)
        except (TypeError, ValueError) as e:
            raise EncodingError(f"could not convert instance env to json: {e}") from e

    async def _launch(
        self,
        name: str,
        image: Image,
        user_data: UserData,
        provisional: ProvisionalInstances,
    ) -> str:
        # One token per launch: every retry of this call reuses it.
        client_token = uuid.uuid4().hex
        try:
            instance_ids = list(
                await self.control_plane.create_instance(
                    image.id,
                    count=1,
                    user_data=str(user_data),
                    client_token=client_token,
                )
            )
        except ControlPlaneError as e:
            raise LaunchError(f"failed to run instance: {e}") from e

        provisional.track(*instance_ids)
        if len(instance_ids) != 1:
            logger.warning(
                "Run instance %s produced %d instances, expected 1: %s",
                name,
                len(instance_ids),
                instance_ids,
            )
            raise LaunchCountMismatchError(instance_ids)

        instance_id = instance_ids[0]
        if not instance_id:
            raise LaunchError("control plane returned an empty instance id")
        logger.debug("Launched instance %s for %s", instance_id, name)
        return instance_id

    async def _compensated(
        self, instance_id: str, warning: Optional[CompensationWarning]
    ) -> None:
        if self.telemetry is not None:
            self.telemetry.record_compensation(instance_id, warning is None)
        await self._publish_quietly(
            CompensationAttemptedEvent(
                aggregate_id=instance_id,
                succeeded=warning is None,
                error_message=str(warning) if warning else "",
            )
        )

    async def _publish_quietly(self, event: ProvisioningEvent) -> None:
        # Failure-path events must never replace the error being reported.
        if self.event_bus is None:
            return
        try:
            await self.event_bus.publish([event])
        except Exception:
            logger.exception("Failed to publish %s", event.event_type)
