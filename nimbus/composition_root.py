"""
Composition Root

Architectural Intent:
- Dependency injection composition root for nimbus
- Single place where adapters, the retry layer and use cases are wired
- No adapter instantiation should occur outside this module

Design Decisions:
- Uses a simple dataclass container instead of a DI framework
- The raw control plane is always wrapped in RetryingControlPlane, so
  every call the use cases make is retried under the RetryPolicy
- The simulated control plane is selected by config (provisioning.simulate)
  or by passing one in explicitly
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from nimbus.application.orchestration.retry_executor import (
    RetryExecutor,
    RetryingControlPlane,
)
from nimbus.application.use_cases.attach_volumes import AttachVolumes
from nimbus.application.use_cases.provision_instance import ProvisionInstance
from nimbus.domain.ports.control_plane_port import ControlPlanePort
from nimbus.domain.services.retry_policy import RetryPolicy
from nimbus.infrastructure.adapters.ec2_adapter import EC2ControlPlane
from nimbus.infrastructure.adapters.simulated_adapter import SimulatedControlPlane
from nimbus.infrastructure.config import NimbusConfig
from nimbus.infrastructure.event_bus import EventBus
from nimbus.infrastructure.repositories.instance_state_store import InstanceStateStore
from nimbus.infrastructure.telemetry.otel_exporter import OTELExporter, create_exporter


@dataclass
class NimbusContainer:
    """DI container holding all wired dependencies."""

    control_plane: ControlPlanePort
    retry_policy: RetryPolicy
    retrying_control_plane: RetryingControlPlane
    instance_store: InstanceStateStore
    event_bus: EventBus
    telemetry: OTELExporter
    attach_volumes: AttachVolumes
    provision_instance: ProvisionInstance


def create_container(
    config: Optional[NimbusConfig] = None,
    control_plane: Optional[ControlPlanePort] = None,
    instance_store: Optional[InstanceStateStore] = None,
    rng: Optional[random.Random] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> NimbusContainer:
    """Create and wire all dependencies."""
    config = config or NimbusConfig()

    if control_plane is None:
        if config.provisioning.simulate:
            control_plane = SimulatedControlPlane()
        else:
            control_plane = EC2ControlPlane(
                region=config.aws.region,
                profile=config.aws.profile or None,
                endpoint_url=config.aws.endpoint_url or None,
            )

    telemetry = create_exporter(
        endpoint=config.telemetry.endpoint, insecure=config.telemetry.insecure
    )
    retry_policy = RetryPolicy(max_retries=config.retry.max_retries, rng=rng)
    executor = RetryExecutor(retry_policy, sleep=sleep, telemetry=telemetry)
    retrying = RetryingControlPlane(control_plane, executor)

    instance_store = instance_store if instance_store is not None else InstanceStateStore()
    event_bus = EventBus()
    attach_volumes = AttachVolumes(retrying)
    provision_instance = ProvisionInstance(
        retrying,
        instance_store,
        volume_attacher=attach_volumes,
        event_bus=event_bus,
        telemetry=telemetry,
        timeout_seconds=config.provisioning.timeout_seconds or None,
    )

    return NimbusContainer(
        control_plane=control_plane,
        retry_policy=retry_policy,
        retrying_control_plane=retrying,
        instance_store=instance_store,
        event_bus=event_bus,
        telemetry=telemetry,
        attach_volumes=attach_volumes,
        provision_instance=provision_instance,
    )
