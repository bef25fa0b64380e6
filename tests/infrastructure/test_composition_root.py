"""Tests for the composition root."""

import random

from nimbus.application.orchestration.retry_executor import RetryingControlPlane
from nimbus.application.use_cases.attach_volumes import AttachVolumes
from nimbus.application.use_cases.provision_instance import ProvisionInstance
from nimbus.composition_root import NimbusContainer, create_container
from nimbus.infrastructure.adapters.ec2_adapter import EC2ControlPlane
from nimbus.infrastructure.adapters.simulated_adapter import SimulatedControlPlane
from nimbus.infrastructure.config import (
    AWSConfig,
    NimbusConfig,
    ProvisioningConfig,
    RetryConfig,
)
from nimbus.infrastructure.event_bus import EventBus
from nimbus.infrastructure.repositories.instance_state_store import InstanceStateStore
from nimbus.infrastructure.telemetry.otel_exporter import OTELExporter


class TestCreateContainer:
    def test_default_wiring_uses_ec2(self):
        container = create_container(NimbusConfig(aws=AWSConfig(region="eu-west-1")))

        assert isinstance(container, NimbusContainer)
        assert isinstance(container.control_plane, EC2ControlPlane)
        assert container.control_plane.region == "eu-west-1"
        assert container.control_plane.profile is None
        assert isinstance(container.retrying_control_plane, RetryingControlPlane)
        assert isinstance(container.instance_store, InstanceStateStore)
        assert isinstance(container.event_bus, EventBus)
        assert isinstance(container.telemetry, OTELExporter)
        assert isinstance(container.attach_volumes, AttachVolumes)
        assert isinstance(container.provision_instance, ProvisionInstance)

    def test_simulate_selects_simulated_control_plane(self):
        config = NimbusConfig(provisioning=ProvisioningConfig(simulate=True))
        container = create_container(config)
        assert isinstance(container.control_plane, SimulatedControlPlane)

    def test_explicit_dependencies_used(self):
        control_plane = SimulatedControlPlane()
        store = InstanceStateStore()

        container = create_container(control_plane=control_plane, instance_store=store)

        assert container.control_plane is control_plane
        assert container.instance_store is store

    def test_retry_config_applied(self):
        config = NimbusConfig(retry=RetryConfig(max_retries=7))
        container = create_container(config, control_plane=SimulatedControlPlane())
        assert container.retry_policy.max_retries == 7

    def test_injected_rng_reaches_policy(self):
        rng = random.Random(1)
        container = create_container(control_plane=SimulatedControlPlane(), rng=rng)
        assert container.retry_policy._rng is rng
