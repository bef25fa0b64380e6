"""
Domain Ports Package

Architectural Intent:
- Contains port interfaces (abstract contracts) for external dependencies
- Ports define what the domain needs, adapters implement how
- Follows Hexagonal Architecture principles
"""

from nimbus.domain.ports.control_plane_port import ControlPlanePort
from nimbus.domain.ports.event_bus_port import EventBusPort
from nimbus.domain.ports.instance_store_port import InstanceStorePort

__all__ = [
    "ControlPlanePort",
    "EventBusPort",
    "InstanceStorePort",
]
