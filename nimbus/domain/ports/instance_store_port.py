"""
Instance Store Port

Architectural Intent:
- Contract for the registry of known instances
- All writes go through one atomic read-modify-write operation
"""

from typing import Callable, Mapping, Protocol, runtime_checkable
from nimbus.domain.entities.instance import Instance

InstanceMapping = Mapping[str, Instance]


@runtime_checkable
class InstanceStorePort(Protocol):
    def get(self, instance_id: str) -> Instance: ...

    def modify_all(
        self, update: Callable[[dict[str, Instance]], InstanceMapping]
    ) -> None: ...

    def register(self, instance: Instance) -> None: ...

    def list_instances(self) -> list[Instance]: ...
