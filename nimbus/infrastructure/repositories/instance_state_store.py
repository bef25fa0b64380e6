"""
Instance State Store

Architectural Intent:
- Process-wide registry of known instances keyed by instance id
- The only shared mutable state in nimbus; every write is an atomic
  read-modify-write under a lock so concurrent provisioning attempts never
  interleave partial writes

Design Decisions:
- threading.Lock rather than asyncio.Lock: the critical section never
  awaits, and the store is also used from worker threads
- modify_all hands the update function a copy of the full mapping and
  installs whatever it returns; callers never hold references into the
  live registry
- Instances are frozen dataclasses, so returning them from get() cannot
  leak mutable state
"""

import logging
import threading
from typing import Callable, Mapping, Optional

from nimbus.domain.entities.instance import Instance
from nimbus.domain.errors import InstanceNotFoundError

logger = logging.getLogger(__name__)


class InstanceStateStore:
    def __init__(self, instances: Optional[Mapping[str, Instance]] = None) -> None:
        self._lock = threading.Lock()
        self._instances: dict[str, Instance] = {}
        if instances:
            self.modify_all(lambda current: {**current, **instances})

    def get(self, instance_id: str) -> Instance:
        with self._lock:
            instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    def modify_all(
        self, update: Callable[[dict[str, Instance]], Mapping[str, Instance]]
    ) -> None:
        """Atomically replace the registry with update(copy of registry).

        If update raises, the registry is left untouched.
        """
        with self._lock:
            updated = dict(update(dict(self._instances)))
            for key, instance in updated.items():
                if not key or key != instance.id:
                    raise ValueError(
                        f"Registry key {key!r} does not match instance id {instance.id!r}"
                    )
            self._instances = updated

    def register(self, instance: Instance) -> None:
        """Insert or overwrite the entry for instance.id."""

        def _insert(current: dict[str, Instance]) -> dict[str, Instance]:
            current[instance.id] = instance
            return current

        self.modify_all(_insert)
        logger.debug("Registered instance %s (%s)", instance.id, instance.name)

    def list_instances(self) -> list[Instance]:
        with self._lock:
            return sorted(self._instances.values(), key=lambda i: i.created)

    def __contains__(self, instance_id: object) -> bool:
        with self._lock:
            return instance_id in self._instances

    def __len__(self) -> int:
        with self._lock:
            return len(self._instances)
