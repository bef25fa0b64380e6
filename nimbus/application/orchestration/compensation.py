"""
Compensation

Architectural Intent:
- Treats launched-but-not-yet-registered instances as a scoped resource
  whose release action is "terminate"
- Release is skipped once the workflow commits (registration succeeded)
  and runs on every other exit path, including cancellation

Design Decisions:
- Termination is best-effort: failures become CompensationWarnings that
  are logged and attached to the in-flight ProvisioningError, never raised
  in its place
- The whole cleanup runs as one shielded task: a cancellation arriving
  while it runs is held back until every tracked id has had its terminate
  call, then re-raised
- No deadline applies to cleanup; callers put their deadline around the
  work inside the block, not around the block itself
"""

from __future__ import annotations
import asyncio
import logging
from types import TracebackType
from typing import Any, Awaitable, Callable, Optional

from nimbus.domain.errors import (
    CompensationReport,
    CompensationWarning,
    ProvisioningError,
)
from nimbus.domain.ports.control_plane_port import ControlPlanePort

logger = logging.getLogger(__name__)


class ProvisionalInstances:
    """Async context manager tracking instances that must not be orphaned.

    Usage::

        async with ProvisionalInstances(control_plane) as provisional:
            ids = await control_plane.create_instance(...)
            provisional.track(*ids)
            ...
            provisional.commit()
    """

    def __init__(
        self,
        control_plane: ControlPlanePort,
        on_compensated: Optional[
            Callable[[str, Optional[CompensationWarning]], Awaitable[Any]]
        ] = None,
    ) -> None:
        self.control_plane = control_plane
        self._on_compensated = on_compensated
        self._instance_ids: list[str] = []
        self._committed = False
        self.report: Optional[CompensationReport] = None

    @property
    def instance_ids(self) -> tuple[str, ...]:
        return tuple(self._instance_ids)

    def track(self, *instance_ids: str) -> None:
        for instance_id in instance_ids:
            if instance_id and instance_id not in self._instance_ids:
                self._instance_ids.append(instance_id)

    def commit(self) -> None:
        self._committed = True

    async def __aenter__(self) -> "ProvisionalInstances":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> bool:
        if exc is None or self._committed or not self._instance_ids:
            return False

        cleanup = asyncio.ensure_future(self._compensate())
        cancelled = False
        while not cleanup.done():
            try:
                await asyncio.shield(cleanup)
            except asyncio.CancelledError:
                if cleanup.cancelled():
                    raise
                cancelled = True

        self.report = cleanup.result()
        if isinstance(exc, ProvisioningError):
            exc.compensation = self.report
        if cancelled and not isinstance(exc, asyncio.CancelledError):
            raise asyncio.CancelledError()
        return False

    async def _compensate(self) -> CompensationReport:
        failures: list[CompensationWarning] = []
        for instance_id in self._instance_ids:
            logger.warning(
                "Cleaning up instance %s", instance_id, extra={"instance_id": instance_id}
            )
            warning: Optional[CompensationWarning] = None
            try:
                await self.control_plane.terminate_instance(instance_id)
            except Exception as e:
                warning = CompensationWarning(instance_id, e)
                failures.append(warning)
                logger.warning("%s", warning, extra={"instance_id": instance_id})
            else:
                logger.warning("Terminated instance %s after failed provisioning", instance_id)
            if self._on_compensated is not None:
                await self._on_compensated(instance_id, warning)
        return CompensationReport(
            attempted=tuple(self._instance_ids), failures=tuple(failures)
        )
