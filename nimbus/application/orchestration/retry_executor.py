"""
Retry Executor

Architectural Intent:
- Runs a single control-plane call under the RetryPolicy: classify the
  failure, sleep for the computed backoff, try again, and surface the last
  error once the policy says stop or the retry budget is spent
- RetryingControlPlane wraps any ControlPlanePort so every call the
  provisioning workflow makes is retried transparently

Design Decisions:
- tenacity drives the loop; RetryPolicy supplies the retry predicate and
  the wait, so the AWS backoff curve stays a pure domain function
- Only ControlPlaneError is classified; anything else is a bug or a
  cancellation and propagates immediately
- sleep is injected (defaults to asyncio.sleep) so tests run instantly;
  the backoff sleep is a cancellation point
- create_instance forwards the caller's client token unchanged on every
  attempt, so a launch that succeeded remotely but timed out locally is
  not repeated
"""

from __future__ import annotations
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from nimbus.domain.errors import ControlPlaneError
from nimbus.domain.ports.control_plane_port import ControlPlanePort
from nimbus.domain.services.retry_policy import CallOutcome, RetryPolicy
from nimbus.domain.value_objects.image import Image

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _outcome(retry_state: RetryCallState) -> CallOutcome:
    return CallOutcome.from_error(retry_state.outcome.exception())


class RetryExecutor:
    def __init__(
        self,
        policy: RetryPolicy,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        telemetry: Optional[Any] = None,
    ) -> None:
        self.policy = policy
        self._sleep = sleep
        self._telemetry = telemetry

    def _is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, ControlPlaneError) and self.policy.should_retry(
            CallOutcome.from_error(error)
        )

    def _wait(self, retry_state: RetryCallState) -> float:
        retries = retry_state.attempt_number - 1
        if retries >= self.policy.max_retries:
            # Budget spent; the stop condition ends the loop without sleeping.
            return 0.0
        return self.policy.next_delay(_outcome(retry_state), retries).total_seconds()

    def _before_sleep(self, operation: str, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep
        throttled = self.policy.is_throttle(_outcome(retry_state))
        logger.info(
            "%s failed (status=%s code=%s throttled=%s), retry %d/%d in %.3fs",
            operation,
            error.status_code,
            error.code,
            throttled,
            retry_state.attempt_number,
            self.policy.max_retries,
            delay,
            extra={"operation": operation},
        )
        if self._telemetry is not None:
            self._telemetry.record_retry(operation, throttled, delay * 1000)

    async def call(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        retrying = AsyncRetrying(
            retry=retry_if_exception(self._is_retryable),
            wait=self._wait,
            stop=stop_after_attempt(self.policy.max_retries + 1),
            sleep=self._sleep,
            before_sleep=lambda state: self._before_sleep(operation, state),
            reraise=True,
        )
        try:
            return await retrying(fn)
        except ControlPlaneError as e:
            if self._is_retryable(e):
                logger.warning(
                    "%s failed after %d retries: %s",
                    operation,
                    self.policy.max_retries,
                    e,
                    extra={"operation": operation},
                )
            else:
                logger.debug("%s failed with non-retryable error: %s", operation, e)
            raise


class RetryingControlPlane:
    """ControlPlanePort decorator that retries every call via RetryExecutor."""

    def __init__(self, inner: ControlPlanePort, executor: RetryExecutor) -> None:
        self.inner = inner
        self.executor = executor

    async def lookup_image(self, image_id: str) -> Image:
        return await self.executor.call(
            "lookup_image", lambda: self.inner.lookup_image(image_id)
        )

    async def create_instance(
        self,
        image_id: str,
        count: int = 1,
        user_data: str = "",
        client_token: str = "",
    ) -> list[str]:
        return await self.executor.call(
            "create_instance",
            lambda: self.inner.create_instance(
                image_id, count=count, user_data=user_data, client_token=client_token
            ),
        )

    async def terminate_instance(self, instance_id: str) -> None:
        await self.executor.call(
            "terminate_instance", lambda: self.inner.terminate_instance(instance_id)
        )

    async def stop_instance(self, instance_id: str) -> None:
        await self.executor.call(
            "stop_instance", lambda: self.inner.stop_instance(instance_id)
        )

    async def start_instance(self, instance_id: str) -> None:
        await self.executor.call(
            "start_instance", lambda: self.inner.start_instance(instance_id)
        )

    async def attach_volume(
        self, volume_id: str, instance_id: str, mount_point: str
    ) -> None:
        await self.executor.call(
            "attach_volume",
            lambda: self.inner.attach_volume(volume_id, instance_id, mount_point),
        )

    async def create_tags(self, resource_id: str, tags: dict[str, str]) -> None:
        await self.executor.call(
            "create_tags", lambda: self.inner.create_tags(resource_id, tags)
        )
