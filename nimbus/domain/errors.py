"""
Error Taxonomy

Architectural Intent:
- Every provisioning failure carries the workflow step that produced it so
  callers can tell "never touched the control plane" failures (safe to
  retry the whole operation) from "resource existed remotely" failures
  (verify cleanup before retrying)
- ControlPlaneError is the single exception adapters raise; its flags feed
  the retry policy
- CompensationWarning records a failed cleanup; it is logged and attached
  to the original error, never raised
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ProvisioningStep(Enum):
    RESOLVE_IMAGE = "resolve image"
    VALIDATE_MOUNTS = "validate mounts"
    ENCODE_ENV = "serialize environment"
    LAUNCH = "launch"
    ATTACH_VOLUMES = "attach volumes"
    TAG = "tag"
    REGISTER = "register"


class ControlPlaneError(Exception):
    """A control-plane call failed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: str = "",
        retryable: bool = False,
        throttle: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.retryable = retryable
        self.throttle = throttle


class ResourceNotFoundError(ControlPlaneError):
    def __init__(self, message: str, code: str = "NotFound") -> None:
        super().__init__(message, status_code=404, code=code)


class InstanceNotFoundError(KeyError):
    def __init__(self, instance_id: str) -> None:
        super().__init__(instance_id)
        self.instance_id = instance_id

    def __str__(self) -> str:
        return f"Instance not found: {self.instance_id}"


class CompensationWarning(UserWarning):
    def __init__(self, instance_id: str, cause: BaseException) -> None:
        super().__init__(f"failed to terminate instance {instance_id}: {cause}")
        self.instance_id = instance_id
        self.cause = cause


@dataclass(frozen=True)
class CompensationReport:
    attempted: tuple[str, ...] = ()
    failures: tuple[CompensationWarning, ...] = field(default=())

    @property
    def succeeded(self) -> bool:
        return bool(self.attempted) and not self.failures


class ProvisioningError(Exception):
    step: ProvisioningStep = ProvisioningStep.REGISTER

    def __init__(
        self,
        message: str,
        *,
        instance_id: str = "",
        step: Optional[ProvisioningStep] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.instance_id = instance_id
        if step is not None:
            self.step = step
        self.compensation: Optional[CompensationReport] = None

    @property
    def remote_resource_created(self) -> bool:
        if self.instance_id:
            return True
        return self.compensation is not None and bool(self.compensation.attempted)

    def __str__(self) -> str:
        return f"{self.step.value}: {self.message}"


class ResourceLookupError(ProvisioningError):
    step = ProvisioningStep.RESOLVE_IMAGE


class ValidationError(ProvisioningError):
    step = ProvisioningStep.VALIDATE_MOUNTS

    def __init__(self, message: str, mount_point: str = "") -> None:
        super().__init__(message)
        self.mount_point = mount_point


class EncodingError(ProvisioningError):
    step = ProvisioningStep.ENCODE_ENV


class LaunchError(ProvisioningError):
    step = ProvisioningStep.LAUNCH


class LaunchCountMismatchError(LaunchError):
    def __init__(self, instance_ids: list[str], expected: int = 1) -> None:
        super().__init__(
            f"expected {expected} instance to be created, "
            f"control plane reported {len(instance_ids)}",
            instance_id=next((i for i in instance_ids if i), ""),
        )
        self.expected = expected
        self.instance_ids = tuple(instance_ids)


class VolumeAttachError(ProvisioningError):
    step = ProvisioningStep.ATTACH_VOLUMES


class TaggingError(ProvisioningError):
    step = ProvisioningStep.TAG


class DeadlineExceededError(ProvisioningError, TimeoutError):
    """The provisioning deadline expired while `step` was in progress."""

    def __init__(
        self, message: str, *, step: ProvisioningStep, instance_id: str = ""
    ) -> None:
        super().__init__(message, instance_id=instance_id, step=step)
