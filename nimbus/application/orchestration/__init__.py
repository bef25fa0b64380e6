"""
Application Orchestration Package

Architectural Intent:
- Contains cross-cutting workflow components
- Retrying control-plane access and compensation of partial provisioning
"""

from nimbus.application.orchestration.retry_executor import (
    RetryExecutor,
    RetryingControlPlane,
)
from nimbus.application.orchestration.compensation import ProvisionalInstances

__all__ = ["RetryExecutor", "RetryingControlPlane", "ProvisionalInstances"]
