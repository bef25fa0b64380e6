"""
nimbus Telemetry Infrastructure

Architectural Intent:
- OpenTelemetry integration for provisioning observability
"""

from nimbus.infrastructure.telemetry.otel_exporter import (
    OTELExporter,
    OTELConfig,
    create_exporter,
)

__all__ = [
    "OTELExporter",
    "OTELConfig",
    "create_exporter",
]
