"""
OpenTelemetry Exporter for nimbus

Architectural Intent:
- Exports provisioning telemetry to OTLP-compatible backends
- Records provisioning outcomes, control-plane retries and compensations
- Telemetry is optional: with no endpoint configured, metrics are only
  kept in a bounded local buffer (the most recent METRICS_BUFFER_SIZE),
  so a long-running process never grows it without limit

Security:
- Endpoint defaults to empty string (must be explicitly configured)
- Non-localhost http:// endpoints rejected unless insecure=True
- Validation in __post_init__ prevents accidental plaintext export
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Any
from urllib.parse import urlparse
import logging
from collections import deque
from datetime import datetime, UTC

logger = logging.getLogger(__name__)

METRICS_BUFFER_SIZE = 1024


@dataclass
class OTELConfig:
    endpoint: str = ""
    service_name: str = "nimbus"
    environment: str = "development"
    insecure: bool = False

    def __post_init__(self) -> None:
        if self.endpoint:
            parsed = urlparse(self.endpoint)
            is_localhost = parsed.hostname in ("localhost", "127.0.0.1", "::1")
            if parsed.scheme == "http" and not is_localhost and not self.insecure:
                raise ValueError(
                    f"Non-localhost HTTP endpoint '{self.endpoint}' requires "
                    "insecure=True or use https://. "
                    "Set insecure=True to explicitly allow plaintext export."
                )


class OTELExporter:
    """OpenTelemetry metrics exporter for provisioning workflows."""

    def __init__(self, config: OTELConfig, buffer_size: int = METRICS_BUFFER_SIZE):
        self.config = config
        self._initialized = False
        self._metrics_buffer: deque[dict[str, Any]] = deque(maxlen=buffer_size)
        self._meter: Any = None
        self._histograms: dict[str, Any] = {}

    def initialize(self) -> None:
        """Initialize the OpenTelemetry SDK and OTLP metric exporter."""
        if not self.config.endpoint:
            logger.info("OTEL endpoint not configured, telemetry disabled")
            return

        from opentelemetry import metrics
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource, SERVICE_NAME
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
            OTLPMetricExporter,
        )

        resource = Resource(
            attributes={
                SERVICE_NAME: self.config.service_name,
                "environment": self.config.environment,
            }
        )
        reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(
                endpoint=self.config.endpoint, insecure=self.config.insecure
            )
        )
        metrics.set_meter_provider(
            MeterProvider(resource=resource, metric_readers=[reader])
        )
        self._meter = metrics.get_meter(__name__)
        self._initialized = True

    def _get_histogram(self, name: str, unit: str = "") -> Any:
        if name not in self._histograms and self._meter:
            self._histograms[name] = self._meter.create_histogram(name, unit=unit)
        return self._histograms.get(name)

    def record_metric(
        self,
        name: str,
        value: float,
        unit: str = "",
        attributes: Optional[dict[str, str]] = None,
    ) -> None:
        """Record a metric value."""
        self._metrics_buffer.append(
            {
                "name": name,
                "value": value,
                "unit": unit,
                "attributes": attributes or {},
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

        if self._initialized:
            histogram = self._get_histogram(name, unit)
            if histogram:
                histogram.record(value, attributes=attributes or {})

    def record_provision_success(self, duration_ms: float) -> None:
        self.record_metric("nimbus.provision.duration_ms", duration_ms, unit="ms")

    def record_provision_failure(self, step: str) -> None:
        self.record_metric("nimbus.provision.failure", 1.0, attributes={"step": step})

    def record_retry(self, operation: str, throttled: bool, delay_ms: float) -> None:
        self.record_metric(
            "nimbus.control_plane.retry",
            delay_ms,
            unit="ms",
            attributes={"operation": operation, "throttled": str(throttled)},
        )

    def record_compensation(self, instance_id: str, success: bool) -> None:
        self.record_metric(
            "nimbus.compensation",
            1.0 if success else 0.0,
            attributes={"instance_id": instance_id, "success": str(success)},
        )

    def flush(self) -> int:
        """Drop the local buffer once the SDK owns export; returns the count."""
        if not self._initialized:
            return 0
        exported_count = len(self._metrics_buffer)
        self._metrics_buffer.clear()
        if exported_count:
            logger.debug("Flushed %d buffered metrics", exported_count)
        return exported_count


def create_exporter(
    endpoint: Optional[str] = None,
    service_name: str = "nimbus",
    insecure: bool = False,
) -> OTELExporter:
    """Factory function to create an initialized exporter."""
    exporter = OTELExporter(
        OTELConfig(endpoint=endpoint or "", service_name=service_name, insecure=insecure)
    )
    exporter.initialize()
    return exporter
