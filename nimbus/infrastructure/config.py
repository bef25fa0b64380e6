"""
Configuration Module

Architectural Intent:
- Centralized configuration loading from a JSON file
- Provides typed access to all nimbus settings
- Falls back to sensible defaults when config file is absent
- Environment variables override file-based config

Design Decisions:
- Config is a frozen dataclass for immutability after load
- Nested config sections map to sub-dataclasses
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import dataclasses
import json
import logging
import os

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AWSConfig:
    """EC2 control plane connection settings."""
    region: str = "us-east-1"
    profile: str = ""
    endpoint_url: str = ""


@dataclass(frozen=True)
class RetryConfig:
    """Control-plane retry settings."""
    max_retries: int = 3


@dataclass(frozen=True)
class ProvisioningConfig:
    """Provisioning workflow settings."""
    timeout_seconds: int = 0  # 0 disables the deadline
    simulate: bool = False


@dataclass(frozen=True)
class TelemetryConfig:
    """OpenTelemetry configuration."""
    endpoint: str = ""
    insecure: bool = False


@dataclass(frozen=True)
class NimbusConfig:
    """Root configuration for nimbus."""
    aws: AWSConfig = field(default_factory=AWSConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    provisioning: ProvisioningConfig = field(default_factory=ProvisioningConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    log_level: str = "WARNING"
    log_format: str = "text"  # "text" or "json"


_TOP_LEVEL_KEYS = {"log_level", "log_format"}


def _env_override(data: dict, prefix: str = "NIMBUS") -> dict:
    """Override config values with environment variables.

    Environment variables follow the pattern NIMBUS_SECTION_KEY.
    For example: NIMBUS_AWS_REGION=eu-west-1, NIMBUS_RETRY_MAX_RETRIES=5
    """
    for key, value in os.environ.items():
        if not key.startswith(f"{prefix}_"):
            continue
        name = key[len(prefix) + 1:].lower()
        if name in _TOP_LEVEL_KEYS:
            data[name] = value
            continue
        parts = name.split("_", 1)
        if len(parts) == 2:
            section, field_name = parts
            if not isinstance(data.get(section), dict):
                data[section] = {}
            data[section][field_name] = value
    return data


def _parse_config_file(path: Path) -> dict:
    """Parse a JSON config file. Returns empty dict on failure."""
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError:
        logger.debug("Config file not found: %s", path)
        return {}
    except json.JSONDecodeError as e:
        logger.warning("Invalid config file %s: %s", path, e)
        return {}


def _build_sub_config(cls, data: dict):
    """Build a sub-config dataclass from a dict, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}

    # Convert string numbers to int/bool
    for f in dataclasses.fields(cls):
        if f.name in filtered and isinstance(filtered[f.name], str):
            if f.type == "int":
                filtered[f.name] = int(filtered[f.name])
            elif f.type == "bool":
                filtered[f.name] = filtered[f.name].lower() in ("true", "1", "yes")

    return cls(**filtered)


def load_config(
    path: Optional[str] = None,
    env_prefix: str = "NIMBUS",
) -> NimbusConfig:
    """Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (NIMBUS_SECTION_KEY)
    2. Config file values
    3. Defaults

    Args:
        path: Path to config file (JSON). Defaults to nimbus.json in CWD.
        env_prefix: Environment variable prefix. Defaults to NIMBUS.
    """
    config_path = Path(path) if path else Path("nimbus.json")
    data = _parse_config_file(config_path)
    data = _env_override(data, env_prefix)

    return NimbusConfig(
        aws=_build_sub_config(AWSConfig, data.get("aws", {})),
        retry=_build_sub_config(RetryConfig, data.get("retry", {})),
        provisioning=_build_sub_config(
            ProvisioningConfig, data.get("provisioning", {})
        ),
        telemetry=_build_sub_config(TelemetryConfig, data.get("telemetry", {})),
        log_level=data.get("log_level", "WARNING"),
        log_format=data.get("log_format", "text"),
    )
