"""
Centralized Logging

Architectural Intent:
- One place that decides how nimbus log records reach stderr
- Level and format come from NimbusConfig (log_level, log_format); the
  CLI's --verbose/--debug flags override the level

Design Decisions:
- Provisioning log calls attach context through ``extra`` (instance_id,
  image_id, step, operation); both formatters surface whichever are set,
  so a failed run can be traced to the instance that needs attention
- JSON output is one object per line for log shippers
"""

import json
import logging
import sys
from datetime import datetime, UTC

CONTEXT_FIELDS = ("instance_id", "image_id", "step", "operation")


def _context(record: logging.LogRecord) -> dict[str, str]:
    context = {}
    for name in CONTEXT_FIELDS:
        value = getattr(record, name, None)
        if value not in (None, ""):
            context[name] = str(value)
    return context


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context(record),
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


class ContextFormatter(logging.Formatter):
    """Human-readable lines with the provisioning context appended."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if not context:
            return line
        head, sep, tail = line.partition("\n")
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        return f"{head} [{pairs}]{sep}{tail}"


def resolve_level(level: int | str) -> int:
    """Accept a logging constant or a level name such as "info"."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
) -> None:
    """Configure logging for the nimbus package.

    Args:
        level: Logging level, as a constant or a name ("DEBUG", "warning").
        json_format: If True, use JSON structured output. Otherwise human-readable.
    """
    level = resolve_level(level)
    root = logging.getLogger("nimbus")
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else ContextFormatter())
    root.addHandler(handler)
