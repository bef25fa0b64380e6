"""
Retry Policy Domain Service

Architectural Intent:
- Pure decision logic for control-plane call failures: whether to retry
  and how long to wait before the next attempt
- Separates transient faults (server errors, throttling) from permanent ones
- No I/O and no sleeping; the executor in the application layer acts on
  the decisions

Backoff:
- delay = 2**min(attempt, cap) * (jitter + base) milliseconds
- Throttle conditions use a higher floor (1000ms) and a lower growth
  ceiling (cap 8) than other retryable faults (30ms, cap 13)
- Jitter is drawn from an injected random source so delays are
  reproducible in tests
"""

from __future__ import annotations
import random
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Protocol

from nimbus.domain.errors import ControlPlaneError

THROTTLE_STATUS_CODES = frozenset({502, 503, 504})

DEFAULT_BASE_MS = 30
THROTTLE_BASE_MS = 1000
DEFAULT_CAP = 13
THROTTLE_CAP = 8
MAX_JITTER_MS = 29


class RandomSource(Protocol):
    def randint(self, a: int, b: int) -> int: ...


@dataclass(frozen=True)
class CallOutcome:
    """What the retry policy needs to know about a failed call."""

    status_code: Optional[int] = None
    retryable: bool = False
    throttle: bool = False

    @classmethod
    def from_error(cls, error: ControlPlaneError) -> "CallOutcome":
        return cls(
            status_code=error.status_code,
            retryable=error.retryable,
            throttle=error.throttle,
        )


class RetryPolicy:
    def __init__(
        self,
        max_retries: int = 3,
        rng: Optional[RandomSource] = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.max_retries = max_retries
        self._rng = rng or random.Random()

    @staticmethod
    def is_throttle(outcome: CallOutcome) -> bool:
        if outcome.status_code in THROTTLE_STATUS_CODES:
            return True
        return outcome.throttle

    def should_retry(self, outcome: CallOutcome) -> bool:
        if outcome.status_code is not None and outcome.status_code >= 500:
            return True
        return outcome.retryable or self.is_throttle(outcome)

    def next_delay(self, outcome: CallOutcome, attempt_count: int) -> timedelta:
        throttled = self.is_throttle(outcome)
        base = THROTTLE_BASE_MS if throttled else DEFAULT_BASE_MS
        cap = THROTTLE_CAP if throttled else DEFAULT_CAP
        effective = min(max(attempt_count, 0), cap)
        jitter = self._rng.randint(0, MAX_JITTER_MS)
        return timedelta(milliseconds=(1 << effective) * (jitter + base))

    @staticmethod
    def max_delay(throttled: bool) -> timedelta:
        base = THROTTLE_BASE_MS if throttled else DEFAULT_BASE_MS
        cap = THROTTLE_CAP if throttled else DEFAULT_CAP
        return timedelta(milliseconds=(1 << cap) * (MAX_JITTER_MS + base))
