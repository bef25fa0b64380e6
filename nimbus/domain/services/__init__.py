"""
Domain Services Package

Architectural Intent:
- Stateless domain logic that does not belong to a single entity
"""

from nimbus.domain.services.retry_policy import CallOutcome, RetryPolicy

__all__ = [
    "CallOutcome",
    "RetryPolicy",
]
