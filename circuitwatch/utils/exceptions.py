"""circuitwatch exception hierarchy.

A small tree for categorizing failures across the pipeline. Only
``ConfigError`` is fatal (raised at startup); everything else degrades to
"skip this unit of work" and is surfaced through logs, metrics and per-item
results.
"""
from __future__ import annotations


class CircuitWatchError(Exception):
    """Base class for all circuitwatch exceptions."""


class ConfigError(CircuitWatchError):
    """Misconfiguration discovered at startup (bad timezone, missing keys, schema errors)."""


class TransientFetchError(CircuitWatchError):
    """Network/API failure fetching instruments, quotes or historical bars.

    Retried on the next scheduled cycle, never in a tight loop. ``retryable``
    is False for request-level rejections that an immediate backoff retry
    cannot fix.
    """

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class AuthenticationError(CircuitWatchError):
    """Missing or expired broker credential; polling pauses until refreshed."""


class DataQualityError(CircuitWatchError):
    """Observation failed sanity checks (non-positive limits, inverted band, price outside band)."""


class PersistenceError(CircuitWatchError):
    """Store unavailable or constraint violation on insert."""


class RetryError(CircuitWatchError):
    """Raised when a retryable operation ultimately fails after retries."""


__all__ = [
    "CircuitWatchError",
    "ConfigError",
    "TransientFetchError",
    "AuthenticationError",
    "DataQualityError",
    "PersistenceError",
    "RetryError",
]
