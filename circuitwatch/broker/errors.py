"""Broker error classification bridging raw client exceptions to the pipeline taxonomy.

The Kite client raises its own exception classes (TokenException,
NetworkException, ...) plus whatever the HTTP layer throws. The adapter
classifies each failure once at the boundary so the rest of the pipeline only
sees ``AuthenticationError`` or ``TransientFetchError``.

Classification order:
  1. Already part of the taxonomy -> unchanged
  2. Known client exception class names
  3. Timeout hints (message or type name) -> transient
  4. Auth hints -> auth
  5. Transient hints -> transient
  6. Fallback -> rejected (transient for scheduling, but not retried in-cycle)
"""
from __future__ import annotations

from circuitwatch.utils.exceptions import AuthenticationError, CircuitWatchError, TransientFetchError

KIND_AUTH = "auth"
KIND_TIMEOUT = "timeout"
KIND_TRANSIENT = "transient"
KIND_REJECTED = "rejected"

# kiteconnect.exceptions class names
_AUTH_TYPES = {"TokenException", "PermissionException"}
_TRANSIENT_TYPES = {"NetworkException", "DataException"}

_AUTH_TOKENS = ("invalid token", "token expired", "token is invalid", "session expired", "unauthorized",
                "forbidden", "api_key", "access_token", "authentication")
_TIMEOUT_TOKENS = ("timeout", "timed out", "deadline")
_TRANSIENT_TOKENS = ("temporarily", "rate limit", "too many requests", "throttle",
                     "connection reset", "connection aborted", "connection refused", "gateway")


def classify_broker_exception(exc: BaseException) -> str:
    if isinstance(exc, AuthenticationError):
        return KIND_AUTH
    if isinstance(exc, TransientFetchError):
        return KIND_TRANSIENT if exc.retryable else KIND_REJECTED
    name = type(exc).__name__
    if name in _AUTH_TYPES:
        return KIND_AUTH
    if name in _TRANSIENT_TYPES:
        return KIND_TRANSIENT
    msg = str(exc).lower()
    if isinstance(exc, TimeoutError) or "timeout" in name.lower() or any(t in msg for t in _TIMEOUT_TOKENS):
        return KIND_TIMEOUT
    if any(t in msg for t in _AUTH_TOKENS):
        return KIND_AUTH
    if isinstance(exc, ConnectionError) or any(t in msg for t in _TRANSIENT_TOKENS):
        return KIND_TRANSIENT
    # InputException, GeneralException and anything unrecognised
    return KIND_REJECTED


def translate_broker_exception(exc: BaseException, op: str) -> CircuitWatchError:
    """Return the taxonomy exception to raise (``from exc``) for a failed broker call."""
    if isinstance(exc, (AuthenticationError, TransientFetchError)):
        return exc
    kind = classify_broker_exception(exc)
    detail = f"{op}: {type(exc).__name__}: {exc}"
    if kind == KIND_AUTH:
        return AuthenticationError(detail)
    if kind == KIND_REJECTED:
        return TransientFetchError(detail, retryable=False)
    return TransientFetchError(detail)


__all__ = [
    "KIND_AUTH",
    "KIND_TIMEOUT",
    "KIND_TRANSIENT",
    "KIND_REJECTED",
    "classify_broker_exception",
    "translate_broker_exception",
]
