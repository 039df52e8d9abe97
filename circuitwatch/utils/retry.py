"""Retry utilities built on tenacity.

Provides a small API:
- retryable decorator for functions/methods
- call_with_retry helper for ad-hoc calls

Only transient failures are retried and always with exponential backoff;
anything that still fails surfaces to the caller, which skips the unit of
work until the next scheduled cycle.

Environment knobs:
  CW_RETRY_MAX_ATTEMPTS: default 2
  CW_RETRY_MAX_SECONDS:  overall cap in seconds (default 8)
  CW_RETRY_BACKOFF:      base backoff seconds (default 0.5)
  CW_RETRY_JITTER:       add random jitter (default on)
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, ParamSpec, TypeVar, cast

from tenacity import (
    Retrying,
    retry,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    wait_random,
)

from circuitwatch.utils.env_flags import env_bool, env_float, env_int
from circuitwatch.utils.exceptions import RetryError, TransientFetchError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (TimeoutError, ConnectionError, TransientFetchError)


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, RETRYABLE_EXCEPTIONS) and getattr(exc, "retryable", True)


def build_wait_strategy() -> Any:
    base = env_float('CW_RETRY_BACKOFF', 0.5)
    exp = wait_exponential(multiplier=base, min=base, max=4.0)
    if env_bool('CW_RETRY_JITTER', True):
        return exp + wait_random(0, base)
    return exp


def build_stop_strategy() -> Any:
    attempts = max(1, env_int('CW_RETRY_MAX_ATTEMPTS', 2))
    max_seconds = env_float('CW_RETRY_MAX_SECONDS', 8.0)
    # whichever limit comes first
    return stop_after_attempt(attempts) | stop_after_delay(max_seconds)


def _log_before_sleep(retry_state: Any) -> None:
    outcome = retry_state.outcome
    exc = outcome.exception() if outcome is not None and outcome.failed else None
    logger.debug(
        "retrying %s attempt=%s sleep=%.2fs err=%s",
        getattr(retry_state.fn, '__name__', retry_state.fn),
        retry_state.attempt_number,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
        exc,
    )


def retryable(func: Callable[P, R]) -> Callable[P, R]:
    """Decorator applying the env-configured retry strategy.

    Example:
        @retryable
        def fetch():
            ...
    """
    wrapped = retry(
        retry=retry_if_exception(is_retryable),
        wait=build_wait_strategy(),
        stop=build_stop_strategy(),
        reraise=True,
        before_sleep=_log_before_sleep,
    )(func)
    return cast(Callable[P, R], wrapped)


def call_with_retry(fn: Callable[P, R], *args: P.args, **kwargs: P.kwargs) -> R:
    """Call ``fn`` with retry on transient errors.

    Non-transient exceptions propagate untouched on the first failure.
    Raises RetryError (chained to the last transient error) once attempts are
    exhausted.
    """
    try:
        for attempt in Retrying(
            retry=retry_if_exception(is_retryable),
            wait=build_wait_strategy(),
            stop=build_stop_strategy(),
            reraise=True,
            before_sleep=_log_before_sleep,
        ):
            with attempt:
                return fn(*args, **kwargs)
    except RETRYABLE_EXCEPTIONS as e:
        if not is_retryable(e):
            raise
        raise RetryError(str(e)) from e
    # Retrying either returns or raises
    raise RetryError("Operation did not execute")


__all__ = ["retryable", "call_with_retry", "build_wait_strategy", "build_stop_strategy", "RETRYABLE_EXCEPTIONS", "is_retryable"]
