import pytest

from circuitwatch.utils.exceptions import RetryError, TransientFetchError
from circuitwatch.utils.retry import call_with_retry, is_retryable, retryable


def test_transient_failure_recovers(monkeypatch):
    monkeypatch.setenv("CW_RETRY_MAX_ATTEMPTS", "3")
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 2:
            raise TransientFetchError("blip")
        return "ok"

    assert call_with_retry(flaky) == "ok"
    assert len(attempts) == 2


def test_exhausted_retries_raise_retry_error(monkeypatch):
    monkeypatch.setenv("CW_RETRY_MAX_ATTEMPTS", "2")
    attempts = []

    def always():
        attempts.append(1)
        raise ConnectionError("down")

    with pytest.raises(RetryError):
        call_with_retry(always)
    assert len(attempts) == 2


def test_non_retryable_propagates_on_first_failure():
    attempts = []

    def rejected():
        attempts.append(1)
        raise TransientFetchError("bad request", retryable=False)

    with pytest.raises(TransientFetchError):
        call_with_retry(rejected)
    assert len(attempts) == 1

    def broken():
        raise ValueError("nope")

    with pytest.raises(ValueError):
        call_with_retry(broken)


def test_is_retryable():
    assert is_retryable(TimeoutError())
    assert not is_retryable(TransientFetchError("x", retryable=False))
    assert not is_retryable(KeyError("k"))


def test_decorator(monkeypatch):
    monkeypatch.setenv("CW_RETRY_MAX_ATTEMPTS", "3")
    calls = []

    @retryable
    def op():
        calls.append(1)
        if len(calls) < 3:
            raise TimeoutError("slow")
        return len(calls)

    assert op() == 3
