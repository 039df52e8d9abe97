"""Kite Connect implementation of the broker capability.

Every call is bounded by a wall-clock timeout (the client can otherwise hang
on a stuck socket), failures are classified into the pipeline taxonomy, and
raw payloads are mapped into domain records before they leave this module.
Instrument downloads and daily bars go through the tenacity retry helper;
quote batches do not (the next poll cycle is the retry).
"""
from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import TypeVar

from circuitwatch.broker.errors import translate_broker_exception
from circuitwatch.broker.kite.client import ClientConfig, KiteLike
from circuitwatch.config.runtime_config import MAX_QUOTE_BATCH
from circuitwatch.domain.models import DailyBar, Instrument, Quote
from circuitwatch.utils.exceptions import RetryError, TransientFetchError
from circuitwatch.utils.retry import call_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _timed_call(fn: Callable[[], T], timeout: float) -> T:
    exe = ThreadPoolExecutor(max_workers=1)
    fut = exe.submit(fn)
    try:
        return fut.result(timeout=timeout)
    except FuturesTimeout:
        raise TimeoutError(f"operation timed out after {timeout}s") from None
    finally:
        # abandon the in-flight call instead of blocking on it
        exe.shutdown(wait=False)


class KiteBroker:
    def __init__(self, client: KiteLike, config: ClientConfig | None = None) -> None:
        self._client = client
        cfg = config or ClientConfig(api_key=None, access_token=None)
        self._timeout = cfg.timeout
        self._instruments_timeout = cfg.instruments_timeout

    def _call(self, op: str, fn: Callable[[], T], *, timeout: float | None = None, retry: bool = False) -> T:
        limit = timeout or self._timeout

        def _once() -> T:
            try:
                return _timed_call(fn, limit)
            except Exception as e:
                raise translate_broker_exception(e, op) from e

        if not retry:
            return _once()
        try:
            return call_with_retry(_once)
        except RetryError as e:
            raise TransientFetchError(f"{op} failed after retries: {e}") from e

    # -- capability ---------------------------------------------------------
    def list_instruments(self, exchange: str) -> list[Instrument]:
        raw = self._call(
            f"instruments[{exchange}]",
            lambda: self._client.instruments(exchange),
            timeout=self._instruments_timeout,
            retry=True,
        )
        if not isinstance(raw, list):
            logger.warning("kite.instruments_unexpected_shape exch=%s type=%s", exchange, type(raw).__name__)
            return []
        out: list[Instrument] = []
        for row in raw:
            inst = Instrument.from_raw(row)
            if inst is not None:
                out.append(inst)
        logger.debug("kite.instruments exch=%s raw=%d options=%d", exchange, len(raw), len(out))
        return out

    def get_quotes(self, tokens: Sequence[int]) -> dict[int, Quote]:
        if not tokens:
            return {}
        if len(tokens) > MAX_QUOTE_BATCH:
            raise ValueError(f"quote batch of {len(tokens)} exceeds limit {MAX_QUOTE_BATCH}")
        keys = [str(t) for t in tokens]
        raw = self._call("quote", lambda: self._client.quote(keys))
        out: dict[int, Quote] = {}
        for key, payload in (raw or {}).items():
            if not isinstance(payload, dict):
                continue
            try:
                token = int(key)
            except ValueError:
                token = int(payload.get("instrument_token") or 0)
            if token <= 0:
                continue
            out[token] = Quote.from_raw(payload, token=token)
        return out

    def get_index_quotes(self, symbols: Sequence[str]) -> dict[str, Quote]:
        if not symbols:
            return {}
        raw = self._call("quote[index]", lambda: self._client.quote(list(symbols)))
        return {
            key: Quote.from_raw(payload)
            for key, payload in (raw or {}).items()
            if isinstance(payload, dict)
        }

    def get_daily_bar(self, token: int, day: dt.date) -> DailyBar | None:
        start = dt.datetime.combine(day, dt.time.min)
        end = dt.datetime.combine(day, dt.time(23, 59, 59))
        raw = self._call(
            f"historical_data[{token}]",
            lambda: self._client.historical_data(token, start, end, "day", oi=True),
            retry=True,
        )
        for row in raw or []:
            bar = DailyBar.from_raw(row)
            if bar is not None and bar.trading_date == day:
                return bar
        return None


__all__ = ["KiteBroker"]
