"""Broker capability consumed by the pipeline.

Implementations map raw payloads to domain records before returning and
raise only ``AuthenticationError`` / ``TransientFetchError``. Empty results
mean "no data this cycle" and must never be used to wipe cached state.
"""
from __future__ import annotations

import datetime as dt
from collections.abc import Sequence
from typing import Protocol

from circuitwatch.domain.models import DailyBar, Instrument, Quote


class BrokerLike(Protocol):
    def list_instruments(self, exchange: str) -> list[Instrument]: ...
    def get_quotes(self, tokens: Sequence[int]) -> dict[int, Quote]: ...
    def get_index_quotes(self, symbols: Sequence[str]) -> dict[str, Quote]: ...
    def get_daily_bar(self, token: int, day: dt.date) -> DailyBar | None: ...


__all__ = ["BrokerLike"]
