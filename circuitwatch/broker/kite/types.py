"""Raw Kite Connect payload shapes.

Narrow ``total=False`` TypedDicts documenting the fields the adapter reads;
everything is mapped into ``circuitwatch.domain.models`` immediately.
"""
from __future__ import annotations

import datetime as _dt
from typing import NotRequired, TypedDict


class InstrumentTD(TypedDict, total=False):
    instrument_token: int
    exchange_token: NotRequired[str]
    tradingsymbol: str
    name: NotRequired[str]
    expiry: NotRequired[_dt.date | str]
    strike: NotRequired[float]
    tick_size: NotRequired[float]
    lot_size: NotRequired[int]
    instrument_type: str  # CE / PE / FUT / EQ
    segment: NotRequired[str]
    exchange: str

class QuoteOhlcTD(TypedDict, total=False):
    open: NotRequired[float]
    high: NotRequired[float]
    low: NotRequired[float]
    close: NotRequired[float]

class QuoteTD(TypedDict, total=False):
    instrument_token: int
    timestamp: NotRequired[_dt.datetime]
    last_trade_time: NotRequired[_dt.datetime]
    last_price: float
    volume: NotRequired[int]
    net_change: NotRequired[float]
    oi: NotRequired[int]
    lower_circuit_limit: NotRequired[float]
    upper_circuit_limit: NotRequired[float]
    ohlc: NotRequired[QuoteOhlcTD]

class HistoricalBarTD(TypedDict, total=False):
    date: _dt.datetime
    open: float
    high: float
    low: float
    close: float
    volume: int
    oi: NotRequired[int]

__all__ = ["InstrumentTD", "QuoteTD", "QuoteOhlcTD", "HistoricalBarTD"]
