"""Shared builders and fakes for the test suite."""
from __future__ import annotations

import datetime as dt
from collections.abc import Sequence
from dataclasses import dataclass, field

from circuitwatch.domain.models import OHLC, DailyBar, Instrument, Quote
from circuitwatch.utils.market_hours import MarketCalendar

# Tuesday; 2024-12-25 is a market holiday
TRADING_DAY = dt.date(2024, 12, 24)
EXPIRY = dt.date(2024, 12, 26)


def at(hour: int, minute: int = 0, second: int = 0, day: dt.date = TRADING_DAY) -> dt.datetime:
    return dt.datetime.combine(day, dt.time(hour, minute, second))


def make_instrument(token: int = 1001, symbol: str = "NIFTY24DECCE25000", underlying: str = "NIFTY",
                    strike: float = 25000.0, option_type: str = "CE", expiry: dt.date = EXPIRY,
                    exchange: str = "NFO") -> Instrument:
    return Instrument(
        instrument_token=token,
        trading_symbol=symbol,
        underlying=underlying,
        strike=strike,
        option_type=option_type,
        expiry=expiry,
        exchange=exchange,
        lot_size=25,
    )


def make_quote(token: int = 1001, lower: float = 100.0, upper: float = 120.0, price: float = 110.0,
               volume: int = 1000, oi: int = 5000, ts: dt.datetime | None = None) -> Quote:
    return Quote(
        instrument_token=token,
        last_price=price,
        ohlc=OHLC(price, price, price, price),
        volume=volume,
        open_interest=oi,
        lower_circuit_limit=lower,
        upper_circuit_limit=upper,
        timestamp=ts,
    )


def raw_instrument(inst: Instrument) -> dict:
    return {
        "instrument_token": inst.instrument_token,
        "exchange_token": str(inst.instrument_token // 256),
        "tradingsymbol": inst.trading_symbol,
        "name": inst.underlying,
        "strike": inst.strike,
        "instrument_type": inst.option_type,
        "expiry": inst.expiry,
        "exchange": inst.exchange,
        "lot_size": inst.lot_size,
        "tick_size": 0.05,
    }


class FakeBroker:
    """In-memory BrokerLike; set ``*_error`` attributes to make calls raise."""

    def __init__(self) -> None:
        self.instruments: dict[str, list[Instrument]] = {}
        self.quotes: dict[int, Quote] = {}
        self.index_quotes: dict[str, Quote] = {}
        self.bars: dict[tuple[int, dt.date], DailyBar] = {}
        self.instruments_error: BaseException | None = None
        self.quotes_error: BaseException | None = None
        self.index_error: BaseException | None = None
        self.bar_error: BaseException | None = None
        # fail only the n-th quote call (0-based)
        self.fail_quote_calls: set[int] = set()
        self.calls: list[tuple[str, object]] = []

    def list_instruments(self, exchange: str) -> list[Instrument]:
        self.calls.append(("list_instruments", exchange))
        if self.instruments_error is not None:
            raise self.instruments_error
        return list(self.instruments.get(exchange, []))

    def get_quotes(self, tokens: Sequence[int]) -> dict[int, Quote]:
        n = sum(1 for name, _ in self.calls if name == "get_quotes")
        self.calls.append(("get_quotes", list(tokens)))
        if self.quotes_error is not None:
            raise self.quotes_error
        if n in self.fail_quote_calls:
            from circuitwatch.utils.exceptions import TransientFetchError
            raise TransientFetchError(f"quote call {n} failed")
        return {t: self.quotes[t] for t in tokens if t in self.quotes}

    def get_index_quotes(self, symbols: Sequence[str]) -> dict[str, Quote]:
        self.calls.append(("get_index_quotes", list(symbols)))
        if self.index_error is not None:
            raise self.index_error
        return {s: self.index_quotes[s] for s in symbols if s in self.index_quotes}

    def get_daily_bar(self, token: int, day: dt.date) -> DailyBar | None:
        self.calls.append(("get_daily_bar", (token, day)))
        if self.bar_error is not None:
            raise self.bar_error
        return self.bars.get((token, day))

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


@dataclass(frozen=True)
class FixedClockCalendar(MarketCalendar):
    """Calendar whose ``now`` is set by the test instead of the wall clock."""
    clock: list[dt.datetime] = field(default_factory=lambda: [at(10, 0)], compare=False)

    def now(self) -> dt.datetime:
        return self.clock[0]

    def set_now(self, ts: dt.datetime) -> None:
        self.clock[0] = ts
