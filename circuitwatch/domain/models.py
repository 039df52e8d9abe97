"""Domain model dataclasses for circuit-limit tracking.

Broker payloads are loosely typed dicts; they are mapped into these frozen
records immediately on receipt (``from_raw``) with explicit defaults for
optional fields, so nothing past the broker adapter touches raw dicts.
"""
from __future__ import annotations

import datetime as dt
import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

OPTION_TYPES = ("CE", "PE")

# circuit status labels stored on snapshots
STATUS_NORMAL = "Normal"
STATUS_LOWER = "Lower Circuit"
STATUS_UPPER = "Upper Circuit"
STATUS_NEAR_LOWER = "Near Lower Circuit"
STATUS_NEAR_UPPER = "Near Upper Circuit"

# proximity band used for "near circuit" status and breach alerts
NEAR_BAND = 0.02


def _f(v: Any, default: float = 0.0) -> float:
    if v is None or v == "":
        return default
    try:
        return float(v)
    except (TypeError, ValueError):
        return default

def _i(v: Any, default: int = 0) -> int:
    if v is None or v == "":
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        return default

def _as_date(v: Any) -> dt.date | None:
    if v is None or v == "":
        return None
    if isinstance(v, dt.datetime):
        return v.date()
    if isinstance(v, dt.date):
        return v
    try:
        return dt.date.fromisoformat(str(v)[:10])
    except ValueError:
        return None

def _as_datetime(v: Any) -> dt.datetime | None:
    if v is None or v == "":
        return None
    if isinstance(v, dt.datetime):
        return v
    try:
        return dt.datetime.fromisoformat(str(v))
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class Instrument:
    instrument_token: int
    trading_symbol: str
    underlying: str
    strike: float
    option_type: str  # CE / PE
    expiry: dt.date
    exchange: str
    lot_size: int = 0
    tick_size: float = 0.05
    exchange_token: str = ""

    @classmethod
    def from_raw(cls, data: Mapping[str, Any]) -> Instrument | None:
        """Map a broker instrument row; None when it is not a dated option contract."""
        itype = str(data.get("instrument_type") or "").upper()
        expiry = _as_date(data.get("expiry"))
        token = _i(data.get("instrument_token"))
        if itype not in OPTION_TYPES or expiry is None or token <= 0:
            return None
        return cls(
            instrument_token=token,
            trading_symbol=str(data.get("tradingsymbol") or ""),
            underlying=str(data.get("name") or "").upper(),
            strike=_f(data.get("strike")),
            option_type=itype,
            expiry=expiry,
            exchange=str(data.get("exchange") or ""),
            lot_size=_i(data.get("lot_size")),
            tick_size=_f(data.get("tick_size"), 0.05),
            exchange_token=str(data.get("exchange_token") or ""),
        )

    def is_expired(self, today: dt.date) -> bool:
        return self.expiry < today


@dataclass(frozen=True, slots=True)
class OHLC:
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0

    @classmethod
    def from_raw(cls, data: Mapping[str, Any] | None) -> OHLC:
        if not data:
            return cls()
        return cls(_f(data.get("open")), _f(data.get("high")), _f(data.get("low")), _f(data.get("close")))


@dataclass(frozen=True, slots=True)
class Quote:
    instrument_token: int
    last_price: float
    ohlc: OHLC = field(default_factory=OHLC)
    net_change: float = 0.0
    volume: int = 0
    open_interest: int = 0
    lower_circuit_limit: float = 0.0
    upper_circuit_limit: float = 0.0
    implied_volatility: float = 0.0
    timestamp: dt.datetime | None = None

    @classmethod
    def from_raw(cls, data: Mapping[str, Any], token: int | None = None) -> Quote:
        # quote payloads report volume under either key depending on API version
        volume = data.get("volume")
        if volume is None:
            volume = data.get("volume_traded")
        return cls(
            instrument_token=token if token is not None else _i(data.get("instrument_token")),
            last_price=_f(data.get("last_price")),
            ohlc=OHLC.from_raw(data.get("ohlc")),
            net_change=_f(data.get("net_change")),
            volume=_i(volume),
            open_interest=_i(data.get("oi")),
            lower_circuit_limit=_f(data.get("lower_circuit_limit")),
            upper_circuit_limit=_f(data.get("upper_circuit_limit")),
            implied_volatility=_f(data.get("implied_volatility")),
            timestamp=_as_datetime(data.get("timestamp")),
        )

    @property
    def has_limits(self) -> bool:
        return self.lower_circuit_limit > 0 and self.upper_circuit_limit > 0


@dataclass(frozen=True, slots=True)
class DailyBar:
    trading_date: dt.date
    open: float
    high: float
    low: float
    close: float
    volume: int = 0
    open_interest: int = 0

    @classmethod
    def from_raw(cls, data: Mapping[str, Any]) -> DailyBar | None:
        day = _as_date(data.get("date"))
        if day is None:
            return None
        return cls(
            trading_date=day,
            open=_f(data.get("open")),
            high=_f(data.get("high")),
            low=_f(data.get("low")),
            close=_f(data.get("close")),
            volume=_i(data.get("volume")),
            open_interest=_i(data.get("oi")),
        )


def circuit_status(price: float, lower: float, upper: float) -> str:
    """Position of ``price`` relative to the circuit band."""
    if lower <= 0 or upper <= 0 or price <= 0:
        return STATUS_NORMAL
    if price <= lower:
        return STATUS_LOWER
    if price >= upper:
        return STATUS_UPPER
    if price <= lower * (1 + NEAR_BAND):
        return STATUS_NEAR_LOWER
    if price >= upper * (1 - NEAR_BAND):
        return STATUS_NEAR_UPPER
    return STATUS_NORMAL


def band_issues(quote: Quote) -> list[str]:
    """Data-quality findings for a quote's circuit band; empty when clean.

    Unpopulated limits (both zero) are not an issue by themselves.
    """
    lo, hi, px = quote.lower_circuit_limit, quote.upper_circuit_limit, quote.last_price
    issues: list[str] = []
    if lo == 0 and hi == 0:
        return issues
    if lo <= 0 or hi <= 0:
        issues.append("non-positive circuit limit")
    elif hi <= lo:
        issues.append("upper circuit limit not above lower")
    elif px > 0 and not (lo <= px <= hi):
        issues.append("price outside circuit band")
    return issues


class ItemOutcome(str, enum.Enum):
    OK = "ok"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ItemResult:
    """Per-item outcome aggregated by batch loops instead of raising."""
    outcome: ItemOutcome
    key: Any = None
    reason: str = ""
    value: Any = None

    @classmethod
    def ok(cls, key: Any = None, value: Any = None, reason: str = "") -> ItemResult:
        return cls(ItemOutcome.OK, key, reason, value)

    @classmethod
    def skip(cls, key: Any = None, reason: str = "") -> ItemResult:
        return cls(ItemOutcome.SKIPPED, key, reason)

    @classmethod
    def error(cls, key: Any = None, reason: str = "") -> ItemResult:
        return cls(ItemOutcome.ERROR, key, reason)

    @property
    def is_ok(self) -> bool:
        return self.outcome is ItemOutcome.OK


__all__ = [
    "Instrument", "OHLC", "Quote", "DailyBar",
    "ItemOutcome", "ItemResult",
    "circuit_status", "band_issues",
    "OPTION_TYPES", "NEAR_BAND",
    "STATUS_NORMAL", "STATUS_LOWER", "STATUS_UPPER", "STATUS_NEAR_LOWER", "STATUS_NEAR_UPPER",
]
