"""
Market calendar for NSE/BSE equity derivatives.
Answers "is this a trading day", "is this inside trading hours" and
"how long until open/close" for scheduling decisions.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from circuitwatch.utils.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Asia/Kolkata"
MARKET_OPEN = time(9, 15)
MARKET_CLOSE = time(15, 30)

MARKET_HOLIDAYS_2024 = [
    "2024-01-26",  # Republic Day
    "2024-03-08",  # Maha Shivaratri
    "2024-03-25",  # Holi
    "2024-03-29",  # Good Friday
    "2024-04-11",  # Id-Ul-Fitr
    "2024-04-17",  # Ram Navami
    "2024-05-01",  # Maharashtra Day
    "2024-08-15",  # Independence Day
    "2024-10-02",  # Gandhi Jayanti
    "2024-11-01",  # Diwali Laxmi Pujan
    "2024-11-15",  # Gurunanak Jayanti
    "2024-12-25",  # Christmas
]

MARKET_HOLIDAYS_2025 = [
    "2025-02-26",  # Mahashivratri
    "2025-03-14",  # Holi
    "2025-03-31",  # Id-Ul-Fitr
    "2025-04-10",  # Mahavir Jayanti
    "2025-04-14",  # Ambedkar Jayanti
    "2025-04-18",  # Good Friday
    "2025-05-01",  # Maharashtra Day
    "2025-08-15",  # Independence Day
    "2025-08-27",  # Ganesh Chaturthi
    "2025-10-02",  # Gandhi Jayanti
    "2025-10-21",  # Diwali Laxmi Pujan
    "2025-10-22",  # Balipratipada
    "2025-11-05",  # Guru Nanak Jayanti
    "2025-12-25",  # Christmas
]


def _parse_env_holidays() -> list[str]:
    """Parse additional holidays from CW_HOLIDAYS env (comma, semicolon or space separated)."""
    raw = os.environ.get('CW_HOLIDAYS', '').strip()
    if not raw:
        return []
    parts = [p.strip() for p in raw.replace(';', ',').replace('\n', ',').replace(' ', ',').split(',') if p.strip()]
    out = []
    for p in parts:
        try:
            date.fromisoformat(p)
        except ValueError:
            logger.warning("market_hours.invalid_holiday value=%r", p)
            continue
        out.append(p)
    return out


def get_holiday_list(base: list[str] | None = None) -> list[str]:
    """Return merged holiday list (static + env overrides)."""
    base_list = list(base) if base is not None else MARKET_HOLIDAYS_2024 + MARKET_HOLIDAYS_2025
    merged = list(dict.fromkeys(base_list + _parse_env_holidays()))
    return merged


def resolve_timezone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Unrecognized market timezone: {name!r}") from e


@dataclass(frozen=True)
class MarketCalendar:
    """Trading calendar bound to one exchange timezone.

    Naive datetimes passed in are interpreted as already being in market
    local time; aware datetimes are converted. Every method is pure.
    """
    tz: tzinfo = field(default_factory=lambda: resolve_timezone(DEFAULT_TIMEZONE))
    holidays: frozenset[date] = field(default_factory=frozenset)
    open_time: time = MARKET_OPEN
    close_time: time = MARKET_CLOSE

    @classmethod
    def from_env(cls) -> MarketCalendar:
        tz_name = os.environ.get('CW_MARKET_TZ', DEFAULT_TIMEZONE)
        return cls(
            tz=resolve_timezone(tz_name),
            holidays=frozenset(date.fromisoformat(d) for d in get_holiday_list()),
        )

    # -- time helpers ---------------------------------------------------
    def now(self) -> datetime:
        """Current market-local time as a naive datetime."""
        return datetime.now(self.tz).replace(tzinfo=None)

    def localize(self, ts: datetime | None = None) -> datetime:
        if ts is None:
            return self.now()
        if ts.tzinfo is not None:
            return ts.astimezone(self.tz).replace(tzinfo=None)
        return ts

    def today(self, reference_time: datetime | None = None) -> date:
        return self.localize(reference_time).date()

    # -- calendar ---------------------------------------------------------
    def is_trading_day(self, day: date | datetime) -> bool:
        if isinstance(day, datetime):
            day = self.localize(day).date()
        return day.weekday() < 5 and day not in self.holidays

    def is_within_trading_hours(self, ts: datetime | time) -> bool:
        t = ts if isinstance(ts, time) else self.localize(ts).time()
        return self.open_time <= t <= self.close_time

    def is_market_open(self, reference_time: datetime | None = None) -> bool:
        now = self.localize(reference_time)
        return self.is_trading_day(now.date()) and self.is_within_trading_hours(now.time())

    def is_end_of_day(self, reference_time: datetime | None = None) -> bool:
        now = self.localize(reference_time)
        return self.is_trading_day(now.date()) and now.time() >= self.close_time

    def session_open(self, day: date) -> datetime:
        return datetime.combine(day, self.open_time)

    def session_close(self, day: date) -> datetime:
        return datetime.combine(day, self.close_time)

    def next_trading_day(self, day: date) -> date:
        nxt = day + timedelta(days=1)
        while not self.is_trading_day(nxt):
            nxt += timedelta(days=1)
        return nxt

    def previous_trading_day(self, day: date) -> date:
        prev = day - timedelta(days=1)
        while not self.is_trading_day(prev):
            prev -= timedelta(days=1)
        return prev

    def last_trading_day(self, reference_time: datetime | None = None) -> date:
        """Most recent trading date whose session has closed."""
        now = self.localize(reference_time)
        if self.is_trading_day(now.date()) and now.time() >= self.close_time:
            return now.date()
        return self.previous_trading_day(now.date())

    def next_market_open(self, reference_time: datetime | None = None) -> datetime:
        now = self.localize(reference_time)
        day = now.date()
        if self.is_trading_day(day) and now.time() < self.open_time:
            return self.session_open(day)
        return self.session_open(self.next_trading_day(day))

    def time_to_open(self, reference_time: datetime | None = None) -> timedelta:
        now = self.localize(reference_time)
        if self.is_market_open(now):
            return timedelta(0)
        return self.next_market_open(now) - now

    def time_to_close(self, reference_time: datetime | None = None) -> timedelta:
        now = self.localize(reference_time)
        if not self.is_market_open(now):
            return timedelta(0)
        return self.session_close(now.date()) - now


_default_calendar: MarketCalendar | None = None


def get_calendar(refresh: bool = False) -> MarketCalendar:
    global _default_calendar
    if _default_calendar is None or refresh:
        _default_calendar = MarketCalendar.from_env()
    return _default_calendar


def is_trading_day(day: date | datetime) -> bool:
    return get_calendar().is_trading_day(day)

def is_within_trading_hours(ts: datetime | time) -> bool:
    return get_calendar().is_within_trading_hours(ts)

def is_market_open(reference_time: datetime | None = None) -> bool:
    return get_calendar().is_market_open(reference_time)

def is_end_of_day(reference_time: datetime | None = None) -> bool:
    return get_calendar().is_end_of_day(reference_time)

def time_to_open(reference_time: datetime | None = None) -> timedelta:
    return get_calendar().time_to_open(reference_time)

def time_to_close(reference_time: datetime | None = None) -> timedelta:
    return get_calendar().time_to_close(reference_time)


__all__ = [
    'MarketCalendar', 'get_calendar', 'get_holiday_list', 'resolve_timezone',
    'is_trading_day', 'is_within_trading_hours', 'is_market_open', 'is_end_of_day',
    'time_to_open', 'time_to_close',
    'MARKET_OPEN', 'MARKET_CLOSE', 'DEFAULT_TIMEZONE',
]
