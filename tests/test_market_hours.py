import datetime as dt

import pytest

from circuitwatch.utils.exceptions import ConfigError
from circuitwatch.utils.market_hours import MarketCalendar, get_holiday_list, resolve_timezone
from tests._helpers import TRADING_DAY, at


def test_weekends_and_holidays_are_not_trading_days(calendar):
    assert calendar.is_trading_day(TRADING_DAY)
    assert not calendar.is_trading_day(dt.date(2024, 12, 25))  # Christmas
    assert not calendar.is_trading_day(dt.date(2024, 12, 21))  # Saturday
    assert not calendar.is_trading_day(dt.date(2024, 12, 22))  # Sunday


def test_trading_hours_bounds_are_inclusive(calendar):
    assert calendar.is_within_trading_hours(dt.time(9, 15))
    assert calendar.is_within_trading_hours(dt.time(15, 30))
    assert not calendar.is_within_trading_hours(dt.time(9, 14, 59))
    assert not calendar.is_within_trading_hours(dt.time(15, 30, 1))


def test_market_open_needs_trading_day_and_hours(calendar):
    assert calendar.is_market_open(at(10, 0))
    assert not calendar.is_market_open(at(8, 0))
    assert not calendar.is_market_open(at(10, 0, day=dt.date(2024, 12, 25)))


def test_aware_datetimes_are_converted_to_market_time(calendar):
    # 04:00 UTC == 09:30 IST
    ts = dt.datetime(2024, 12, 24, 4, 0, tzinfo=dt.timezone.utc)
    assert calendar.is_market_open(ts)
    assert calendar.localize(ts) == at(9, 30)


def test_end_of_day(calendar):
    assert calendar.is_end_of_day(at(15, 30))
    assert calendar.is_end_of_day(at(18, 0))
    assert not calendar.is_end_of_day(at(15, 29))
    assert not calendar.is_end_of_day(at(18, 0, day=dt.date(2024, 12, 21)))


def test_time_to_open_skips_holiday(calendar):
    # Tuesday after close -> Wednesday is a holiday -> Thursday 09:15
    assert calendar.time_to_open(at(16, 0)) == dt.timedelta(hours=17, minutes=15) + dt.timedelta(days=1)
    assert calendar.time_to_open(at(10, 0)) == dt.timedelta(0)
    assert calendar.time_to_open(at(9, 0)) == dt.timedelta(minutes=15)


def test_time_to_open_from_friday_evening(calendar):
    friday = dt.date(2024, 12, 20)
    assert calendar.next_market_open(at(17, 0, day=friday)) == dt.datetime(2024, 12, 23, 9, 15)


def test_time_to_close(calendar):
    assert calendar.time_to_close(at(15, 0)) == dt.timedelta(minutes=30)
    assert calendar.time_to_close(at(16, 0)) == dt.timedelta(0)


def test_previous_and_last_trading_day(calendar):
    thursday = dt.date(2024, 12, 26)
    assert calendar.previous_trading_day(thursday) == TRADING_DAY
    assert calendar.next_trading_day(TRADING_DAY) == thursday
    assert calendar.last_trading_day(at(12, 0)) == dt.date(2024, 12, 23)
    assert calendar.last_trading_day(at(16, 0)) == TRADING_DAY


def test_unknown_timezone_is_config_error():
    with pytest.raises(ConfigError):
        resolve_timezone("Mars/Olympus_Mons")


def test_env_holidays_are_merged(monkeypatch):
    monkeypatch.setenv("CW_HOLIDAYS", "2024-12-24; not-a-date")
    assert "2024-12-24" in get_holiday_list([])
    cal = MarketCalendar.from_env()
    assert not cal.is_trading_day(TRADING_DAY)


def test_from_env_rejects_bad_timezone(monkeypatch):
    monkeypatch.setenv("CW_MARKET_TZ", "Not/AZone")
    with pytest.raises(ConfigError):
        MarketCalendar.from_env()


def test_module_level_helpers_use_env_calendar(monkeypatch):
    from circuitwatch.utils import market_hours

    monkeypatch.setenv("CW_HOLIDAYS", "2024-12-24")
    market_hours.get_calendar(refresh=True)
    try:
        assert not market_hours.is_trading_day(dt.date(2024, 12, 24))
        assert market_hours.is_trading_day(dt.date(2024, 12, 23))
        assert not market_hours.is_market_open(dt.datetime(2024, 12, 24, 10, 0))
        assert market_hours.is_end_of_day(dt.datetime(2024, 12, 23, 15, 31))
        assert market_hours.is_within_trading_hours(dt.time(12, 0))
        assert market_hours.time_to_close(dt.datetime(2024, 12, 23, 15, 0)) == dt.timedelta(minutes=30)
        assert market_hours.time_to_open(dt.datetime(2024, 12, 23, 9, 0)) == dt.timedelta(minutes=15)
    finally:
        monkeypatch.delenv("CW_HOLIDAYS")
        market_hours.get_calendar(refresh=True)
