"""Pytest configuration for circuitwatch.

Responsibilities:
1. Ensure project root on sys.path.
2. Shared fixtures: in-memory database, fixed holiday calendar, fake broker.
3. Keep CW_* environment from the developer shell out of the tests.
"""
import datetime as dt
import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from zoneinfo import ZoneInfo  # noqa: E402

from circuitwatch.storage.db import Database  # noqa: E402
from tests._helpers import FakeBroker, FixedClockCalendar  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_cw_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("CW_"):
            monkeypatch.delenv(key, raising=False)
    # retries without real sleeping
    monkeypatch.setenv("CW_RETRY_BACKOFF", "0")
    monkeypatch.setenv("CW_RETRY_JITTER", "0")
    yield


@pytest.fixture()
def calendar() -> FixedClockCalendar:
    # "now" starts at 10:00 on TRADING_DAY; tests move it with set_now
    return FixedClockCalendar(tz=ZoneInfo("Asia/Kolkata"), holidays=frozenset({dt.date(2024, 12, 25)}))


@pytest.fixture()
def db():
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture()
def broker() -> FakeBroker:
    return FakeBroker()
