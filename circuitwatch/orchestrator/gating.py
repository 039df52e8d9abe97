"""Market-hours gating for interval loops."""
from __future__ import annotations

import datetime as _dt
import logging
import time
from collections.abc import Callable

from circuitwatch.utils.market_hours import MarketCalendar

logger = logging.getLogger(__name__)

# seconds between "market closed" log lines
_LOG_EVERY = 300.0


def should_skip_cycle_market_hours(calendar: MarketCalendar, now: _dt.datetime | None = None) -> bool:
    return not calendar.is_market_open(now)


def market_hours_gate(calendar: MarketCalendar,
                      clock: Callable[[], float] = time.monotonic) -> Callable[[], bool]:
    """Gate for ``run_loop``: True (skip) while the market is closed, logging the wait now and then."""
    last_log = [float("-inf")]

    def _gate() -> bool:
        if not should_skip_cycle_market_hours(calendar):
            return False
        if clock() - last_log[0] >= _LOG_EVERY:
            last_log[0] = clock()
            wait = calendar.time_to_open()
            logger.info("[gating] Market closed. Next open in %.1f minutes", wait.total_seconds() / 60)
        return True

    return _gate


__all__ = ["should_skip_cycle_market_hours", "market_hours_gate"]
