"""Pipeline health: data freshness during the session and broker auth state."""
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any

from circuitwatch.broker.auth import AuthState
from circuitwatch.storage.snapshots import SnapshotStore
from circuitwatch.utils.exceptions import PersistenceError
from circuitwatch.utils.market_hours import MarketCalendar

logger = logging.getLogger(__name__)

STALE_AFTER = dt.timedelta(minutes=2)


@dataclass(slots=True)
class HealthStatus:
    healthy: bool
    market_open: bool
    last_snapshot_at: dt.datetime | None = None
    snapshot_age_seconds: float | None = None
    needs_reauth: bool = False
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "market_open": self.market_open,
            "last_snapshot_at": self.last_snapshot_at.isoformat() if self.last_snapshot_at else None,
            "snapshot_age_seconds": self.snapshot_age_seconds,
            "needs_reauth": self.needs_reauth,
            "issues": list(self.issues),
        }


def check_health(snapshots: SnapshotStore, auth_state: AuthState, calendar: MarketCalendar,
                 now: dt.datetime | None = None, stale_after: dt.timedelta = STALE_AFTER) -> HealthStatus:
    ts = calendar.localize(now)
    market_open = calendar.is_market_open(ts)
    issues: list[str] = []
    try:
        last = snapshots.latest_captured_at()
    except PersistenceError as e:
        logger.error("health.store_unavailable err=%s", e)
        return HealthStatus(False, market_open, needs_reauth=auth_state.needs_reauth,
                            issues=[f"store unavailable: {e}"])
    age = (ts - last).total_seconds() if last is not None else None
    if auth_state.needs_reauth:
        issues.append("broker credentials need refresh")
    if market_open:
        # a snapshot from before today's open does not count as fresh
        if last is None or last < calendar.session_open(ts.date()):
            if ts - calendar.session_open(ts.date()) > stale_after:
                issues.append("no snapshots this session")
        elif age is not None and age > stale_after.total_seconds():
            issues.append(f"latest snapshot is {age:.0f}s old")
    status = HealthStatus(
        healthy=not issues,
        market_open=market_open,
        last_snapshot_at=last,
        snapshot_age_seconds=age,
        needs_reauth=auth_state.needs_reauth,
        issues=issues,
    )
    if issues:
        logger.warning("health.degraded issues=%s", "; ".join(issues))
    return status


__all__ = ["HealthStatus", "check_health", "STALE_AFTER"]
