"""Circuit change log: append-only writes and the query side.

Writes go through ``insert``; a natural-key violation (same token, detection
time and bounds) from an overlapping poller surfaces as ``DuplicateChange`` so
the detector can treat it as a suppressed repeat instead of a failure.
"""
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from circuitwatch.storage.db import Database
from circuitwatch.storage.models import CircuitChangeRow
from circuitwatch.utils.exceptions import PersistenceError
from circuitwatch.utils.market_hours import MarketCalendar

logger = logging.getLogger(__name__)

# limits closer than this are the same limit
LIMIT_TOLERANCE = 0.01

SEVERITY_CRITICAL = "Critical"
SEVERITY_HIGH = "High"
SEVERITY_MEDIUM = "Medium"
SEVERITY_LOW = "Low"


class DuplicateChange(PersistenceError):
    """Insert rejected by the natural-key constraint."""


@dataclass(slots=True)
class ChangeStatistics:
    trading_date: dt.date
    total: int = 0
    by_underlying: dict[str, int] = field(default_factory=dict)
    by_severity: dict[str, int] = field(default_factory=dict)
    by_change_type: dict[str, int] = field(default_factory=dict)
    breach_alerts: int = 0
    instruments: int = 0


class CircuitChangeRepository:
    def __init__(self, db: Database, calendar: MarketCalendar) -> None:
        self._db = db
        self._calendar = calendar

    # -- write side ---------------------------------------------------------
    def latest_for(self, token: int) -> CircuitChangeRow | None:
        stmt = (
            select(CircuitChangeRow)
            .where(CircuitChangeRow.instrument_token == token)
            .order_by(CircuitChangeRow.detected_at.desc(), CircuitChangeRow.id.desc())
            .limit(1)
        )
        with self._db.session_scope() as s:
            return s.scalars(stmt).first()

    def find_recent_duplicate(self, token: int, new_lower: float, new_upper: float,
                              since: dt.datetime) -> CircuitChangeRow | None:
        stmt = (
            select(CircuitChangeRow)
            .where(
                CircuitChangeRow.instrument_token == token,
                CircuitChangeRow.new_lower.between(new_lower - LIMIT_TOLERANCE, new_lower + LIMIT_TOLERANCE),
                CircuitChangeRow.new_upper.between(new_upper - LIMIT_TOLERANCE, new_upper + LIMIT_TOLERANCE),
                CircuitChangeRow.detected_at >= since,
            )
            .order_by(CircuitChangeRow.detected_at.desc())
            .limit(1)
        )
        with self._db.session_scope() as s:
            return s.scalars(stmt).first()

    def insert(self, row: CircuitChangeRow) -> CircuitChangeRow:
        try:
            with self._db.session_scope() as s:
                s.add(row)
        except PersistenceError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise DuplicateChange(str(e)) from e.__cause__
            raise
        return row

    # -- query side ---------------------------------------------------------
    def changes_for_date(self, day: dt.date, *, underlying: str | None = None,
                         severity: str | None = None) -> list[CircuitChangeRow]:
        """Changes detected on ``day``; always empty for a non-trading day."""
        if not self._calendar.is_trading_day(day):
            return []
        start = dt.datetime.combine(day, dt.time.min)
        stmt = select(CircuitChangeRow).where(
            CircuitChangeRow.detected_at >= start,
            CircuitChangeRow.detected_at < start + dt.timedelta(days=1),
        )
        if underlying:
            stmt = stmt.where(CircuitChangeRow.underlying == underlying.upper())
        if severity:
            stmt = stmt.where(CircuitChangeRow.severity == severity)
        stmt = stmt.order_by(CircuitChangeRow.detected_at.desc(), CircuitChangeRow.id.desc())
        with self._db.session_scope() as s:
            return list(s.scalars(stmt))

    def history_for(self, token: int, limit: int = 100) -> list[CircuitChangeRow]:
        stmt = (
            select(CircuitChangeRow)
            .where(CircuitChangeRow.instrument_token == token)
            .order_by(CircuitChangeRow.detected_at.desc(), CircuitChangeRow.id.desc())
            .limit(limit)
        )
        with self._db.session_scope() as s:
            return list(s.scalars(stmt))

    def critical_alerts(self, now: dt.datetime, hours: int = 24) -> list[CircuitChangeRow]:
        stmt = (
            select(CircuitChangeRow)
            .where(
                CircuitChangeRow.detected_at >= now - dt.timedelta(hours=hours),
                (CircuitChangeRow.severity == SEVERITY_CRITICAL) | CircuitChangeRow.is_breach_alert.is_(True),
            )
            .order_by(CircuitChangeRow.detected_at.desc())
        )
        with self._db.session_scope() as s:
            return list(s.scalars(stmt))

    def statistics(self, day: dt.date) -> ChangeStatistics:
        stats = ChangeStatistics(trading_date=day)
        rows = self.changes_for_date(day)
        tokens: set[int] = set()
        for r in rows:
            stats.total += 1
            stats.by_underlying[r.underlying] = stats.by_underlying.get(r.underlying, 0) + 1
            stats.by_severity[r.severity] = stats.by_severity.get(r.severity, 0) + 1
            stats.by_change_type[r.change_type] = stats.by_change_type.get(r.change_type, 0) + 1
            if r.is_breach_alert:
                stats.breach_alerts += 1
            tokens.add(r.instrument_token)
        stats.instruments = len(tokens)
        return stats

    def count(self) -> int:
        with self._db.session_scope() as s:
            return int(s.scalar(select(func.count(CircuitChangeRow.id))) or 0)


__all__ = [
    "CircuitChangeRepository",
    "ChangeStatistics",
    "DuplicateChange",
    "LIMIT_TOLERANCE",
    "SEVERITY_CRITICAL",
    "SEVERITY_HIGH",
    "SEVERITY_MEDIUM",
    "SEVERITY_LOW",
]
