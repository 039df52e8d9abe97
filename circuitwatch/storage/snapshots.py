"""SnapshotStore: append-only point-in-time observations per instrument per poll.

Suspect observations (inverted or non-positive band, price outside band) are
stored with ``is_valid=False`` and a validation message, never dropped, so
downstream analysis can tell "no data" from "suspect data".

Day queries are keyed on ``captured_at``. The broker's ``timestamp`` is kept
as reported and can lag by days for a contract that has not traded.
"""
from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Sequence

from sqlalchemy import func, select

from circuitwatch.domain.models import (
    Instrument,
    ItemResult,
    Quote,
    STATUS_NORMAL,
    band_issues,
    circuit_status,
)
from circuitwatch.storage.db import Database
from circuitwatch.storage.models import SnapshotRow
from circuitwatch.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)

TRADING_NORMAL = "Normal"
TRADING_NO_TRADES = "No Trades"
TRADING_SUSPECT = "Suspect"


def _day_bounds(day: dt.date) -> tuple[dt.datetime, dt.datetime]:
    start = dt.datetime.combine(day, dt.time.min)
    return start, start + dt.timedelta(days=1)


def build_snapshot(instrument: Instrument, quote: Quote, captured_at: dt.datetime) -> SnapshotRow:
    issues = band_issues(quote)
    lower, upper = quote.lower_circuit_limit, quote.upper_circuit_limit
    if issues:
        trading_status = TRADING_SUSPECT
        if lower <= 0 or upper <= lower:
            # an unusable band is stored as unpopulated; raw values kept in the message
            issues.append(f"raw band {lower}/{upper}")
            lower = upper = 0.0
    elif quote.last_price <= 0:
        trading_status = TRADING_NO_TRADES
    else:
        trading_status = TRADING_NORMAL
    return SnapshotRow(
        instrument_token=instrument.instrument_token,
        trading_symbol=instrument.trading_symbol,
        underlying=instrument.underlying,
        strike=instrument.strike,
        option_type=instrument.option_type,
        expiry=instrument.expiry,
        last_price=quote.last_price,
        open=quote.ohlc.open,
        high=quote.ohlc.high,
        low=quote.ohlc.low,
        close=quote.ohlc.close,
        net_change=quote.net_change,
        volume=quote.volume,
        open_interest=quote.open_interest,
        lower_circuit_limit=lower,
        upper_circuit_limit=upper,
        circuit_status=circuit_status(quote.last_price, lower, upper),
        implied_volatility=quote.implied_volatility,
        timestamp=quote.timestamp or captured_at,
        captured_at=captured_at,
        is_valid=not issues,
        validation_message="; ".join(issues),
        trading_status=trading_status,
    )


class SnapshotStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def record(self, instrument: Instrument, quote: Quote, captured_at: dt.datetime) -> ItemResult:
        row = build_snapshot(instrument, quote, captured_at)
        try:
            with self._db.session_scope() as s:
                s.add(row)
        except PersistenceError as e:
            logger.error("snapshot.insert_failed token=%s err=%s", instrument.instrument_token, e)
            return ItemResult.error(instrument.instrument_token, str(e))
        if not row.is_valid:
            logger.debug("snapshot.flagged token=%s msg=%s", instrument.instrument_token, row.validation_message)
        return ItemResult.ok(instrument.instrument_token, value=row)

    def record_batch(self, items: Sequence[tuple[Instrument, Quote]], captured_at: dt.datetime) -> list[ItemResult]:
        """Insert a poll batch in one transaction.

        If the batch transaction fails, rows are retried one by one so a single
        bad row only costs its own result.
        """
        if not items:
            return []
        rows = [build_snapshot(inst, q, captured_at) for inst, q in items]
        try:
            with self._db.session_scope() as s:
                s.add_all(rows)
        except PersistenceError as e:
            logger.warning("snapshot.batch_insert_failed size=%d err=%s; retrying per row", len(rows), e)
            return [self.record(inst, q, captured_at) for inst, q in items]
        return [ItemResult.ok(r.instrument_token, value=r) for r in rows]

    # -- read side ----------------------------------------------------------
    def latest_for(self, token: int, day: dt.date | None = None) -> SnapshotRow | None:
        stmt = select(SnapshotRow).where(SnapshotRow.instrument_token == token)
        if day is not None:
            start, end = _day_bounds(day)
            stmt = stmt.where(SnapshotRow.captured_at >= start, SnapshotRow.captured_at < end)
        stmt = stmt.order_by(SnapshotRow.captured_at.desc(), SnapshotRow.id.desc()).limit(1)
        with self._db.session_scope() as s:
            return s.scalars(stmt).first()

    def for_day(self, token: int, day: dt.date) -> list[SnapshotRow]:
        start, end = _day_bounds(day)
        stmt = (
            select(SnapshotRow)
            .where(SnapshotRow.instrument_token == token, SnapshotRow.captured_at >= start, SnapshotRow.captured_at < end)
            .order_by(SnapshotRow.captured_at, SnapshotRow.id)
        )
        with self._db.session_scope() as s:
            return list(s.scalars(stmt))

    def tokens_for_day(self, day: dt.date) -> list[int]:
        start, end = _day_bounds(day)
        stmt = (
            select(SnapshotRow.instrument_token)
            .where(SnapshotRow.captured_at >= start, SnapshotRow.captured_at < end)
            .distinct()
        )
        with self._db.session_scope() as s:
            return sorted(s.scalars(stmt))

    def had_circuit_event(self, token: int, day: dt.date) -> bool:
        """True when any snapshot that day sat at or near a circuit limit."""
        start, end = _day_bounds(day)
        stmt = select(func.count(SnapshotRow.id)).where(
            SnapshotRow.instrument_token == token,
            SnapshotRow.captured_at >= start,
            SnapshotRow.captured_at < end,
            SnapshotRow.circuit_status != STATUS_NORMAL,
        )
        with self._db.session_scope() as s:
            return bool(s.scalar(stmt))

    def latest_captured_at(self) -> dt.datetime | None:
        with self._db.session_scope() as s:
            return s.scalar(select(func.max(SnapshotRow.captured_at)))


__all__ = ["SnapshotStore", "build_snapshot", "TRADING_NORMAL", "TRADING_NO_TRADES", "TRADING_SUSPECT"]
