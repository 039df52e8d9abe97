"""Retention, cleanup and integrity reporting over the relational store.

Snapshots and change records older than the retention horizon are purged on
a schedule; the EOD history is kept. The remaining helpers back the
maintenance CLI (re-collect from a date, drop an index, expired-contract
cleanup, de-duplication, integrity and data-quality reports).
"""
from __future__ import annotations

import datetime as _dt
import logging
import threading
from collections.abc import Iterable
from typing import Any

from sqlalchemy import delete, func, select

from circuitwatch.storage.db import Database
from circuitwatch.storage.models import CircuitChangeRow, HistoricalRow, InstrumentRow, SnapshotRow
from circuitwatch.utils.exceptions import PersistenceError
from circuitwatch.utils.market_hours import MarketCalendar

logger = logging.getLogger(__name__)

# ids deleted per statement when de-duplicating
_DELETE_CHUNK = 500


def _minute(ts: _dt.datetime) -> _dt.datetime:
    return ts.replace(second=0, microsecond=0)


def _delete_ids(session: Any, model: Any, ids: list[int]) -> int:
    removed = 0
    for start in range(0, len(ids), _DELETE_CHUNK):
        chunk = ids[start:start + _DELETE_CHUNK]
        removed += session.execute(delete(model).where(model.id.in_(chunk))).rowcount or 0
    return removed


class DataCleanup:
    def __init__(self, db: Database, calendar: MarketCalendar) -> None:
        self._db = db
        self._calendar = calendar

    def purge_older_than(self, days: int, now: _dt.datetime | None = None) -> dict[str, int]:
        """Delete snapshots and change records older than ``days`` days."""
        if days <= 0:
            return {"snapshots": 0, "circuit_changes": 0}
        cutoff = self._calendar.localize(now) - _dt.timedelta(days=days)
        with self._db.session_scope() as s:
            snaps = s.execute(delete(SnapshotRow).where(SnapshotRow.captured_at < cutoff)).rowcount or 0
            changes = s.execute(delete(CircuitChangeRow).where(CircuitChangeRow.detected_at < cutoff)).rowcount or 0
        if snaps or changes:
            logger.info("retention.purged snapshots=%d circuit_changes=%d cutoff=%s", snaps, changes, cutoff)
        return {"snapshots": snaps, "circuit_changes": changes}

    def clear_data_from(self, day: _dt.date, include_circuit_changes: bool = True) -> dict[str, int]:
        """Remove everything collected on or after ``day`` so it can be re-collected."""
        start = _dt.datetime.combine(day, _dt.time.min)
        with self._db.session_scope() as s:
            out = {
                "snapshots": s.execute(delete(SnapshotRow).where(SnapshotRow.captured_at >= start)).rowcount or 0,
                "historical": s.execute(delete(HistoricalRow).where(HistoricalRow.trading_date >= day)).rowcount or 0,
                "circuit_changes": 0,
            }
            if include_circuit_changes:
                out["circuit_changes"] = s.execute(
                    delete(CircuitChangeRow).where(CircuitChangeRow.detected_at >= start)
                ).rowcount or 0
        logger.info("cleanup.cleared_from day=%s %s", day, out)
        return out

    def clear_index_data(self, indices: Iterable[str], from_day: _dt.date | None = None) -> dict[str, int]:
        names = [n.upper() for n in indices]
        if not names:
            return {"snapshots": 0, "historical": 0, "circuit_changes": 0}
        snap_q = delete(SnapshotRow).where(SnapshotRow.underlying.in_(names))
        hist_q = delete(HistoricalRow).where(HistoricalRow.underlying.in_(names))
        chg_q = delete(CircuitChangeRow).where(CircuitChangeRow.underlying.in_(names))
        if from_day is not None:
            start = _dt.datetime.combine(from_day, _dt.time.min)
            snap_q = snap_q.where(SnapshotRow.captured_at >= start)
            hist_q = hist_q.where(HistoricalRow.trading_date >= from_day)
            chg_q = chg_q.where(CircuitChangeRow.detected_at >= start)
        with self._db.session_scope() as s:
            out = {
                "snapshots": s.execute(snap_q).rowcount or 0,
                "historical": s.execute(hist_q).rowcount or 0,
                "circuit_changes": s.execute(chg_q).rowcount or 0,
            }
        logger.info("cleanup.cleared_indices indices=%s from=%s %s", ",".join(names), from_day, out)
        return out

    def remove_expired_contracts(self, before: _dt.date | None = None, grace_days: int = 7) -> dict[str, int]:
        """Drop all data for contracts that expired before ``before`` (default today - grace)."""
        if before is None:
            before = self._calendar.today() - _dt.timedelta(days=grace_days)
        with self._db.session_scope() as s:
            tokens = list(s.scalars(select(InstrumentRow.instrument_token).where(InstrumentRow.expiry < before)))
            out = {
                "snapshots": s.execute(delete(SnapshotRow).where(SnapshotRow.expiry < before)).rowcount or 0,
                "circuit_changes": s.execute(
                    delete(CircuitChangeRow).where(CircuitChangeRow.expiry < before)
                ).rowcount or 0,
                "historical": s.execute(delete(HistoricalRow).where(HistoricalRow.expiry < before)).rowcount or 0,
                "instruments": s.execute(delete(InstrumentRow).where(InstrumentRow.expiry < before)).rowcount or 0,
            }
        logger.info("cleanup.expired_removed before=%s tokens=%d %s", before, len(tokens), out)
        return out

    def remove_duplicate_snapshots(self) -> int:
        """Keep only the latest snapshot per instrument per minute."""
        stmt = select(SnapshotRow.id, SnapshotRow.instrument_token, SnapshotRow.captured_at).order_by(SnapshotRow.id)
        with self._db.session_scope() as s:
            keep: dict[tuple[int, _dt.datetime], int] = {}
            drop: list[int] = []
            for row_id, token, ts in s.execute(stmt):
                key = (token, _minute(ts))
                prior = keep.get(key)
                if prior is not None:
                    drop.append(prior)
                keep[key] = row_id
            removed = _delete_ids(s, SnapshotRow, drop)
        if removed:
            logger.info("cleanup.duplicate_snapshots_removed count=%d", removed)
        return removed

    def remove_duplicate_changes(self) -> int:
        """Keep only the latest change per (token, new bounds, minute)."""
        stmt = select(
            CircuitChangeRow.id, CircuitChangeRow.instrument_token, CircuitChangeRow.detected_at,
            CircuitChangeRow.new_lower, CircuitChangeRow.new_upper,
        ).order_by(CircuitChangeRow.id)
        with self._db.session_scope() as s:
            keep: dict[tuple[int, _dt.datetime, float, float], int] = {}
            drop: list[int] = []
            for row_id, token, ts, lo, hi in s.execute(stmt):
                key = (token, _minute(ts), round(lo, 2), round(hi, 2))
                prior = keep.get(key)
                if prior is not None:
                    drop.append(prior)
                keep[key] = row_id
            removed = _delete_ids(s, CircuitChangeRow, drop)
        if removed:
            logger.info("cleanup.duplicate_changes_removed count=%d", removed)
        return removed

    def integrity_report(self) -> dict[str, Any]:
        with self._db.session_scope() as s:
            known = select(InstrumentRow.instrument_token)
            report: dict[str, Any] = {
                "instruments": s.scalar(select(func.count()).select_from(InstrumentRow)) or 0,
                "snapshots": s.scalar(select(func.count(SnapshotRow.id))) or 0,
                "circuit_changes": s.scalar(select(func.count(CircuitChangeRow.id))) or 0,
                "historical": s.scalar(select(func.count(HistoricalRow.id))) or 0,
                "orphaned_snapshots": s.scalar(
                    select(func.count(SnapshotRow.id)).where(SnapshotRow.instrument_token.not_in(known))
                ) or 0,
                "historical_without_limits": s.scalar(
                    select(func.count(HistoricalRow.id)).where(
                        HistoricalRow.lower_circuit_limit == 0, HistoricalRow.upper_circuit_limit == 0,
                    )
                ) or 0,
                "snapshots_by_index": dict(
                    s.execute(
                        select(SnapshotRow.underlying, func.count(SnapshotRow.id)).group_by(SnapshotRow.underlying)
                    ).tuples().all()
                ),
            }
        return report

    def data_quality_stats(self) -> dict[str, Any]:
        with self._db.session_scope() as s:
            total = s.scalar(select(func.count(SnapshotRow.id))) or 0
            invalid = s.scalar(select(func.count(SnapshotRow.id)).where(SnapshotRow.is_valid.is_(False))) or 0
            unpopulated = s.scalar(
                select(func.count(SnapshotRow.id)).where(
                    SnapshotRow.lower_circuit_limit == 0, SnapshotRow.upper_circuit_limit == 0,
                )
            ) or 0
            by_status = dict(
                s.execute(
                    select(SnapshotRow.trading_status, func.count(SnapshotRow.id)).group_by(SnapshotRow.trading_status)
                ).tuples().all()
            )
            latest = s.scalar(select(func.max(SnapshotRow.captured_at)))
        return {
            "snapshots": total,
            "invalid": invalid,
            "invalid_pct": round(invalid * 100.0 / total, 2) if total else 0.0,
            "without_limits": unpopulated,
            "by_trading_status": by_status,
            "latest_captured_at": latest.isoformat() if latest else None,
        }


def run_retention_pass(cleanup: DataCleanup, retention_days: int, now: _dt.datetime | None = None, metrics: Any | None = None) -> dict[str, int]:
    """One scheduled sweep of the retention horizon."""
    purged = cleanup.purge_older_than(retention_days, now)
    if metrics is not None:
        for kind, count in purged.items():
            if count:
                metrics.retention_deleted.labels(kind=kind).inc(count)
    return purged


def start_retention_worker(cleanup: DataCleanup,
                           retention_days: int,
                           interval_seconds: float = 3600.0,
                           stop_event: threading.Event | None = None,
                           metrics: Any | None = None) -> threading.Thread:
    """Start background retention daemon thread.

    Returns the thread object (already started unless retention is disabled).
    The loop exits once ``stop_event`` is set.
    """
    stop = stop_event or threading.Event()
    if retention_days <= 0:
        logger.info("Retention worker disabled (retention_days=%s)", retention_days)
        return threading.Thread(target=lambda: None, name="retention-disabled")

    def _loop() -> None:
        logger.info("Retention worker started (days=%s interval_s=%s)", retention_days, interval_seconds)
        while not stop.is_set():
            try:
                result = run_retention_pass(cleanup, retention_days, metrics=metrics)
                logger.debug("retention.pass %s", result)
            except PersistenceError:
                logger.exception("Retention sweep failure (continuing)")
            stop.wait(max(60.0, interval_seconds))

    t = threading.Thread(target=_loop, name="retention-worker", daemon=True)
    t.start()
    return t


__all__ = ["DataCleanup", "run_retention_pass", "start_retention_worker"]
