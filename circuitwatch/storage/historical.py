"""Historical EOD records: one row per (instrument, trading date), upserted.

Creation writes the full record. An existing row only ever has its
circuit-limit and trading-status fields refreshed, so running the merge again
for the same date is non-destructive and produces the same row.
"""
from __future__ import annotations

import datetime as dt
import enum
import logging
from dataclasses import dataclass

from sqlalchemy import exists, func, select
from sqlalchemy.exc import IntegrityError

from circuitwatch.storage.db import Database
from circuitwatch.storage.models import HistoricalRow
from circuitwatch.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)


class UpsertAction(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"


@dataclass(frozen=True, slots=True)
class CircuitFields:
    """The as-of-close fields the merge step is allowed to (re)write."""
    lower_circuit_limit: float
    upper_circuit_limit: float
    circuit_limit_changed: bool
    trading_status: str
    validation_message: str


def _apply_circuit_fields(row: HistoricalRow, fields: CircuitFields, now: dt.datetime) -> None:
    row.lower_circuit_limit = fields.lower_circuit_limit
    row.upper_circuit_limit = fields.upper_circuit_limit
    row.circuit_limit_changed = fields.circuit_limit_changed
    row.trading_status = fields.trading_status
    row.validation_message = fields.validation_message
    row.last_updated = now


class HistoricalRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self, token: int, day: dt.date) -> HistoricalRow | None:
        stmt = select(HistoricalRow).where(HistoricalRow.instrument_token == token, HistoricalRow.trading_date == day)
        with self._db.session_scope() as s:
            return s.scalars(stmt).first()

    def previous_record(self, token: int, before: dt.date) -> HistoricalRow | None:
        stmt = (
            select(HistoricalRow)
            .where(HistoricalRow.instrument_token == token, HistoricalRow.trading_date < before)
            .order_by(HistoricalRow.trading_date.desc())
            .limit(1)
        )
        with self._db.session_scope() as s:
            return s.scalars(stmt).first()

    def exists_for_date(self, day: dt.date) -> bool:
        with self._db.session_scope() as s:
            return bool(s.scalar(select(exists().where(HistoricalRow.trading_date == day))))

    def count_for_date(self, day: dt.date) -> int:
        with self._db.session_scope() as s:
            return int(s.scalar(select(func.count(HistoricalRow.id)).where(HistoricalRow.trading_date == day)) or 0)

    def tokens_for_date(self, day: dt.date) -> list[int]:
        with self._db.session_scope() as s:
            return sorted(s.scalars(select(HistoricalRow.instrument_token).where(HistoricalRow.trading_date == day)))

    def update_circuit_fields(self, token: int, day: dt.date, fields: CircuitFields, now: dt.datetime) -> bool:
        """Refresh circuit fields on an existing row; False when no row exists."""
        with self._db.session_scope() as s:
            row = s.scalars(
                select(HistoricalRow).where(HistoricalRow.instrument_token == token, HistoricalRow.trading_date == day)
            ).first()
            if row is None:
                return False
            _apply_circuit_fields(row, fields, now)
        return True

    def upsert(self, new_row: HistoricalRow, fields: CircuitFields, now: dt.datetime) -> UpsertAction:
        """Insert ``new_row`` unless (token, date) exists; then only refresh circuit fields.

        A concurrent insert of the same key loses the race on the unique
        constraint and falls back to the update path.
        """
        token, day = new_row.instrument_token, new_row.trading_date
        if self.update_circuit_fields(token, day, fields, now):
            return UpsertAction.UPDATED
        _apply_circuit_fields(new_row, fields, now)
        try:
            with self._db.session_scope() as s:
                s.add(new_row)
        except PersistenceError as e:
            if not isinstance(e.__cause__, IntegrityError):
                raise
            logger.debug("historical.insert_race token=%s date=%s; updating instead", token, day)
            if not self.update_circuit_fields(token, day, fields, now):
                raise
            return UpsertAction.UPDATED
        return UpsertAction.CREATED


__all__ = ["HistoricalRepository", "CircuitFields", "UpsertAction"]
