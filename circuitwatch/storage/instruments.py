"""Persisted instrument registry (upsert by instrument token)."""
from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterable

from sqlalchemy import select, update

from circuitwatch.domain.models import Instrument
from circuitwatch.storage.db import Database
from circuitwatch.storage.models import InstrumentRow

logger = logging.getLogger(__name__)

# bound on bind parameters per IN (...) clause
_IN_CHUNK = 500


def row_to_instrument(row: InstrumentRow) -> Instrument:
    return Instrument(
        instrument_token=row.instrument_token,
        trading_symbol=row.trading_symbol,
        underlying=row.underlying,
        strike=row.strike,
        option_type=row.option_type,
        expiry=row.expiry,
        exchange=row.exchange,
        lot_size=row.lot_size,
        tick_size=row.tick_size,
        exchange_token=row.exchange_token,
    )


class InstrumentRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def insert_new(self, instruments: Iterable[Instrument], now: dt.datetime) -> list[Instrument]:
        """Insert instruments whose token is not yet stored and return them; existing rows are left as is."""
        items = {i.instrument_token: i for i in instruments}
        if not items:
            return []
        tokens = list(items)
        with self._db.session_scope() as s:
            existing: set[int] = set()
            for start in range(0, len(tokens), _IN_CHUNK):
                chunk = tokens[start:start + _IN_CHUNK]
                existing.update(s.scalars(
                    select(InstrumentRow.instrument_token).where(InstrumentRow.instrument_token.in_(chunk))
                ))
            fresh = [i for tok, i in items.items() if tok not in existing]
            for i in fresh:
                s.add(InstrumentRow(
                    instrument_token=i.instrument_token,
                    exchange_token=i.exchange_token,
                    trading_symbol=i.trading_symbol,
                    underlying=i.underlying,
                    strike=i.strike,
                    option_type=i.option_type,
                    expiry=i.expiry,
                    exchange=i.exchange,
                    lot_size=i.lot_size,
                    tick_size=i.tick_size,
                    is_expired=False,
                    first_seen_at=now,
                    updated_at=now,
                ))
        return fresh

    def load_active(self, today: dt.date, underlyings: Iterable[str] | None = None) -> list[Instrument]:
        stmt = select(InstrumentRow).where(InstrumentRow.expiry >= today, InstrumentRow.is_expired.is_(False))
        names = list(underlyings or [])
        if names:
            stmt = stmt.where(InstrumentRow.underlying.in_(names))
        with self._db.session_scope() as s:
            return [row_to_instrument(r) for r in s.scalars(stmt)]

    def get(self, token: int) -> Instrument | None:
        with self._db.session_scope() as s:
            row = s.get(InstrumentRow, token)
            return row_to_instrument(row) if row is not None else None

    def mark_expired(self, today: dt.date, now: dt.datetime) -> int:
        with self._db.session_scope() as s:
            res = s.execute(
                update(InstrumentRow)
                .where(InstrumentRow.expiry < today, InstrumentRow.is_expired.is_(False))
                .values(is_expired=True, updated_at=now)
            )
            count = res.rowcount or 0
        if count:
            logger.info("instruments.marked_expired count=%d before=%s", count, today)
        return count


__all__ = ["InstrumentRepository", "row_to_instrument"]
