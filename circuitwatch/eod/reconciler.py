"""End-of-day reconciliation.

After the close (plus a settle delay) each instrument's official daily bar is
fetched and written as one historical record per (instrument, trading date).
The as-of-close circuit band comes from the last intraday snapshot of that
date. When a record already exists only its circuit fields are refreshed, and
only while that date's snapshots are still stored, so a second run for the
same date leaves the row as it was.
"""
from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from circuitwatch.broker.base import BrokerLike
from circuitwatch.catalog.instruments import InstrumentCatalog
from circuitwatch.config.runtime_config import EODSettings
from circuitwatch.domain.models import DailyBar, Instrument, ItemOutcome, ItemResult
from circuitwatch.metrics.registry import PipelineMetrics
from circuitwatch.storage.historical import CircuitFields, HistoricalRepository, UpsertAction
from circuitwatch.storage.instruments import InstrumentRepository
from circuitwatch.storage.models import HistoricalRow, SnapshotRow
from circuitwatch.storage.snapshots import SnapshotStore
from circuitwatch.utils.exceptions import PersistenceError, TransientFetchError
from circuitwatch.utils.market_hours import MarketCalendar

logger = logging.getLogger(__name__)

STATUS_NO_INTRADAY = "No Intraday Data"

SKIP_NO_BAR = "no daily bar"
SKIP_KEEP_EXISTING = "no intraday snapshot; existing record kept"


@dataclass(slots=True)
class EODSummary:
    trading_date: dt.date
    processed: int = 0
    created: int = 0
    updated: int = 0
    merged: int = 0
    skipped: int = 0
    errors: int = 0
    from_intraday: int = 0
    already_done: bool = False

    def absorb(self, res: ItemResult) -> None:
        self.processed += 1
        if res.outcome is ItemOutcome.SKIPPED:
            self.skipped += 1
            return
        if res.outcome is ItemOutcome.ERROR:
            self.errors += 1
            return
        if res.reason == UpsertAction.CREATED.value:
            self.created += 1
        else:
            self.updated += 1
        if res.value:
            self.merged += 1


def circuit_fields_from(snapshot: SnapshotRow | None, had_event: bool) -> CircuitFields:
    """As-of-close circuit fields from the day's last snapshot."""
    if snapshot is None:
        return CircuitFields(0.0, 0.0, False, STATUS_NO_INTRADAY, "No intraday snapshot for trading date")
    message = "EOD merged with intraday circuit limits - " + (
        "circuit event during session" if had_event else "no circuit event"
    )
    if not snapshot.is_valid and snapshot.validation_message:
        message = f"{message}; {snapshot.validation_message}"
    return CircuitFields(
        lower_circuit_limit=snapshot.lower_circuit_limit,
        upper_circuit_limit=snapshot.upper_circuit_limit,
        circuit_limit_changed=had_event,
        trading_status=snapshot.trading_status,
        validation_message=message,
    )


def bar_from_snapshots(rows: Sequence[SnapshotRow], day: dt.date) -> DailyBar | None:
    """Daily bar derived from intraday snapshots (first/last/extreme traded prices)."""
    traded = [r for r in rows if r.last_price > 0]
    if not traded:
        return None
    prices = [r.last_price for r in traded]
    return DailyBar(
        trading_date=day,
        open=prices[0],
        high=max(prices),
        low=min(prices),
        close=prices[-1],
        volume=max(r.volume for r in traded),
        open_interest=traded[-1].open_interest,
    )


class EODReconciler:
    def __init__(self,
                 broker: BrokerLike,
                 snapshots: SnapshotStore,
                 historical: HistoricalRepository,
                 catalog: InstrumentCatalog,
                 instruments: InstrumentRepository,
                 calendar: MarketCalendar,
                 settings: EODSettings | None = None,
                 metrics: PipelineMetrics | None = None) -> None:
        self._broker = broker
        self._snapshots = snapshots
        self._historical = historical
        self._catalog = catalog
        self._instruments = instruments
        self._calendar = calendar
        self._settings = settings or EODSettings()
        self._metrics = metrics
        self._last_run_date: dt.date | None = None
        self._retry_date: dt.date | None = None

    def is_due(self, now: dt.datetime | None = None) -> bool:
        ts = self._calendar.localize(now)
        if not self._calendar.is_end_of_day(ts):
            return False
        ready_at = self._calendar.session_close(ts.date()) + dt.timedelta(minutes=self._settings.delay_minutes)
        return ts >= ready_at

    def run_if_due(self, now: dt.datetime | None = None) -> EODSummary | None:
        """Reconcile today once the settle delay has passed; at most once per date.

        A pass with item errors is repeated on the next call. The repeat runs
        forced so instruments stored by the failed pass only get their circuit
        fields refreshed while the failed ones are created.
        """
        ts = self._calendar.localize(now)
        if not self.is_due(ts):
            return None
        day = ts.date()
        if self._last_run_date == day:
            return None
        retrying = self._retry_date == day
        if not retrying and self._historical.exists_for_date(day):
            logger.info("eod.already_processed date=%s", day)
            self._last_run_date = day
            return None
        summary = self.reconcile(day, force=retrying, now=ts)
        if summary.errors:
            logger.warning("eod.incomplete date=%s errors=%d; retrying next check", day, summary.errors)
            self._retry_date = day
        else:
            self._last_run_date = day
            self._retry_date = None
        return summary

    def _instruments_for(self, day: dt.date) -> list[Instrument]:
        found = {i.instrument_token: i for i in self._catalog.active_instruments(day)}
        # contracts polled that day but since dropped from the catalog
        for token in self._snapshots.tokens_for_day(day):
            if token not in found:
                inst = self._instruments.get(token)
                if inst is not None:
                    found[token] = inst
        return list(found.values())

    def reconcile(self, trading_date: dt.date, instruments: Iterable[Instrument] | None = None,
                  force: bool = False, now: dt.datetime | None = None) -> EODSummary:
        summary = EODSummary(trading_date=trading_date)
        if not force and self._historical.exists_for_date(trading_date):
            summary.already_done = True
            logger.info("eod.skip date=%s already has historical records (use force to re-run)", trading_date)
            return summary
        stamp = self._calendar.localize(now)
        targets = list(instruments) if instruments is not None else self._instruments_for(trading_date)
        logger.info("eod.start date=%s instruments=%d force=%s", trading_date, len(targets), force)
        for inst in targets:
            res = self.reconcile_instrument(inst, trading_date, now=stamp)
            summary.absorb(res)
            if res.value == "intraday":
                summary.from_intraday += 1
            if res.outcome is ItemOutcome.ERROR:
                logger.warning("eod.instrument_failed symbol=%s err=%s", inst.trading_symbol, res.reason)
        self._publish(summary)
        logger.info(
            "eod.complete date=%s processed=%d created=%d updated=%d merged=%d skipped=%d errors=%d intraday=%d",
            trading_date, summary.processed, summary.created, summary.updated, summary.merged,
            summary.skipped, summary.errors, summary.from_intraday,
        )
        return summary

    def reconcile_instrument(self, instrument: Instrument, trading_date: dt.date,
                             now: dt.datetime | None = None) -> ItemResult:
        """Fetch the daily bar and upsert the historical record for one instrument.

        The result's ``reason`` is the upsert action; ``value`` is ``"intraday"``
        when the bar was derived from snapshots, ``"broker"`` otherwise, and
        empty when no intraday snapshot supplied circuit limits.
        """
        token = instrument.instrument_token
        stamp = self._calendar.localize(now)
        source = "broker"
        try:
            bar = self._broker.get_daily_bar(token, trading_date)
        except TransientFetchError as e:
            if not self._settings.intraday_fallback:
                return ItemResult.error(token, f"daily bar fetch failed: {e}")
            logger.debug("eod.bar_fetch_failed token=%s err=%s; trying intraday", token, e)
            bar = None
        if bar is None and self._settings.intraday_fallback:
            bar = bar_from_snapshots(self._snapshots.for_day(token, trading_date), trading_date)
            source = "intraday"
        if bar is None:
            logger.debug("eod.no_bar symbol=%s date=%s", instrument.trading_symbol, trading_date)
            return ItemResult.skip(token, SKIP_NO_BAR)

        try:
            last_snap = self._snapshots.latest_for(token, trading_date)
            if last_snap is None and self._historical.get(token, trading_date) is not None:
                # snapshots already purged; the stored band is the better one
                return ItemResult.skip(token, SKIP_KEEP_EXISTING)
            fields = circuit_fields_from(last_snap, self._snapshots.had_circuit_event(token, trading_date))
            prev = self._historical.previous_record(token, trading_date)
            row = self._build_row(instrument, trading_date, bar, prev, last_snap, stamp)
            action = self._historical.upsert(row, fields, stamp)
        except PersistenceError as e:
            return ItemResult.error(token, str(e))
        return ItemResult(ItemOutcome.OK, token, action.value, source if last_snap is not None else "")

    def merge_circuit_limits(self, trading_date: dt.date, now: dt.datetime | None = None) -> EODSummary:
        """Refresh circuit fields on existing records from that day's snapshots. Safe to re-run."""
        summary = EODSummary(trading_date=trading_date)
        stamp = self._calendar.localize(now)
        for token in self._historical.tokens_for_date(trading_date):
            summary.processed += 1
            try:
                last_snap = self._snapshots.latest_for(token, trading_date)
                if last_snap is None:
                    summary.skipped += 1
                    continue
                fields = circuit_fields_from(last_snap, self._snapshots.had_circuit_event(token, trading_date))
                if self._historical.update_circuit_fields(token, trading_date, fields, stamp):
                    summary.updated += 1
                    summary.merged += 1
                else:
                    summary.skipped += 1
            except PersistenceError as e:
                summary.errors += 1
                logger.warning("eod.merge_failed token=%s err=%s", token, e)
        logger.info(
            "eod.merge date=%s processed=%d merged=%d skipped=%d errors=%d",
            trading_date, summary.processed, summary.merged, summary.skipped, summary.errors,
        )
        return summary

    def _build_row(self, instrument: Instrument, day: dt.date, bar: DailyBar,
                   prev: HistoricalRow | None, last_snap: SnapshotRow | None,
                   stamp: dt.datetime) -> HistoricalRow:
        change = pct = 0.0
        oi_change = 0
        if prev is not None:
            change = bar.close - prev.close
            pct = change / prev.close * 100.0 if prev.close else 0.0
            oi_change = bar.open_interest - prev.open_interest
        return HistoricalRow(
            instrument_token=instrument.instrument_token,
            trading_symbol=instrument.trading_symbol,
            underlying=instrument.underlying,
            strike=instrument.strike,
            option_type=instrument.option_type,
            expiry=instrument.expiry,
            trading_date=day,
            open=bar.open,
            high=bar.high,
            low=bar.low,
            close=bar.close,
            change=round(change, 4),
            percent_change=round(pct, 4),
            volume=bar.volume,
            open_interest=bar.open_interest,
            oi_change=oi_change,
            implied_volatility=last_snap.implied_volatility if last_snap is not None else 0.0,
            captured_at=stamp,
            is_valid=True,
        )

    def _publish(self, summary: EODSummary) -> None:
        m = self._metrics
        if m is None:
            return
        for action, count in (("created", summary.created), ("updated", summary.updated),
                              ("skipped", summary.skipped), ("error", summary.errors)):
            if count:
                m.eod_records.labels(action=action).inc(count)
        d = summary.trading_date
        m.last_eod_date.set(d.year * 10000 + d.month * 100 + d.day)


__all__ = [
    "EODReconciler",
    "EODSummary",
    "SKIP_KEEP_EXISTING",
    "SKIP_NO_BAR",
    "STATUS_NO_INTRADAY",
    "bar_from_snapshots",
    "circuit_fields_from",
]
