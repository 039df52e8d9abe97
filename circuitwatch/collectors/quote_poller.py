"""Quote poller: one cycle = snapshot + change detection for every active contract.

A cycle is a no-op outside market hours. During the session it refreshes the
catalog when due, fetches the underlying index quotes once for OHLC context,
then walks the active tokens in batches of at most 500 (the broker's per-call
limit), throttling between batches.

Failure handling is per unit of work: a failed batch is counted and skipped,
a failed row becomes an error ``ItemResult``. Only an authentication failure
ends the cycle early; it raises the operator re-auth flag instead of crashing.
"""
from __future__ import annotations

import datetime as dt
import enum
import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from circuitwatch.analytics.circuit_detector import SKIP_DUPLICATE, CircuitChangeDetector
from circuitwatch.broker.auth import AuthState
from circuitwatch.broker.base import BrokerLike
from circuitwatch.catalog.instruments import InstrumentCatalog
from circuitwatch.config.indices import IndexConfig
from circuitwatch.config.runtime_config import MAX_QUOTE_BATCH, PollSettings
from circuitwatch.domain.models import Instrument, ItemOutcome, ItemResult, Quote
from circuitwatch.metrics.registry import PipelineMetrics
from circuitwatch.storage.snapshots import SnapshotStore
from circuitwatch.utils.exceptions import AuthenticationError, TransientFetchError
from circuitwatch.utils.market_hours import MarketCalendar

logger = logging.getLogger(__name__)


class PollerState(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"


@dataclass(slots=True)
class CycleReport:
    started_at: dt.datetime
    skipped: bool = False
    skip_reason: str = ""
    instruments: int = 0
    batches: int = 0
    batch_errors: int = 0
    quotes: int = 0
    missing_quotes: int = 0
    snapshots: int = 0
    snapshot_errors: int = 0
    changes: int = 0
    duplicates: int = 0
    detect_skipped: int = 0
    detect_errors: int = 0
    auth_failed: bool = False
    duration: float = 0.0
    errors: list[str] = field(default_factory=list)

    def absorb_snapshot(self, res: ItemResult) -> None:
        if res.is_ok:
            self.snapshots += 1
        else:
            self.snapshot_errors += 1
            self.errors.append(f"snapshot {res.key}: {res.reason}")

    def absorb_detection(self, res: ItemResult) -> None:
        if res.outcome is ItemOutcome.OK:
            self.changes += 1
        elif res.outcome is ItemOutcome.ERROR:
            self.detect_errors += 1
            self.errors.append(f"detect {res.key}: {res.reason}")
        elif res.reason == SKIP_DUPLICATE:
            self.duplicates += 1
        else:
            self.detect_skipped += 1

    @property
    def outcome(self) -> str:
        if self.skipped:
            return "skipped"
        if self.auth_failed:
            return "auth_failed"
        if self.batch_errors or self.snapshot_errors or self.detect_errors:
            return "partial"
        return "ok"


def _batches(tokens: Sequence[int], size: int) -> list[list[int]]:
    size = max(1, min(size, MAX_QUOTE_BATCH))
    return [list(tokens[i:i + size]) for i in range(0, len(tokens), size)]


class QuotePoller:
    def __init__(self,
                 catalog: InstrumentCatalog,
                 snapshots: SnapshotStore,
                 detector: CircuitChangeDetector,
                 broker: BrokerLike,
                 calendar: MarketCalendar,
                 auth_state: AuthState,
                 indices: Sequence[IndexConfig],
                 settings: PollSettings | None = None,
                 metrics: PipelineMetrics | None = None,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        self._catalog = catalog
        self._snapshots = snapshots
        self._detector = detector
        self._broker = broker
        self._calendar = calendar
        self._auth = auth_state
        self._spot_symbols = {ix.spot_symbol: ix.name for ix in indices if ix.enabled}
        self._settings = settings or PollSettings()
        self._metrics = metrics
        self._sleep = sleep
        self._lock = threading.Lock()
        self.state = PollerState.IDLE
        self.last_report: CycleReport | None = None

    def run_cycle(self, now: dt.datetime | None = None) -> CycleReport:
        started = self._calendar.localize(now)
        report = CycleReport(started_at=started)
        if not self._calendar.is_market_open(started):
            self.state = PollerState.IDLE
            report.skipped, report.skip_reason = True, "market closed"
            logger.debug("poller.skip market closed at %s", started)
            return self._finish(report, time.perf_counter())
        if not self._lock.acquire(blocking=False):
            report.skipped, report.skip_reason = True, "cycle already running"
            logger.warning("poller.overlap previous cycle still running; skipping")
            return report
        t0 = time.perf_counter()
        self.state = PollerState.POLLING
        try:
            self._poll(report, started)
        except AuthenticationError as e:
            self._on_auth_failure(report, e, started)
        finally:
            self.state = PollerState.IDLE
            self._lock.release()
        return self._finish(report, t0)

    def _poll(self, report: CycleReport, started: dt.datetime) -> None:
        if self._catalog.refresh_due():
            self._catalog.refresh()
        index_quotes = self._fetch_index_quotes()
        instruments = {i.instrument_token: i for i in self._catalog.active_instruments(started.date())}
        report.instruments = len(instruments)
        if not instruments:
            logger.warning("poller.no_instruments catalog is empty; nothing to poll")
            return
        batches = _batches(list(instruments), self._settings.batch_size)
        delay = self._settings.inter_batch_delay_ms / 1000.0
        for n, batch in enumerate(batches):
            if n and delay > 0:
                self._sleep(delay)
            report.batches += 1
            try:
                quotes = self._broker.get_quotes(batch)
            except TransientFetchError as e:
                report.batch_errors += 1
                report.errors.append(f"batch {n}: {e}")
                logger.warning("poller.batch_failed batch=%d size=%d err=%s", n, len(batch), e)
                if self._metrics is not None:
                    self._metrics.batch_errors.inc()
                continue
            self._auth.record_success()
            report.quotes += len(quotes)
            report.missing_quotes += len(batch) - len(quotes)
            self._process_batch(report, instruments, quotes, index_quotes, started)

    def _fetch_index_quotes(self) -> dict[str, Quote]:
        """Index quotes keyed by underlying name; empty when unavailable."""
        if not self._spot_symbols:
            return {}
        try:
            raw = self._broker.get_index_quotes(list(self._spot_symbols))
        except TransientFetchError as e:
            logger.warning("poller.index_quotes_failed err=%s; continuing without index context", e)
            return {}
        self._auth.record_success()
        return {self._spot_symbols[sym]: q for sym, q in raw.items() if sym in self._spot_symbols}

    def _process_batch(self, report: CycleReport, instruments: dict[int, Instrument],
                       quotes: dict[int, Quote], index_quotes: dict[str, Quote],
                       captured_at: dt.datetime) -> None:
        items = [(instruments[tok], q) for tok, q in quotes.items() if tok in instruments]
        for res in self._snapshots.record_batch(items, captured_at):
            report.absorb_snapshot(res)
            if self._metrics is not None and res.is_ok:
                self._metrics.snapshots_written.labels(valid=str(bool(res.value.is_valid)).lower()).inc()
        for inst, quote in items:
            detection = self._detector.detect(inst, quote, index_quotes.get(inst.underlying), now=captured_at)
            report.absorb_detection(detection.result)

    def _on_auth_failure(self, report: CycleReport, exc: AuthenticationError, when: dt.datetime) -> None:
        report.auth_failed = True
        report.errors.append(f"auth: {exc}")
        if self._auth.record_failure(exc, when):
            logger.error("poller.auth_failed; polling paused until credentials are refreshed")
        else:
            logger.debug("poller.auth_still_failing err=%s", exc)

    def _finish(self, report: CycleReport, t0: float) -> CycleReport:
        report.duration = time.perf_counter() - t0
        self.last_report = report
        m = self._metrics
        if m is not None:
            m.poll_cycles.labels(outcome=report.outcome).inc()
            m.auth_needs_reauth.set(1 if self._auth.needs_reauth else 0)
            if not report.skipped:
                m.quotes_received.inc(report.quotes)
                m.cycle_duration.observe(report.duration)
                m.last_cycle_ts.set(time.time())
                if report.snapshot_errors:
                    m.item_errors.labels(stage="snapshot").inc(report.snapshot_errors)
                if report.detect_errors:
                    m.item_errors.labels(stage="detect").inc(report.detect_errors)
        if not report.skipped:
            logger.info(
                "poller.cycle outcome=%s instruments=%d batches=%d batch_errors=%d quotes=%d "
                "snapshots=%d changes=%d duplicates=%d took=%.2fs",
                report.outcome, report.instruments, report.batches, report.batch_errors, report.quotes,
                report.snapshots, report.changes, report.duplicates, report.duration,
            )
        return report


__all__ = ["QuotePoller", "PollerState", "CycleReport"]
