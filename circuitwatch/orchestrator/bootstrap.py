"""Bootstrap: build the RuntimeContext and start the background loops.

Responsibilities:
  * Load the runtime config snapshot and the index config file
  * Open the database (schema created on first run)
  * Build the broker adapter, catalog, poller, reconciler and cleanup
  * Start the metrics exporter when enabled
  * Start one daemon thread per interval concern and wire signal handlers

Only configuration problems are fatal here (``ConfigError``).
"""
from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable
from pathlib import Path

from circuitwatch.analytics.circuit_detector import CircuitChangeDetector
from circuitwatch.broker.auth import AuthState
from circuitwatch.broker.base import BrokerLike
from circuitwatch.broker.kite import ClientConfig, KiteBroker, create_kite_client
from circuitwatch.catalog.instruments import InstrumentCatalog
from circuitwatch.collectors.quote_poller import QuotePoller
from circuitwatch.config.loader import load_index_config
from circuitwatch.config.runtime_config import get_runtime_config
from circuitwatch.eod.reconciler import EODReconciler
from circuitwatch.metrics.registry import PipelineMetrics, start_metrics_server
from circuitwatch.orchestrator.context import RuntimeContext
from circuitwatch.orchestrator.gating import market_hours_gate
from circuitwatch.orchestrator.loop import run_loop
from circuitwatch.storage.circuit_changes import CircuitChangeRepository
from circuitwatch.storage.db import Database
from circuitwatch.storage.historical import HistoricalRepository
from circuitwatch.storage.instruments import InstrumentRepository
from circuitwatch.storage.retention import DataCleanup, start_retention_worker
from circuitwatch.storage.snapshots import SnapshotStore
from circuitwatch.utils.exceptions import ConfigError
from circuitwatch.utils.market_hours import MarketCalendar

logger = logging.getLogger(__name__)


def build_broker() -> BrokerLike:
    cfg = ClientConfig.from_env()
    client = create_kite_client(cfg)
    if client is None:
        raise ConfigError("Kite credentials missing: set KITE_API_KEY and KITE_ACCESS_TOKEN")
    return KiteBroker(client, cfg)


def bootstrap_runtime(config_path: str | Path | None = None, *,
                      broker: BrokerLike | None = None,
                      db_url: str | None = None,
                      start_metrics: bool = True) -> RuntimeContext:
    rcfg = get_runtime_config(refresh=True)
    calendar = MarketCalendar.from_env()
    indices = load_index_config(config_path, rcfg.enabled_indices)
    db = Database(db_url or rcfg.db_url)
    db.create_all()

    metrics = PipelineMetrics()
    if start_metrics and rcfg.metrics.enabled:
        start_metrics_server(metrics, port=rcfg.metrics.port, host=rcfg.metrics.host)

    broker = broker if broker is not None else build_broker()
    auth = AuthState(rcfg.auth_alert_file)
    instruments = InstrumentRepository(db)
    snapshots = SnapshotStore(db)
    changes = CircuitChangeRepository(db, calendar)
    historical = HistoricalRepository(db)

    catalog = InstrumentCatalog(broker, instruments, indices, calendar,
                                refresh_seconds=rcfg.poll.catalog_refresh_seconds, metrics=metrics)
    detector = CircuitChangeDetector(changes, calendar,
                                     duplicate_window_seconds=rcfg.detector.duplicate_window_seconds,
                                     metrics=metrics)
    poller = QuotePoller(catalog, snapshots, detector, broker, calendar, auth, indices,
                         settings=rcfg.poll, metrics=metrics)
    reconciler = EODReconciler(broker, snapshots, historical, catalog, instruments, calendar,
                               settings=rcfg.eod, metrics=metrics)
    ctx = RuntimeContext(
        config=rcfg,
        calendar=calendar,
        indices=list(indices),
        db=db,
        broker=broker,
        auth_state=auth,
        metrics=metrics,
        catalog=catalog,
        snapshots=snapshots,
        changes=changes,
        historical=historical,
        poller=poller,
        reconciler=reconciler,
        cleanup=DataCleanup(db, calendar),
    )
    warmed = catalog.warm_from_store()
    logger.info(
        "bootstrap.ready indices=%s db=%s warmed_instruments=%d",
        ",".join(ix.name for ix in indices),
        db.engine.url.render_as_string(hide_password=True), warmed,
    )
    return ctx


def _spawn(ctx: RuntimeContext, name: str, target: Callable[[], object]) -> threading.Thread:
    t = threading.Thread(target=target, name=name, daemon=True)
    t.start()
    ctx.threads.append(t)
    return t


def start_background_loops(ctx: RuntimeContext) -> list[threading.Thread]:
    """Catalog refresh, EOD reconciliation and retention, each on its own daemon thread."""
    rcfg = ctx.config

    def _catalog_cycle(c: RuntimeContext) -> None:
        c.catalog.mark_expired()
        c.catalog.refresh()

    def _eod_cycle(c: RuntimeContext) -> None:
        c.reconciler.run_if_due()

    _spawn(ctx, "catalog-loop", lambda: run_loop(
        ctx, cycle_fn=_catalog_cycle, interval=rcfg.poll.catalog_refresh_seconds, name="catalog", max_cycles=0,
    ))
    _spawn(ctx, "eod-loop", lambda: run_loop(
        ctx, cycle_fn=_eod_cycle, interval=rcfg.eod.check_interval_seconds, name="eod", max_cycles=0,
    ))
    retention = start_retention_worker(
        ctx.cleanup,
        rcfg.retention.retention_days,
        interval_seconds=rcfg.retention.interval_seconds,
        stop_event=ctx.stop_event,
        metrics=ctx.metrics,
    )
    ctx.threads.append(retention)
    return list(ctx.threads)


def run_poll_loop(ctx: RuntimeContext, interval: float | None = None, max_cycles: int | None = None) -> int:
    """Quote polling in the calling thread; gated on market hours."""
    rcfg = ctx.config

    def _poll_cycle(c: RuntimeContext) -> None:
        c.poller.run_cycle()
        c.cycle_count += 1

    return run_loop(
        ctx,
        cycle_fn=_poll_cycle,
        interval=interval or rcfg.poll.interval_seconds,
        name="poll",
        gate=market_hours_gate(ctx.calendar),
        max_cycles=max_cycles if max_cycles is not None else rcfg.poll.max_cycles,
    )


def install_signal_handlers(ctx: RuntimeContext) -> None:
    def _handler(signum, _frame):  # type: ignore[no-untyped-def]
        logger.info("Signal %s received; shutting down", signum)
        ctx.shutdown = True

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _handler)
        except ValueError:
            # not in the main thread
            logger.debug("signal handler not installed for %s", sig)


def shutdown_runtime(ctx: RuntimeContext, join_timeout: float = 5.0) -> None:
    ctx.shutdown = True
    for t in ctx.threads:
        if t.is_alive():
            t.join(timeout=join_timeout)
    if ctx.db is not None:
        ctx.db.dispose()
    logger.info("Runtime shut down after %d poll cycles", ctx.cycle_count)


__all__ = [
    "bootstrap_runtime",
    "build_broker",
    "start_background_loops",
    "run_poll_loop",
    "install_signal_handlers",
    "shutdown_runtime",
]
