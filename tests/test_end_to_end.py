"""Poll -> detect -> EOD flow for one contract plus the change query side."""
import datetime as dt

import pytest

from circuitwatch.analytics.circuit_detector import CHANGE_INITIAL, CHANGE_LOWER, CircuitChangeDetector
from circuitwatch.broker.auth import AuthState
from circuitwatch.catalog.instruments import InstrumentCatalog
from circuitwatch.collectors.quote_poller import QuotePoller
from circuitwatch.config.indices import IndexConfig
from circuitwatch.config.runtime_config import PollSettings
from circuitwatch.domain.models import DailyBar
from circuitwatch.eod.reconciler import EODReconciler
from circuitwatch.storage.circuit_changes import CircuitChangeRepository
from circuitwatch.storage.historical import HistoricalRepository
from circuitwatch.storage.instruments import InstrumentRepository
from circuitwatch.storage.snapshots import SnapshotStore
from tests._helpers import TRADING_DAY, at, make_instrument, make_quote

INDICES = [IndexConfig("NIFTY", "NFO", "NSE:NIFTY 50", 25)]


@pytest.fixture()
def pipeline(db, calendar, broker):
    instruments = InstrumentRepository(db)
    snapshots = SnapshotStore(db)
    changes = CircuitChangeRepository(db, calendar)
    historical = HistoricalRepository(db)
    catalog = InstrumentCatalog(broker, instruments, INDICES, calendar)
    poller = QuotePoller(catalog, snapshots, CircuitChangeDetector(changes, calendar), broker, calendar,
                         AuthState(), INDICES, settings=PollSettings(inter_batch_delay_ms=0))
    reconciler = EODReconciler(broker, snapshots, historical, catalog, instruments, calendar)
    return poller, changes, historical, reconciler


def test_contract_lifecycle(pipeline, broker):
    poller, changes, historical, reconciler = pipeline
    inst = make_instrument(symbol="NIFTY24DECCE25000")
    broker.instruments["NFO"] = [inst]

    broker.quotes[1001] = make_quote(lower=100, upper=120, price=110)
    assert poller.run_cycle(at(10, 0, 0)).changes == 1
    broker.quotes[1001] = make_quote(lower=105, upper=120, price=110)
    assert poller.run_cycle(at(10, 0, 5)).changes == 1
    assert poller.run_cycle(at(10, 2, 5)).changes == 0

    history = changes.history_for(1001)
    assert [(r.previous_lower, r.previous_upper, r.new_lower, r.new_upper, r.change_type) for r in history] == [
        (100, 120, 105, 120, CHANGE_LOWER),
        (0, 0, 100, 120, CHANGE_INITIAL),
    ]

    broker.bars[(1001, TRADING_DAY)] = DailyBar(TRADING_DAY, 108, 114, 104, 111, 9000, 7000)
    reconciler.reconcile(TRADING_DAY, now=at(15, 50))
    first = historical.get(1001, TRADING_DAY)
    assert (first.lower_circuit_limit, first.upper_circuit_limit) == (105, 120)

    reconciler.reconcile(TRADING_DAY, force=True, now=at(15, 55))
    reconciler.merge_circuit_limits(TRADING_DAY, now=at(16, 0))
    again = historical.get(1001, TRADING_DAY)
    assert historical.count_for_date(TRADING_DAY) == 1
    columns = [c for c in again.__table__.columns.keys() if c != "last_updated"]
    assert {c: getattr(again, c) for c in columns} == {c: getattr(first, c) for c in columns}


def test_change_queries(pipeline, calendar):
    _, changes, _, _ = pipeline
    detector = CircuitChangeDetector(changes, calendar)
    nifty = make_instrument()
    sensex = make_instrument(token=2001, symbol="SENSEX24DEC80000CE", underlying="SENSEX", exchange="BFO")
    detector.detect(nifty, make_quote(), now=at(9, 30))
    detector.detect(nifty, make_quote(lower=75, upper=120, price=76), now=at(11, 0))
    detector.detect(sensex, make_quote(2001), now=at(9, 40))

    assert len(changes.changes_for_date(TRADING_DAY)) == 3
    assert [r.instrument_token for r in changes.changes_for_date(TRADING_DAY, underlying="sensex")] == [2001]
    critical = changes.changes_for_date(TRADING_DAY, severity="Critical")
    assert len(critical) == 1 and critical[0].lower_change_pct == -25.0
    assert changes.changes_for_date(dt.date(2024, 12, 25)) == []
    assert changes.changes_for_date(dt.date(2024, 12, 21)) == []

    alerts = changes.critical_alerts(at(12, 0), hours=2)
    assert [r.new_lower for r in alerts] == [75]
    assert alerts[0].is_breach_alert

    stats = changes.statistics(TRADING_DAY)
    assert stats.total == 3 and stats.instruments == 2
    assert stats.by_underlying == {"NIFTY": 2, "SENSEX": 1}
    assert stats.by_severity == {"Critical": 1, "Low": 2}
    assert stats.by_change_type == {"lower": 1, "initial": 2}
    assert stats.breach_alerts == 1
