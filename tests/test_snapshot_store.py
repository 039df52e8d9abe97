import datetime as dt

from circuitwatch.domain.models import STATUS_NEAR_UPPER, Quote
from circuitwatch.storage.snapshots import TRADING_NO_TRADES, TRADING_SUSPECT, SnapshotStore
from tests._helpers import TRADING_DAY, at, make_instrument, make_quote


def test_record_valid_snapshot(db):
    store = SnapshotStore(db)
    res = store.record(make_instrument(), make_quote(price=118), at(10, 0))
    assert res.is_ok
    row = store.latest_for(1001)
    assert row.is_valid
    assert row.validation_message == ""
    assert row.circuit_status == STATUS_NEAR_UPPER
    assert row.timestamp == at(10, 0)


def test_inverted_band_is_stored_unpopulated_and_flagged(db):
    store = SnapshotStore(db)
    store.record(make_instrument(), make_quote(lower=120, upper=100), at(10, 0))
    row = store.latest_for(1001)
    assert not row.is_valid
    assert (row.lower_circuit_limit, row.upper_circuit_limit) == (0.0, 0.0)
    assert row.trading_status == TRADING_SUSPECT
    assert "upper circuit limit not above lower" in row.validation_message
    assert "raw band 120.0/100.0" in row.validation_message


def test_price_outside_band_keeps_limits(db):
    store = SnapshotStore(db)
    store.record(make_instrument(), make_quote(price=130), at(10, 0))
    row = store.latest_for(1001)
    assert not row.is_valid
    assert row.upper_circuit_limit == 120.0


def test_no_trades_status(db):
    store = SnapshotStore(db)
    store.record(make_instrument(), make_quote(price=0), at(10, 0))
    assert store.latest_for(1001).trading_status == TRADING_NO_TRADES


def test_batch_and_day_queries(db):
    store = SnapshotStore(db)
    a, b = make_instrument(1001), make_instrument(1002, symbol="NIFTY24DECPE25000", option_type="PE")
    results = store.record_batch([(a, make_quote(1001)), (b, make_quote(1002, price=101))], at(10, 0))
    assert [r.key for r in results] == [1001, 1002]
    assert all(r.is_ok for r in results)
    store.record(a, make_quote(1001, price=112), at(10, 1))

    assert store.tokens_for_day(TRADING_DAY) == [1001, 1002]
    assert [r.last_price for r in store.for_day(1001, TRADING_DAY)] == [110.0, 112.0]
    assert store.latest_for(1001, TRADING_DAY).last_price == 112.0
    assert store.latest_captured_at() == at(10, 1)
    assert store.had_circuit_event(1002, TRADING_DAY)
    assert not store.had_circuit_event(1001, TRADING_DAY)


def test_empty_batch(db):
    assert SnapshotStore(db).record_batch([], at(10, 0)) == []


def test_day_queries_follow_capture_time_not_broker_time(db):
    store = SnapshotStore(db)
    last_trade = dt.datetime(2024, 12, 23, 14, 0)
    untraded = Quote.from_raw(
        {"last_price": 112, "lower_circuit_limit": 100, "upper_circuit_limit": 120, "last_trade_time": last_trade},
        token=1001,
    )
    assert untraded.timestamp is None
    store.record(make_instrument(), untraded, at(15, 29))
    store.record(make_instrument(), make_quote(price=115, ts=last_trade), at(15, 30))

    row = store.latest_for(1001, TRADING_DAY)
    assert row.last_price == 115.0
    assert row.timestamp == last_trade
    assert [r.captured_at for r in store.for_day(1001, TRADING_DAY)] == [at(15, 29), at(15, 30)]
    assert store.tokens_for_day(TRADING_DAY) == [1001]
    assert store.latest_for(1001, last_trade.date()) is None
