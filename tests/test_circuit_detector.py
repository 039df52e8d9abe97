import pytest

from circuitwatch.analytics.circuit_detector import (
    CHANGE_BOTH,
    CHANGE_INITIAL,
    CHANGE_LOWER,
    CHANGE_UPPER,
    SKIP_DUPLICATE,
    SKIP_NO_LIMITS,
    SKIP_UNCHANGED,
    CircuitChangeDetector,
    change_pcts,
    change_reason,
    classify_change,
    is_breach,
    severity_for,
)
from circuitwatch.domain.models import OHLC, ItemOutcome, Quote
from circuitwatch.metrics.registry import PipelineMetrics
from circuitwatch.storage.circuit_changes import CircuitChangeRepository, DuplicateChange
from circuitwatch.storage.models import CircuitChangeRow
from tests._helpers import at, make_instrument, make_quote


@pytest.fixture()
def repo(db, calendar):
    return CircuitChangeRepository(db, calendar)


@pytest.fixture()
def metrics():
    return PipelineMetrics()


@pytest.fixture()
def detector(repo, calendar, metrics):
    return CircuitChangeDetector(repo, calendar, duplicate_window_seconds=300, metrics=metrics)


def test_helpers():
    assert classify_change(100, 120, 100.005, 120) is None
    assert classify_change(100, 120, 95, 120) == CHANGE_LOWER
    assert classify_change(100, 120, 100, 125) == CHANGE_UPPER
    assert classify_change(100, 120, 90, 130) == CHANGE_BOTH
    assert change_pcts(0, 0, 100, 120) == (0.0, 0.0, 0.0)
    lo, hi, rng = change_pcts(100, 120, 95, 120)
    assert (round(lo, 4), hi, rng) == (-5.0, 0.0, 25.0)
    assert severity_for(-25, 0) == "Critical"
    assert severity_for(10, 0) == "High"
    assert severity_for(0, 5) == "Medium"
    assert severity_for(4.99, -1) == "Low"
    assert change_reason(CHANGE_INITIAL, 0) == "Initial circuit limit observation"
    assert change_reason(CHANGE_LOWER, 25) == "Significant range change"
    assert change_reason(CHANGE_LOWER, 5) == "Lower limit adjustment"
    assert change_reason(CHANGE_UPPER, -5) == "Upper limit adjustment"
    assert change_reason(CHANGE_BOTH, 15) == "Both limits changed"
    assert is_breach(101.9, 100, 120)
    assert is_breach(117.7, 100, 120)
    assert not is_breach(110, 100, 120)
    assert not is_breach(0, 100, 120)


def test_first_observation_is_bootstrap(detector, repo, metrics):
    out = detector.detect(make_instrument(), make_quote(), now=at(10, 0))
    assert out.recorded and out.outcome is ItemOutcome.OK
    assert out.result.reason == CHANGE_INITIAL
    row = repo.latest_for(1001)
    assert (row.previous_lower, row.previous_upper, row.new_lower, row.new_upper) == (0, 0, 100, 120)
    assert row.severity == "Low"
    assert row.change_reason == "Initial circuit limit observation"
    assert metrics.value("cw_circuit_changes_total", {"underlying": "NIFTY", "severity": "Low"}) == 1.0


def test_lower_only_change(detector, repo):
    detector.detect(make_instrument(), make_quote(), now=at(10, 0))
    out = detector.detect(make_instrument(), make_quote(lower=95, price=96), now=at(10, 10))
    assert out.result.reason == CHANGE_LOWER
    row = out.record
    assert row.lower_change_pct == -5.0
    assert row.upper_change_pct == 0.0
    assert row.range_change_pct == 25.0
    assert row.severity == "Medium"
    assert row.change_reason == "Significant range change"
    assert row.is_breach_alert
    assert repo.count() == 2


def test_unchanged_band_is_skipped(detector, repo):
    detector.detect(make_instrument(), make_quote(), now=at(10, 0))
    out = detector.detect(make_instrument(), make_quote(price=111), now=at(10, 1))
    assert out.outcome is ItemOutcome.SKIPPED
    assert out.result.reason == SKIP_UNCHANGED
    assert repo.count() == 1


def test_invalid_limits_are_skipped(detector, repo):
    for quote in (make_quote(lower=0, upper=0), make_quote(lower=120, upper=100), make_quote(lower=-5)):
        out = detector.detect(make_instrument(), quote, now=at(10, 0))
        assert out.result.reason == SKIP_NO_LIMITS
    assert repo.count() == 0


def test_reversion_inside_window_is_recorded(detector, repo):
    inst = make_instrument()
    detector.detect(inst, make_quote(lower=100, upper=120), now=at(10, 0))
    detector.detect(inst, make_quote(lower=90, upper=120, price=100), now=at(10, 1))
    out = detector.detect(inst, make_quote(lower=100, upper=120), now=at(10, 2))
    assert out.recorded
    history = repo.history_for(1001)
    assert [(r.previous_lower, r.new_lower) for r in history] == [(90, 100), (100, 90), (0, 100)]


def test_band_matching_latest_record_is_unchanged(detector, repo, metrics):
    inst = make_instrument()
    detector.detect(inst, make_quote(), now=at(10, 0))
    # another writer already logged the next move
    repo.insert(CircuitChangeRow(
        instrument_token=1001, trading_symbol=inst.trading_symbol, underlying="NIFTY", strike=inst.strike,
        option_type="CE", expiry=inst.expiry, previous_lower=100, previous_upper=120,
        new_lower=95, new_upper=120, detected_at=at(10, 1), change_type=CHANGE_LOWER,
    ))
    out = detector.detect(inst, make_quote(lower=95, upper=120, price=100), now=at(10, 2))
    assert out.result.reason == SKIP_UNCHANGED
    assert repo.count() == 2


def test_window_catches_write_made_after_latest_was_read(detector, repo, monkeypatch):
    inst = make_instrument()
    detector.detect(inst, make_quote(), now=at(10, 0))
    stale = repo.latest_for(1001)
    repo.insert(CircuitChangeRow(
        instrument_token=1001, trading_symbol=inst.trading_symbol, underlying="NIFTY", strike=inst.strike,
        option_type="CE", expiry=inst.expiry, previous_lower=100, previous_upper=120,
        new_lower=95, new_upper=120, detected_at=at(10, 1), change_type=CHANGE_LOWER,
    ))
    # both reads miss the concurrent row; only the window lookup sees it
    monkeypatch.setattr(repo, "latest_for", lambda token: stale)
    out = detector.detect(inst, make_quote(lower=95, upper=120, price=100), now=at(10, 2))
    assert out.result.reason == SKIP_DUPLICATE
    assert repo.count() == 2


def test_natural_key_conflict_is_duplicate(repo, calendar, metrics, monkeypatch):
    detector = CircuitChangeDetector(repo, calendar, metrics=metrics)

    def lose_race(row):
        raise DuplicateChange("unique constraint")

    monkeypatch.setattr(repo, "insert", lose_race)
    out = detector.detect(make_instrument(), make_quote(), now=at(10, 0))
    assert out.result.reason == SKIP_DUPLICATE
    assert not out.recorded
    assert metrics.value("cw_duplicate_changes_suppressed_total") == 1.0


def test_duplicate_insert_hits_natural_key(repo, calendar):
    inst = make_instrument()
    first = CircuitChangeDetector(repo, calendar)._build(
        inst, make_quote(), None, 0, 0, CHANGE_INITIAL, at(10, 0))
    repo.insert(first)
    second = CircuitChangeDetector(repo, calendar)._build(
        inst, make_quote(), None, 0, 0, CHANGE_INITIAL, at(10, 0))
    with pytest.raises(DuplicateChange):
        repo.insert(second)


def test_index_context_attached(detector):
    index = Quote(instrument_token=256265, last_price=24010.5, ohlc=OHLC(23900, 24100, 23850, 23950),
                  net_change=60.5)
    out = detector.detect(make_instrument(), make_quote(), index_quote=index, now=at(10, 0, 30))
    row = out.record
    assert (row.index_open, row.index_high, row.index_low, row.index_close) == (23900, 24100, 23850, 23950)
    assert row.index_last_price == 24010.5
    assert row.index_change == 60.5
    assert row.index_circuit_status == "Normal"
    assert row.detected_at == at(10, 0, 30)
