"""Circuit-limit change detection.

Each observed band is compared against the last *recorded change* for the
instrument, never against the last snapshot, so a band that moves away and
back is still recorded on both moves. The first band seen for an instrument
is recorded as a bootstrap change from (0, 0).

A candidate change is discarded as a repeat when:
  * a record with the same new bounds was detected inside the suppression
    window and no differently-bounded record came after it. The window
    starts no earlier than the last recorded change, so this only catches a
    record written by a concurrent poller after that change was read, or
  * a re-read of the latest record shows it already carries the new bounds, or
  * the insert hits the natural-key constraint (a concurrent poller won).
"""
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass

from circuitwatch.domain.models import (
    NEAR_BAND,
    Instrument,
    ItemOutcome,
    ItemResult,
    Quote,
    circuit_status,
)
from circuitwatch.metrics.registry import PipelineMetrics
from circuitwatch.storage.circuit_changes import (
    LIMIT_TOLERANCE,
    SEVERITY_CRITICAL,
    SEVERITY_HIGH,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    CircuitChangeRepository,
    DuplicateChange,
)
from circuitwatch.storage.models import CircuitChangeRow
from circuitwatch.utils.exceptions import PersistenceError
from circuitwatch.utils.market_hours import MarketCalendar

logger = logging.getLogger(__name__)

CHANGE_INITIAL = "initial"
CHANGE_LOWER = "lower"
CHANGE_UPPER = "upper"
CHANGE_BOTH = "both"

REASON_INITIAL = "Initial circuit limit observation"
REASON_SIGNIFICANT_RANGE = "Significant range change"
REASON_BOTH = "Both limits changed"
REASON_LOWER = "Lower limit adjustment"
REASON_UPPER = "Upper limit adjustment"

# skip reasons reported through ItemResult
SKIP_NO_LIMITS = "no valid circuit limits"
SKIP_UNCHANGED = "unchanged"
SKIP_DUPLICATE = "duplicate"

SIGNIFICANT_RANGE_PCT = 15.0


def limits_equal(a: float, b: float) -> bool:
    return abs(a - b) < LIMIT_TOLERANCE


def classify_change(prev_lower: float, prev_upper: float, new_lower: float, new_upper: float) -> str | None:
    """``lower`` / ``upper`` / ``both``; None when nothing moved."""
    lower_moved = not limits_equal(prev_lower, new_lower)
    upper_moved = not limits_equal(prev_upper, new_upper)
    if lower_moved and upper_moved:
        return CHANGE_BOTH
    if lower_moved:
        return CHANGE_LOWER
    if upper_moved:
        return CHANGE_UPPER
    return None


def _pct(prev: float, new: float) -> float:
    if prev == 0:
        return 0.0
    return (new - prev) / prev * 100.0


def change_pcts(prev_lower: float, prev_upper: float,
                new_lower: float, new_upper: float) -> tuple[float, float, float]:
    """(lower %, upper %, range %) moves; each is 0 when its previous value is 0."""
    return (
        _pct(prev_lower, new_lower),
        _pct(prev_upper, new_upper),
        _pct(prev_upper - prev_lower, new_upper - new_lower),
    )


def severity_for(lower_pct: float, upper_pct: float) -> str:
    biggest = max(abs(lower_pct), abs(upper_pct))
    if biggest >= 20:
        return SEVERITY_CRITICAL
    if biggest >= 10:
        return SEVERITY_HIGH
    if biggest >= 5:
        return SEVERITY_MEDIUM
    return SEVERITY_LOW


def change_reason(change_type: str, range_pct: float) -> str:
    if change_type == CHANGE_INITIAL:
        return REASON_INITIAL
    if abs(range_pct) > SIGNIFICANT_RANGE_PCT:
        return REASON_SIGNIFICANT_RANGE
    if change_type == CHANGE_BOTH:
        return REASON_BOTH
    if change_type == CHANGE_LOWER:
        return REASON_LOWER
    return REASON_UPPER


def is_breach(price: float, lower: float, upper: float) -> bool:
    """Price within 2% of either limit (or beyond it)."""
    if price <= 0:
        return False
    return price <= lower * (1 + NEAR_BAND) or price >= upper * (1 - NEAR_BAND)


@dataclass(frozen=True, slots=True)
class DetectionResult:
    result: ItemResult
    record: CircuitChangeRow | None = None

    @property
    def recorded(self) -> bool:
        return self.record is not None

    @property
    def outcome(self) -> ItemOutcome:
        return self.result.outcome


class CircuitChangeDetector:
    def __init__(self,
                 repo: CircuitChangeRepository,
                 calendar: MarketCalendar,
                 duplicate_window_seconds: float = 300.0,
                 metrics: PipelineMetrics | None = None) -> None:
        self._repo = repo
        self._calendar = calendar
        self._window = dt.timedelta(seconds=duplicate_window_seconds)
        self._metrics = metrics

    def _skip(self, token: int, reason: str) -> DetectionResult:
        if reason == SKIP_DUPLICATE and self._metrics is not None:
            self._metrics.duplicates_suppressed.inc()
        return DetectionResult(ItemResult.skip(token, reason))

    def detect(self, instrument: Instrument, quote: Quote, index_quote: Quote | None = None,
               now: dt.datetime | None = None) -> DetectionResult:
        token = instrument.instrument_token
        new_lower, new_upper = quote.lower_circuit_limit, quote.upper_circuit_limit
        if new_lower <= 0 or new_upper <= 0 or new_upper <= new_lower:
            return self._skip(token, SKIP_NO_LIMITS)
        detected_at = self._calendar.localize(now).replace(microsecond=0)

        try:
            last = self._repo.latest_for(token)
            if last is None:
                prev_lower = prev_upper = 0.0
                change_type = CHANGE_INITIAL
            else:
                prev_lower, prev_upper = last.new_lower, last.new_upper
                moved = classify_change(prev_lower, prev_upper, new_lower, new_upper)
                if moved is None:
                    return self._skip(token, SKIP_UNCHANGED)
                change_type = moved

            # only records at or after the last recorded change can be repeats of this one
            since = detected_at - self._window
            if last is not None and last.detected_at > since:
                since = last.detected_at
            if self._repo.find_recent_duplicate(token, new_lower, new_upper, since) is not None:
                logger.debug("detector.duplicate_in_window token=%s bounds=%s/%s", token, new_lower, new_upper)
                return self._skip(token, SKIP_DUPLICATE)
            latest = self._repo.latest_for(token)
            if latest is not None and limits_equal(latest.new_lower, new_lower) and limits_equal(latest.new_upper, new_upper):
                logger.debug("detector.duplicate_after_reread token=%s", token)
                return self._skip(token, SKIP_DUPLICATE)

            row = self._build(instrument, quote, index_quote, prev_lower, prev_upper, change_type, detected_at)
            self._repo.insert(row)
        except DuplicateChange:
            logger.debug("detector.duplicate_natural_key token=%s at=%s", token, detected_at)
            return self._skip(token, SKIP_DUPLICATE)
        except PersistenceError as e:
            logger.error("detector.persist_failed token=%s err=%s", token, e)
            return DetectionResult(ItemResult.error(token, str(e)))

        logger.info(
            "circuit.change symbol=%s type=%s lower=%.2f->%.2f (%.1f%%) upper=%.2f->%.2f (%.1f%%) severity=%s breach=%s",
            instrument.trading_symbol, change_type, prev_lower, new_lower, row.lower_change_pct,
            prev_upper, new_upper, row.upper_change_pct, row.severity, row.is_breach_alert,
        )
        if self._metrics is not None:
            self._metrics.changes_recorded.labels(underlying=instrument.underlying, severity=row.severity).inc()
            if row.is_breach_alert:
                self._metrics.breach_alerts.inc()
        return DetectionResult(ItemResult.ok(token, value=row, reason=change_type), row)

    def _build(self, instrument: Instrument, quote: Quote, index_quote: Quote | None,
               prev_lower: float, prev_upper: float, change_type: str,
               detected_at: dt.datetime) -> CircuitChangeRow:
        new_lower, new_upper = quote.lower_circuit_limit, quote.upper_circuit_limit
        lower_pct, upper_pct, range_pct = change_pcts(prev_lower, prev_upper, new_lower, new_upper)
        idx = index_quote
        return CircuitChangeRow(
            instrument_token=instrument.instrument_token,
            trading_symbol=instrument.trading_symbol,
            underlying=instrument.underlying,
            strike=instrument.strike,
            option_type=instrument.option_type,
            expiry=instrument.expiry,
            previous_lower=prev_lower,
            previous_upper=prev_upper,
            new_lower=new_lower,
            new_upper=new_upper,
            detected_at=detected_at,
            change_type=change_type,
            lower_change_pct=round(lower_pct, 4),
            upper_change_pct=round(upper_pct, 4),
            range_change_pct=round(range_pct, 4),
            severity=severity_for(lower_pct, upper_pct),
            change_reason=change_reason(change_type, range_pct),
            is_breach_alert=is_breach(quote.last_price, new_lower, new_upper),
            current_price=quote.last_price,
            volume=quote.volume,
            open_interest=quote.open_interest,
            index_open=idx.ohlc.open if idx else 0.0,
            index_high=idx.ohlc.high if idx else 0.0,
            index_low=idx.ohlc.low if idx else 0.0,
            index_close=idx.ohlc.close if idx else 0.0,
            index_last_price=idx.last_price if idx else 0.0,
            index_change=idx.net_change if idx else 0.0,
            index_circuit_status=(
                circuit_status(idx.last_price, idx.lower_circuit_limit, idx.upper_circuit_limit) if idx else "Normal"
            ),
        )


__all__ = [
    "CircuitChangeDetector",
    "DetectionResult",
    "classify_change",
    "change_pcts",
    "severity_for",
    "change_reason",
    "is_breach",
    "limits_equal",
    "CHANGE_INITIAL", "CHANGE_LOWER", "CHANGE_UPPER", "CHANGE_BOTH",
    "SKIP_NO_LIMITS", "SKIP_UNCHANGED", "SKIP_DUPLICATE",
]
