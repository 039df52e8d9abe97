"""Instrument catalog: the set of option contracts the poller tracks.

The catalog owns an explicit ``InstrumentCache`` (no module globals). A
refresh downloads each configured exchange's instrument list, keeps the
CE/PE contracts of the configured underlyings that have not expired, stores
newly listed contracts and adds them to the cache. A refresh never removes a
cached contract; expired ones are filtered out when the catalog is read.

An empty or failed download never clears what is already cached: the
broker occasionally returns an empty list during maintenance windows and
that must not stop polling.
"""
from __future__ import annotations

import datetime as dt
import logging
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from circuitwatch.broker.base import BrokerLike
from circuitwatch.config.indices import IndexConfig, exchanges_for
from circuitwatch.domain.models import OPTION_TYPES, Instrument
from circuitwatch.metrics.registry import PipelineMetrics
from circuitwatch.storage.instruments import InstrumentRepository
from circuitwatch.utils.exceptions import TransientFetchError
from circuitwatch.utils.market_hours import MarketCalendar

logger = logging.getLogger(__name__)


class InstrumentCache:
    """Per-exchange instrument lists plus a token index."""

    def __init__(self, now_func: Callable[[], float] = time.monotonic) -> None:
        self._lock = threading.RLock()
        self._by_exchange: dict[str, list[Instrument]] = {}
        self._meta: dict[str, float] = {}
        self._index: dict[int, Instrument] = {}
        self._now = now_func
        self.last_refresh: float | None = None

    def _reindex(self) -> None:
        self._index = {i.instrument_token: i for lst in self._by_exchange.values() for i in lst}

    def merge(self, instruments: Iterable[Instrument], exchange: str | None = None) -> int:
        """Add instruments not already cached; returns how many were added.

        ``exchange`` stamps that exchange's refresh time, even when nothing is new.
        """
        added = 0
        with self._lock:
            if exchange is not None:
                self._meta[exchange] = self._now()
            for inst in instruments:
                if inst.instrument_token in self._index:
                    continue
                self._by_exchange.setdefault(inst.exchange, []).append(inst)
                self._index[inst.instrument_token] = inst
                added += 1
        return added

    def prune_expired(self, today: dt.date) -> int:
        with self._lock:
            before = len(self._index)
            for exch, lst in self._by_exchange.items():
                self._by_exchange[exch] = [i for i in lst if not i.is_expired(today)]
            self._reindex()
            return before - len(self._index)

    def clock(self) -> float:
        return self._now()

    def mark_refreshed(self) -> None:
        with self._lock:
            self.last_refresh = self._now()

    def age(self, exchange: str | None = None) -> float | None:
        with self._lock:
            ts = self.last_refresh if exchange is None else self._meta.get(exchange)
            return None if ts is None else self._now() - ts

    def get(self, token: int) -> Instrument | None:
        with self._lock:
            return self._index.get(token)

    def contains(self, token: int) -> bool:
        with self._lock:
            return token in self._index

    def all(self) -> list[Instrument]:
        with self._lock:
            return [i for lst in self._by_exchange.values() for i in lst]

    def exchanges(self) -> list[str]:
        with self._lock:
            return list(self._by_exchange)

    def __len__(self) -> int:
        with self._lock:
            return len(self._index)


@dataclass(slots=True)
class RefreshSummary:
    skipped: bool = False
    fetched: dict[str, int] = field(default_factory=dict)
    new_by_underlying: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    empty_exchanges: list[str] = field(default_factory=list)

    @property
    def total_new(self) -> int:
        return sum(self.new_by_underlying.values())


class InstrumentCatalog:
    def __init__(self,
                 broker: BrokerLike,
                 repo: InstrumentRepository,
                 indices: Sequence[IndexConfig],
                 calendar: MarketCalendar,
                 refresh_seconds: float = 300.0,
                 metrics: PipelineMetrics | None = None,
                 cache: InstrumentCache | None = None) -> None:
        self._broker = broker
        self._repo = repo
        self._indices = [ix for ix in indices if ix.enabled]
        self._underlyings = frozenset(ix.name for ix in self._indices)
        self._calendar = calendar
        self.refresh_seconds = refresh_seconds
        self._metrics = metrics
        self.cache = cache if cache is not None else InstrumentCache()
        self._refresh_lock = threading.Lock()

    @property
    def underlyings(self) -> frozenset[str]:
        return self._underlyings

    def refresh_due(self, now: float | None = None) -> bool:
        """True when the interval has elapsed; ``now`` is in the cache clock's units."""
        last = self.cache.last_refresh
        if last is None:
            return True
        current = now if now is not None else self.cache.clock()
        return current - last >= self.refresh_seconds

    def _select(self, listed: list[Instrument], today: dt.date) -> list[Instrument]:
        return [
            i for i in listed
            if i.underlying in self._underlyings and i.option_type in OPTION_TYPES and i.expiry >= today
        ]

    def refresh(self, force: bool = False) -> RefreshSummary:
        """Download instrument lists and record newly listed contracts.

        ``AuthenticationError`` propagates; transient failures are recorded
        per exchange and leave that exchange's cached list in place.
        """
        if not force and not self.refresh_due():
            return RefreshSummary(skipped=True)
        if not self._refresh_lock.acquire(blocking=False):
            logger.debug("catalog.refresh_in_progress; skipping")
            return RefreshSummary(skipped=True)
        try:
            return self._refresh_locked()
        finally:
            self._refresh_lock.release()

    def _refresh_locked(self) -> RefreshSummary:
        summary = RefreshSummary()
        today = self._calendar.today()
        now = self._calendar.now()
        try:
            for exch in exchanges_for(self._indices):
                try:
                    listed = self._broker.list_instruments(exch)
                except TransientFetchError as e:
                    summary.errors[exch] = str(e)
                    logger.warning("catalog.refresh_failed exch=%s err=%s; keeping cached list", exch, e)
                    if self._metrics is not None:
                        self._metrics.catalog_refresh_errors.labels(exchange=exch).inc()
                    continue
                if not listed:
                    summary.empty_exchanges.append(exch)
                    logger.warning("catalog.empty_response exch=%s; keeping cached list", exch)
                    continue
                selected = self._select(listed, today)
                summary.fetched[exch] = len(selected)
                if not selected:
                    logger.warning("catalog.no_tracked_options exch=%s listed=%d; keeping cached list", exch, len(listed))
                    continue
                fresh = self._repo.insert_new(selected, now)
                for inst in fresh:
                    summary.new_by_underlying[inst.underlying] = summary.new_by_underlying.get(inst.underlying, 0) + 1
                self.cache.merge(selected, exchange=exch)
        finally:
            self.cache.mark_refreshed()
        for name, count in sorted(summary.new_by_underlying.items()):
            logger.info("catalog.new_instruments underlying=%s count=%d", name, count)
            if self._metrics is not None:
                self._metrics.new_instruments.labels(underlying=name).inc(count)
        self._publish_sizes(today)
        logger.info(
            "catalog.refreshed active=%d new=%d errors=%d empty=%s",
            len(self.cache), summary.total_new, len(summary.errors), ",".join(summary.empty_exchanges) or "-",
        )
        return summary

    def _publish_sizes(self, today: dt.date) -> None:
        if self._metrics is None:
            return
        counts = dict.fromkeys(self._underlyings, 0)
        for inst in self.active_instruments(today):
            counts[inst.underlying] = counts.get(inst.underlying, 0) + 1
        for name, count in counts.items():
            self._metrics.catalog_size.labels(underlying=name).set(count)

    # -- read side ----------------------------------------------------------
    def active_instruments(self, today: dt.date | None = None) -> list[Instrument]:
        day = today or self._calendar.today()
        return [i for i in self.cache.all() if not i.is_expired(day)]

    def get(self, token: int) -> Instrument | None:
        return self.cache.get(token)

    def tokens(self, today: dt.date | None = None) -> list[int]:
        return [i.instrument_token for i in self.active_instruments(today)]

    def instruments_for(self, underlying: str, today: dt.date | None = None) -> list[Instrument]:
        name = underlying.upper()
        return [i for i in self.active_instruments(today) if i.underlying == name]

    # -- maintenance --------------------------------------------------------
    def warm_from_store(self) -> int:
        """Seed the cache from stored, unexpired instruments."""
        rows = self._repo.load_active(self._calendar.today(), self._underlyings)
        added = self.cache.merge(rows)
        logger.info("catalog.warmed_from_store instruments=%d", added)
        return added

    def mark_expired(self, today: dt.date | None = None) -> int:
        day = today or self._calendar.today()
        flagged = self._repo.mark_expired(day, self._calendar.now())
        self.cache.prune_expired(day)
        return flagged


__all__ = ["InstrumentCache", "InstrumentCatalog", "RefreshSummary"]
