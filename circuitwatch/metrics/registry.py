"""Pipeline metrics registry.

Each ``PipelineMetrics`` owns its own ``CollectorRegistry`` so tests can build
as many instances as they like without duplicate-timeseries errors on the
process default registry. The exporter serves whichever registry it is given.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

_CYCLE_BUCKETS = (0.5, 1, 2, 5, 10, 20, 30, 60, 120)


def _labels(labels: Iterable[str] | None) -> Sequence[str]:
    if not labels:
        return ()
    return tuple(str(l) for l in labels)


class PipelineMetrics:
    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.poll_cycles = self._counter('cw_poll_cycles_total', 'Quote poll cycles by outcome', ['outcome'])
        self.quotes_received = self._counter('cw_quotes_received_total', 'Option quotes received from the broker')
        self.snapshots_written = self._counter('cw_snapshots_written_total', 'Snapshots persisted', ['valid'])
        self.item_errors = self._counter('cw_item_errors_total', 'Per-item failures by stage', ['stage'])
        self.batch_errors = self._counter('cw_quote_batch_errors_total', 'Quote batches that failed to fetch')
        self.changes_recorded = self._counter('cw_circuit_changes_total', 'Circuit changes recorded', ['underlying', 'severity'])
        self.duplicates_suppressed = self._counter('cw_duplicate_changes_suppressed_total', 'Candidate changes suppressed as duplicates')
        self.breach_alerts = self._counter('cw_breach_alerts_total', 'Changes recorded with price near a circuit limit')
        self.new_instruments = self._counter('cw_new_instruments_total', 'Newly listed option contracts discovered', ['underlying'])
        self.catalog_refresh_errors = self._counter('cw_catalog_refresh_errors_total', 'Failed instrument downloads', ['exchange'])
        self.catalog_size = self._gauge('cw_catalog_instruments', 'Active instruments in the catalog', ['underlying'])
        self.auth_needs_reauth = self._gauge('cw_auth_needs_reauth', '1 while broker credentials need refresh')
        self.eod_records = self._counter('cw_eod_records_total', 'EOD records by action', ['action'])
        self.last_eod_date = self._gauge('cw_eod_last_trading_date', 'Last trading date reconciled (yyyymmdd)')
        self.retention_deleted = self._counter('cw_retention_deleted_total', 'Rows deleted by retention', ['kind'])
        self.cycle_duration = self._histogram('cw_poll_cycle_seconds', 'Quote poll cycle wall time', buckets=_CYCLE_BUCKETS)
        self.last_cycle_ts = self._gauge('cw_last_poll_cycle_timestamp', 'Unix time of the last completed poll cycle')

    def _counter(self, name: str, doc: str, labels: Iterable[str] | None = None) -> Counter:
        return Counter(name, doc, _labels(labels), registry=self.registry)

    def _gauge(self, name: str, doc: str, labels: Iterable[str] | None = None) -> Gauge:
        return Gauge(name, doc, _labels(labels), registry=self.registry)

    def _histogram(self, name: str, doc: str, labels: Iterable[str] | None = None,
                   buckets: Sequence[float] | None = None) -> Histogram:
        if buckets is None:
            return Histogram(name, doc, _labels(labels), registry=self.registry)
        return Histogram(name, doc, _labels(labels), buckets=buckets, registry=self.registry)

    def value(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current sample value (0.0 when absent); convenient for tests and reports."""
        return self.registry.get_sample_value(name, labels or {}) or 0.0


def start_metrics_server(metrics: PipelineMetrics, port: int = 9109, host: str = "0.0.0.0") -> None:
    start_http_server(port, addr=host, registry=metrics.registry)
    logger.info("Metrics server started on %s:%s", host, port)
    logger.info("Metrics available at http://%s:%s/metrics", host, port)


__all__ = ["PipelineMetrics", "start_metrics_server"]
