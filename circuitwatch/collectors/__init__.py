"""Intraday quote collection."""
from circuitwatch.collectors.quote_poller import CycleReport, PollerState, QuotePoller

__all__ = ["CycleReport", "PollerState", "QuotePoller"]
