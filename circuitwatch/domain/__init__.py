"""Typed domain records shared across the pipeline."""
from .models import DailyBar, Instrument, ItemOutcome, ItemResult, OHLC, Quote

__all__ = ["Instrument", "OHLC", "Quote", "DailyBar", "ItemOutcome", "ItemResult"]
