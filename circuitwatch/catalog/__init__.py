"""Option instrument universe for the configured indices."""
from circuitwatch.catalog.instruments import InstrumentCache, InstrumentCatalog, RefreshSummary

__all__ = ["InstrumentCache", "InstrumentCatalog", "RefreshSummary"]
