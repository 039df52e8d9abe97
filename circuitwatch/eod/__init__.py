"""End-of-day reconciliation."""
from circuitwatch.eod.reconciler import EODReconciler, EODSummary

__all__ = ["EODReconciler", "EODSummary"]
