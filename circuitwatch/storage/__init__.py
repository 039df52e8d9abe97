"""Relational persistence: engine/session handling, ORM tables and repositories."""
from circuitwatch.storage.circuit_changes import CircuitChangeRepository, DuplicateChange
from circuitwatch.storage.db import Database
from circuitwatch.storage.historical import CircuitFields, HistoricalRepository, UpsertAction
from circuitwatch.storage.instruments import InstrumentRepository
from circuitwatch.storage.retention import DataCleanup, start_retention_worker
from circuitwatch.storage.snapshots import SnapshotStore

__all__ = [
    "Database",
    "InstrumentRepository",
    "SnapshotStore",
    "CircuitChangeRepository",
    "DuplicateChange",
    "HistoricalRepository",
    "CircuitFields",
    "UpsertAction",
    "DataCleanup",
    "start_retention_worker",
]
