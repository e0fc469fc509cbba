"""
SyncRay: table data reconciliation and sync between databases.

Export source tables to JSON snapshots, compare them row by row against a
target table on configurable match columns, and apply the resulting
inserts, updates and deletes in one transaction per table.

Usage:
    from syncray import SyncOrchestrator, load_config, open_connection

    config = load_config("sync.json")
    with open_connection(config.database("dev")) as target:
        orchestrator = SyncOrchestrator(target=target, dry_run=False)
        plans, summary = orchestrator.import_tables(list(config.sync_rules), config.export_path)
"""

from .config import SyncConfig, load_config, open_connection
from .exceptions import (
    ConfigurationError,
    DuplicateKeyError,
    ExecutionError,
    NoPrimaryKeyError,
    SchemaError,
    SnapshotError,
    SyncError,
)
from .orchestrator import DuplicateResolutionPolicy, SyncOrchestrator, TablePlan
from .reconciliation import ChangeSet, Reconciler, reconcile
from .snapshot import SyncRule, TableSnapshot

__version__ = "0.1.0"

__all__ = [
    "SyncOrchestrator",
    "DuplicateResolutionPolicy",
    "TablePlan",
    "SyncConfig",
    "load_config",
    "open_connection",
    "SyncRule",
    "TableSnapshot",
    "ChangeSet",
    "Reconciler",
    "reconcile",
    "SyncError",
    "ConfigurationError",
    "SchemaError",
    "SnapshotError",
    "DuplicateKeyError",
    "NoPrimaryKeyError",
    "ExecutionError",
]
