"""
Reconciliation engine: change-set computation, rule resolution, duplicate
analysis and transactional application.
"""

from .applier import SyncSummary, TableSyncResult, TransactionalApplier
from .comparison import composite_key, normalize_key_part, values_equal
from .differ import ChangeSet, FieldChange, Reconciler, RowUpdate, reconcile
from .duplicates import (
    DuplicateAnalyzer,
    DuplicateResolution,
    UniquenessReport,
    find_duplicate_rows,
)
from .script import format_literal, render_change_set_sql
from .validation import resolve_sync_rule

__all__ = [
    "ChangeSet",
    "FieldChange",
    "RowUpdate",
    "Reconciler",
    "reconcile",
    "values_equal",
    "composite_key",
    "normalize_key_part",
    "DuplicateAnalyzer",
    "DuplicateResolution",
    "UniquenessReport",
    "find_duplicate_rows",
    "TransactionalApplier",
    "TableSyncResult",
    "SyncSummary",
    "resolve_sync_rule",
    "render_change_set_sql",
    "format_literal",
]
