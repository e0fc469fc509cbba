"""
Snapshot model: columns, sync rules, serialized table contents and the
conversions between native and serialized values.
"""

from .files import SNAPSHOT_SCHEMA, read_snapshot, snapshot_path, write_snapshot
from .models import Column, SnapshotMetadata, SyncRule, TableSnapshot
from .values import coerce_row, coerce_value, column_family, serialize_row, serialize_value

__all__ = [
    "Column",
    "SyncRule",
    "SnapshotMetadata",
    "TableSnapshot",
    "read_snapshot",
    "write_snapshot",
    "snapshot_path",
    "SNAPSHOT_SCHEMA",
    "coerce_value",
    "coerce_row",
    "column_family",
    "serialize_value",
    "serialize_row",
]
