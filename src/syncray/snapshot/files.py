"""
Snapshot files: one JSON document per exported table.
"""

import json
import logging
from pathlib import Path
from typing import Any

import jsonschema

from syncray.exceptions import SnapshotError

from .models import TableSnapshot

logger = logging.getLogger(__name__)

SNAPSHOT_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["metadata", "columns", "data"],
    "properties": {
        "metadata": {
            "type": "object",
            "required": ["tableName", "rowCount"],
            "properties": {
                "tableName": {"type": "string", "minLength": 1},
                "rowCount": {"type": "integer", "minimum": 0},
                "primaryKeys": {"type": "array", "items": {"type": "string"}},
                "matchOn": {"type": "array", "items": {"type": "string"}},
                "ignoreColumns": {"type": "array", "items": {"type": "string"}},
                "allowDeletes": {"type": "boolean"},
                "exportTimestamp": {"type": "string"},
            },
        },
        "columns": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "dataType"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "dataType": {"type": "string"},
                    "nullable": {"type": "boolean"},
                    "isIdentity": {"type": "boolean"},
                    "isRowVersion": {"type": "boolean"},
                },
            },
        },
        "data": {"type": "array", "items": {"type": "object"}},
    },
}


def snapshot_path(directory: str | Path, table: str) -> Path:
    """File holding the snapshot of ``table`` inside ``directory``."""
    return Path(directory) / f"{table}.json"


def write_snapshot(snapshot: TableSnapshot, directory: str | Path) -> Path:
    """
    Write a snapshot to ``<directory>/<table>.json``.

    Returns:
        Path of the written file
    """
    path = snapshot_path(directory, snapshot.table_name)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(snapshot.to_dict(), f, indent=2, ensure_ascii=False)

    logger.info(f"Exported {snapshot.metadata.row_count} rows of {snapshot.table_name} to {path}")
    return path


def read_snapshot(path: str | Path) -> TableSnapshot:
    """
    Load and validate a snapshot file.

    Raises:
        SnapshotError: If the file is missing, not JSON, or fails validation
    """
    path = Path(path)
    if not path.exists():
        raise SnapshotError(f"Snapshot file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            document = json.load(f)
    except json.JSONDecodeError as e:
        raise SnapshotError(f"Snapshot {path} is not valid JSON: {e}") from e

    try:
        jsonschema.validate(instance=document, schema=SNAPSHOT_SCHEMA)
    except jsonschema.exceptions.ValidationError as e:
        raise SnapshotError(f"Snapshot {path} is invalid: {e.message}") from e

    snapshot = TableSnapshot.from_dict(document)
    if snapshot.metadata.row_count != len(snapshot.data):
        logger.warning(
            f"Snapshot {path} declares {snapshot.metadata.row_count} rows "
            f"but contains {len(snapshot.data)}"
        )
    return snapshot
