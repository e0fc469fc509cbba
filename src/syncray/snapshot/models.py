"""
Shared data model: columns, per-table sync rules and table snapshots.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from syncray.exceptions import ConfigurationError

from .values import coerce_row, serialize_row


@dataclass(frozen=True)
class Column:
    """A column as reported by the schema inspector."""

    name: str
    data_type: str
    nullable: bool = True
    is_identity: bool = False
    is_rowversion: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = {"name": self.name, "dataType": self.data_type, "nullable": self.nullable}
        if self.is_identity:
            data["isIdentity"] = True
        if self.is_rowversion:
            data["isRowVersion"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Column":
        return cls(
            name=data["name"],
            data_type=data.get("dataType", ""),
            nullable=bool(data.get("nullable", True)),
            is_identity=bool(data.get("isIdentity", False)),
            is_rowversion=bool(data.get("isRowVersion", False)),
        )


# Config keys and the SyncRule fields they map to
RULE_FIELDS = {
    "sourceTable": "source_table",
    "targetTable": "target_table",
    "matchOn": "match_on",
    "ignoreColumns": "ignore_columns",
    "allowInserts": "allow_inserts",
    "allowUpdates": "allow_updates",
    "allowDeletes": "allow_deletes",
    "preserveIdentity": "preserve_identity",
    "replaceMode": "replace_mode",
    "exportWhere": "export_where",
}


@dataclass(frozen=True)
class SyncRule:
    """
    Per-table sync policy.

    ``match_on`` identifies the same logical row on both sides; an empty
    value is resolved from the target primary key before reconciliation.
    ``ignore_columns`` are neither compared nor inserted.
    """

    source_table: str
    target_table: str | None = None
    match_on: tuple[str, ...] = ()
    ignore_columns: frozenset[str] = frozenset()
    allow_inserts: bool = True
    allow_updates: bool = True
    allow_deletes: bool = False
    preserve_identity: bool = False
    replace_mode: bool = False
    export_where: str | None = None

    def __post_init__(self):
        if not self.source_table or not self.source_table.strip():
            raise ConfigurationError("sourceTable is required")
        if not self.target_table:
            object.__setattr__(self, "target_table", self.source_table)
        object.__setattr__(self, "match_on", tuple(self.match_on or ()))
        object.__setattr__(self, "ignore_columns", frozenset(self.ignore_columns or ()))

        if len(set(self.match_on)) != len(self.match_on):
            raise ConfigurationError(
                f"matchOn for {self.source_table} lists a column twice: {list(self.match_on)}",
                table=self.source_table,
            )

    @property
    def table(self) -> str:
        """Target table name (what changes are applied to)."""
        return self.target_table

    def with_match_on(self, match_on: list[str] | tuple[str, ...]) -> "SyncRule":
        return replace(self, match_on=tuple(match_on))

    def compared_columns(self, columns: list[str]) -> list[str]:
        """Columns whose values are compared: neither matched on nor ignored."""
        return [
            col for col in columns
            if col not in self.match_on and col not in self.ignore_columns
        ]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncRule":
        """
        Build a rule from a ``syncTables`` configuration entry.

        Raises:
            ConfigurationError: On unknown keys or a missing sourceTable
        """
        unknown = set(data) - set(RULE_FIELDS)
        if unknown:
            raise ConfigurationError(
                f"Unknown sync table setting(s): {', '.join(sorted(unknown))}",
                table=data.get("sourceTable"),
            )
        kwargs = {RULE_FIELDS[key]: value for key, value in data.items() if value is not None}
        if "source_table" not in kwargs:
            raise ConfigurationError("sourceTable is required")
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceTable": self.source_table,
            "targetTable": self.target_table,
            "matchOn": list(self.match_on),
            "ignoreColumns": sorted(self.ignore_columns),
            "allowInserts": self.allow_inserts,
            "allowUpdates": self.allow_updates,
            "allowDeletes": self.allow_deletes,
            "preserveIdentity": self.preserve_identity,
            "replaceMode": self.replace_mode,
            "exportWhere": self.export_where,
        }


@dataclass(frozen=True)
class SnapshotMetadata:
    table_name: str
    row_count: int
    primary_keys: tuple[str, ...] = ()
    match_on: tuple[str, ...] = ()
    ignore_columns: tuple[str, ...] = ()
    allow_deletes: bool = False
    export_timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "tableName": self.table_name,
            "rowCount": self.row_count,
            "primaryKeys": list(self.primary_keys),
            "matchOn": list(self.match_on),
            "ignoreColumns": list(self.ignore_columns),
            "allowDeletes": self.allow_deletes,
            "exportTimestamp": self.export_timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SnapshotMetadata":
        return cls(
            table_name=data["tableName"],
            row_count=int(data.get("rowCount", 0)),
            primary_keys=tuple(data.get("primaryKeys") or ()),
            match_on=tuple(data.get("matchOn") or ()),
            ignore_columns=tuple(data.get("ignoreColumns") or ()),
            allow_deletes=bool(data.get("allowDeletes", False)),
            export_timestamp=data.get("exportTimestamp", ""),
        )


@dataclass
class TableSnapshot:
    """
    Rows of one source table in serialized (JSON-safe) form, with the
    schema and rule settings they were exported under.
    """

    metadata: SnapshotMetadata
    columns: list[Column]
    data: list[dict[str, Any]]

    @property
    def table_name(self) -> str:
        return self.metadata.table_name

    @property
    def column_types(self) -> dict[str, str]:
        return {col.name: col.data_type for col in self.columns}

    def native_rows(self) -> list[dict[str, Any]]:
        """Rows with values coerced back to native types using the column list."""
        types = self.column_types
        return [coerce_row(row, types) for row in self.data]

    @classmethod
    def from_rows(
        cls,
        rule: SyncRule,
        columns: list[Column],
        rows: list[dict[str, Any]],
        primary_keys: list[str] | tuple[str, ...] = (),
    ) -> "TableSnapshot":
        """Build a snapshot from native rows fetched from the source table."""
        metadata = SnapshotMetadata(
            table_name=rule.source_table,
            row_count=len(rows),
            primary_keys=tuple(primary_keys),
            match_on=rule.match_on,
            ignore_columns=tuple(sorted(rule.ignore_columns)),
            allow_deletes=rule.allow_deletes,
        )
        return cls(metadata=metadata, columns=list(columns), data=[serialize_row(r) for r in rows])

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "columns": [col.to_dict() for col in self.columns],
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TableSnapshot":
        return cls(
            metadata=SnapshotMetadata.from_dict(data["metadata"]),
            columns=[Column.from_dict(col) for col in data.get("columns", [])],
            data=list(data.get("data", [])),
        )
