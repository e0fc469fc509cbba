"""
SQL script rendering of pending changes.

Produces a readable script of the statements a change set would run, with
values inlined as literals. The script is for review only; the applier
always executes parameterized statements.
"""

import json
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from opentelemetry import trace

from syncray.database.dialect import Dialect
from syncray.database.types import DatabaseType
from syncray.snapshot.models import SyncRule
from syncray.utils.tracing import trace_operation

from .differ import ChangeSet


def format_literal(value: Any, db_type: DatabaseType) -> str:
    """Render a value as a SQL literal."""
    if value is None:
        return "NULL"

    if isinstance(value, bool):
        if db_type == DatabaseType.POSTGRESQL:
            return "TRUE" if value else "FALSE"
        return "1" if value else "0"

    if isinstance(value, (int, float, Decimal)):
        return str(value)

    if isinstance(value, datetime):
        return f"'{value.isoformat(' ', timespec='milliseconds')}'"

    if isinstance(value, date):
        return f"'{value.isoformat()}'"

    if isinstance(value, (bytes, bytearray, memoryview)):
        hex_value = bytes(value).hex()
        if db_type == DatabaseType.POSTGRESQL:
            return f"'\\x{hex_value}'::bytea"
        if db_type == DatabaseType.SQLITE:
            return f"X'{hex_value}'"
        return f"0x{hex_value}"

    if isinstance(value, (dict, list, tuple)):
        value = json.dumps(value, default=str)

    escaped = str(value).replace("'", "''")
    if db_type == DatabaseType.SQLSERVER:
        return f"N'{escaped}'"
    return f"'{escaped}'"


def _where(dialect: Dialect, key: dict[str, Any]) -> str:
    conditions = []
    for column, value in key.items():
        quoted = dialect.quote_identifier(column)
        if value is None:
            conditions.append(f"{quoted} IS NULL")
        else:
            conditions.append(f"{quoted} = {format_literal(value, dialect.db_type)}")
    return " AND ".join(conditions)


def render_insert(dialect: Dialect, table: str, row: dict[str, Any], columns: list[str]) -> str:
    values = ", ".join(format_literal(row.get(col), dialect.db_type) for col in columns)
    column_list = ", ".join(dialect.quote_identifier(col) for col in columns)
    return f"INSERT INTO {dialect.quote_table(table)} ({column_list}) VALUES ({values});"


def render_change_set_sql(
    table: str,
    change_set: ChangeSet,
    rule: SyncRule,
    dialect: Dialect,
    source_rows: list[dict[str, Any]] | None = None,
) -> str:
    """
    Render the statements of a change set as a SQL script.

    Args:
        table: Target table
        change_set: Changes to render
        rule: Sync rule (ignored columns are left out of INSERTs)
        dialect: Target dialect
        source_rows: Rows inserted in replace mode

    Returns:
        Script text wrapped in a transaction
    """
    with trace_operation(
        "render_change_set_sql",
        kind=trace.SpanKind.INTERNAL,
        table=table,
        changes=change_set.total,
    ):
        db_type = dialect.db_type
        quoted_table = dialect.quote_table(table)
        lines = [
            f"-- Changes for {table}",
            f"-- Generated: {datetime.now(UTC).isoformat()}",
            f"-- Database type: {db_type.value}",
            "",
            "BEGIN;" if db_type != DatabaseType.SQLSERVER else "BEGIN TRANSACTION;",
            "",
        ]

        def insert_columns(row: dict[str, Any]) -> list[str]:
            return [col for col in row if col not in rule.ignore_columns]

        if change_set.replace_mode:
            rows = source_rows or []
            lines.append(f"-- Replace all rows ({len(rows)} source rows)")
            lines.append(f"{dialect.delete_all(table)};")
            for row in rows:
                lines.append(render_insert(dialect, table, row, insert_columns(row)))
            lines.append("")
        else:
            if change_set.inserts:
                lines.append(f"-- Insert {len(change_set.inserts)} rows")
                for row in change_set.inserts:
                    lines.append(render_insert(dialect, table, row, insert_columns(row)))
                lines.append("")

            if change_set.updates:
                lines.append(f"-- Update {len(change_set.updates)} rows")
                for update in change_set.updates:
                    set_clause = ", ".join(
                        f"{dialect.quote_identifier(change.field)} = "
                        f"{format_literal(change.new_value, db_type)}"
                        for change in update.changed_fields
                    )
                    lines.append(
                        f"UPDATE {quoted_table} SET {set_clause} WHERE {_where(dialect, update.key)};"
                    )
                lines.append("")

            if change_set.deletes:
                lines.append(f"-- Delete {len(change_set.deletes)} rows")
                for row in change_set.deletes:
                    key = {col: row.get(col) for col in rule.match_on}
                    lines.append(f"DELETE FROM {quoted_table} WHERE {_where(dialect, key)};")
                lines.append("")

        lines.append("COMMIT;")
        return "\n".join(lines)
