"""
SQL dialect translation.

Turns the logical operations the sync engine needs (fetch rows, count,
group duplicates, parameterized INSERT/UPDATE/DELETE, identity handling)
into SQL text for one backend. Everything here is pure string building:
no connection is needed, so the generated SQL is unit-testable.

Values always travel as driver parameters. Only identifiers are rendered
into the SQL text, and they are validated and quoted first.
"""

import re
from collections.abc import Mapping, Sequence
from typing import Any

from .types import DatabaseType

# Control characters (including NUL) are never legitimate in identifiers
INVALID_IDENTIFIER_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def validate_identifier(identifier: str) -> None:
    """
    Validate a table or column name before it is quoted.

    Raises:
        ValueError: If the identifier is empty or contains control characters
    """
    if not identifier or not identifier.strip():
        raise ValueError("SQL identifier cannot be empty")

    if INVALID_IDENTIFIER_CHARS.search(identifier):
        raise ValueError(f"Invalid identifier format: {identifier!r}")


def split_table_name(table: str) -> tuple[str | None, str]:
    """
    Split ``schema.table`` into its parts, stripping SQL Server brackets.

    Returns:
        Tuple of (schema or None, table)
    """
    clean = table.strip()
    if clean.startswith("[") and "].[" in clean and clean.endswith("]"):
        schema, name = clean[1:-1].split("].[", 1)
        return schema, name
    clean = clean.replace("[", "").replace("]", "")
    if "." in clean:
        schema, name = clean.split(".", 1)
        if "." in name:
            raise ValueError(f"Invalid schema.table format: {table}")
        return schema, name
    return None, clean


class Dialect:
    """
    SQL rendering rules for one database backend.

    Example:
        >>> dialect = Dialect(DatabaseType.SQLSERVER)
        >>> dialect.insert_statement("dbo.Users", {"id": 1, "name": "Bob"})
        ('INSERT INTO [dbo].[Users] ([id], [name]) VALUES (?, ?)', [1, 'Bob'])
    """

    def __init__(self, db_type: DatabaseType):
        self.db_type = DatabaseType(db_type)

    def __repr__(self) -> str:
        return f"Dialect({self.db_type.value})"

    @property
    def placeholder(self) -> str:
        # pyodbc and sqlite3 use qmark, psycopg2 uses format style
        return "%s" if self.db_type == DatabaseType.POSTGRESQL else "?"

    def quote_identifier(self, identifier: str) -> str:
        """Quote a single identifier, escaping embedded delimiters."""
        validate_identifier(identifier)
        if self.db_type == DatabaseType.SQLSERVER:
            return "[" + identifier.replace("]", "]]") + "]"
        return '"' + identifier.replace('"', '""') + '"'

    def quote_table(self, table: str) -> str:
        """Quote a table name that may carry a schema prefix."""
        schema, name = split_table_name(table)
        if schema:
            return f"{self.quote_identifier(schema)}.{self.quote_identifier(name)}"
        return self.quote_identifier(name)

    def _column_list(self, columns: Sequence[str]) -> str:
        return ", ".join(self.quote_identifier(col) for col in columns)

    def key_predicate(self, key: Mapping[str, Any]) -> tuple[str, list[Any]]:
        """
        Render a WHERE predicate matching ``key`` exactly.

        NULL key values render as ``IS NULL`` because ``= NULL`` never
        matches.
        """
        if not key:
            raise ValueError("Cannot build a predicate from an empty key")

        conditions = []
        params = []
        for column, value in key.items():
            quoted = self.quote_identifier(column)
            if value is None:
                conditions.append(f"{quoted} IS NULL")
            else:
                conditions.append(f"{quoted} = {self.placeholder}")
                params.append(value)
        return " AND ".join(conditions), params

    # Reads

    def select_rows(
        self,
        table: str,
        columns: Sequence[str] | None = None,
        where: str | None = None,
        order_by: Sequence[str] | None = None,
    ) -> str:
        """
        Fetch rows from a table.

        ``where`` is a trusted filter expression from the sync configuration
        and is embedded as written.
        """
        cols = self._column_list(columns) if columns else "*"
        sql = f"SELECT {cols} FROM {self.quote_table(table)}"
        if where:
            sql += f" WHERE {where}"
        if order_by:
            sql += f" ORDER BY {self._column_list(order_by)}"
        return sql

    def duplicate_groups(
        self, table: str, columns: Sequence[str], where: str | None = None
    ) -> str:
        """
        Group rows by ``columns`` and keep the groups seen more than once.

        GROUP BY puts NULLs into a single group, so NULL equals NULL here.
        The occurrence count is returned as ``dup_count``.
        """
        cols = self._column_list(columns)
        sql = f"SELECT {cols}, COUNT(*) AS dup_count FROM {self.quote_table(table)}"
        if where:
            sql += f" WHERE {where}"
        sql += f" GROUP BY {cols} HAVING COUNT(*) > 1 ORDER BY COUNT(*) DESC"
        return sql

    # Writes

    def insert_statement(
        self, table: str, row: Mapping[str, Any], columns: Sequence[str] | None = None
    ) -> tuple[str, list[Any]]:
        """Parameterized INSERT of ``row`` restricted to ``columns``."""
        columns = list(columns) if columns is not None else list(row.keys())
        if not columns:
            raise ValueError(f"No columns to insert into {table}")

        placeholders = ", ".join(self.placeholder for _ in columns)
        sql = (
            f"INSERT INTO {self.quote_table(table)} ({self._column_list(columns)}) "
            f"VALUES ({placeholders})"
        )
        return sql, [row.get(col) for col in columns]

    def update_statement(
        self, table: str, changes: Mapping[str, Any], key: Mapping[str, Any]
    ) -> tuple[str, list[Any]]:
        """Parameterized UPDATE setting ``changes`` on the row matching ``key``."""
        if not changes:
            raise ValueError(f"No columns to update in {table}")

        set_clause = ", ".join(
            f"{self.quote_identifier(col)} = {self.placeholder}" for col in changes
        )
        predicate, key_params = self.key_predicate(key)
        sql = f"UPDATE {self.quote_table(table)} SET {set_clause} WHERE {predicate}"
        return sql, list(changes.values()) + key_params

    def delete_statement(self, table: str, key: Mapping[str, Any]) -> tuple[str, list[Any]]:
        """Parameterized DELETE of the row(s) matching ``key``."""
        predicate, params = self.key_predicate(key)
        return f"DELETE FROM {self.quote_table(table)} WHERE {predicate}", params

    def delete_all(self, table: str) -> str:
        # DELETE rather than TRUNCATE: it is transactional on every backend
        # and works on tables referenced by foreign keys
        return f"DELETE FROM {self.quote_table(table)}"

    # Identity columns

    def identity_insert(self, table: str, enabled: bool) -> list[str]:
        """Statements allowing explicit values in identity columns."""
        if self.db_type == DatabaseType.SQLSERVER:
            state = "ON" if enabled else "OFF"
            return [f"SET IDENTITY_INSERT {self.quote_table(table)} {state}"]
        return []

    def reseed_identity(self, table: str, column: str) -> list[tuple[str, list[Any]]]:
        """
        Statements moving an identity sequence past explicitly inserted values.

        SQL Server reseeds itself when IDENTITY_INSERT is switched off and
        SQLite derives rowids from the current maximum, so only PostgreSQL
        needs this.
        """
        if self.db_type != DatabaseType.POSTGRESQL:
            return []

        schema, name = split_table_name(table)
        qualified = f"{schema or self.db_type.default_schema}.{name}"
        quoted_col = self.quote_identifier(column)
        sql = (
            f"SELECT setval(pg_get_serial_sequence(%s, %s), "
            f"COALESCE(MAX({quoted_col}), 1), MAX({quoted_col}) IS NOT NULL) "
            f"FROM {self.quote_table(table)}"
        )
        return [(sql, [qualified, column])]


_DIALECTS: dict[DatabaseType, Dialect] = {}


def get_dialect(db_type: DatabaseType | str) -> Dialect:
    """Return the shared Dialect for a backend."""
    if not isinstance(db_type, DatabaseType):
        db_type = DatabaseType.from_name(db_type)
    if db_type not in _DIALECTS:
        _DIALECTS[db_type] = Dialect(db_type)
    return _DIALECTS[db_type]
