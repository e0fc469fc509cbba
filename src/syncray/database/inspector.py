"""
Schema inspection: columns, primary keys and identity columns of a table.

SQL Server and PostgreSQL are read through INFORMATION_SCHEMA (plus the
catalog views for identity detection); SQLite through PRAGMA table_info.
SQL Server rowversion columns, which INFORMATION_SCHEMA reports as
"timestamp", are returned with data type "rowversion". Inspection never
modifies the database.
"""

import logging

from syncray.exceptions import SchemaError
from syncray.snapshot.models import Column

from .connection import DatabaseConnection
from .dialect import split_table_name
from .types import DatabaseType

logger = logging.getLogger(__name__)

COLUMNS_QUERY = """
SELECT COLUMN_NAME AS column_name,
       DATA_TYPE AS data_type,
       IS_NULLABLE AS is_nullable
FROM INFORMATION_SCHEMA.COLUMNS
WHERE TABLE_SCHEMA = {p} AND TABLE_NAME = {p}
ORDER BY ORDINAL_POSITION
"""

PRIMARY_KEY_QUERY = """
SELECT kcu.COLUMN_NAME AS column_name
FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
  ON tc.CONSTRAINT_NAME = kcu.CONSTRAINT_NAME
 AND tc.TABLE_SCHEMA = kcu.TABLE_SCHEMA
 AND tc.TABLE_NAME = kcu.TABLE_NAME
WHERE tc.CONSTRAINT_TYPE = 'PRIMARY KEY'
  AND tc.TABLE_SCHEMA = {p} AND tc.TABLE_NAME = {p}
ORDER BY kcu.ORDINAL_POSITION
"""

SQLSERVER_IDENTITY_QUERY = """
SELECT c.name AS column_name
FROM sys.identity_columns c
WHERE c.object_id = OBJECT_ID(?)
"""

POSTGRES_IDENTITY_QUERY = """
SELECT COLUMN_NAME AS column_name
FROM INFORMATION_SCHEMA.COLUMNS
WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
  AND (IS_IDENTITY = 'YES' OR COLUMN_DEFAULT LIKE 'nextval(%%')
"""


class SchemaInspector:
    """
    Reads table metadata through a database connection.

    Results are cached per table for the lifetime of the inspector, so one
    inspector should not outlive a schema change.

    Example:
        >>> inspector = SchemaInspector(conn)
        >>> inspector.primary_key("dbo.Users")
        ['UserId']
    """

    def __init__(self, connection: DatabaseConnection):
        self.connection = connection
        self._columns: dict[str, list[Column]] = {}
        self._primary_keys: dict[str, list[str]] = {}

    @property
    def db_type(self) -> DatabaseType:
        return self.connection.db_type

    def _qualify(self, table: str) -> tuple[str | None, str]:
        schema, name = split_table_name(table)
        return schema or self.db_type.default_schema, name

    def table_exists(self, table: str) -> bool:
        try:
            return bool(self._read_columns(table))
        except ValueError:
            return False

    def columns(self, table: str) -> list[Column]:
        """
        Columns of a table in ordinal order.

        Raises:
            SchemaError: If the table does not exist
        """
        if table not in self._columns:
            columns = self._read_columns(table)
            if not columns:
                raise SchemaError(f"Table not found: {table}", table=table)
            self._columns[table] = columns
        return list(self._columns[table])

    def column_names(self, table: str) -> list[str]:
        return [col.name for col in self.columns(table)]

    def primary_key(self, table: str) -> list[str]:
        """
        Primary key columns in key order, or an empty list.

        Raises:
            SchemaError: If the table does not exist
        """
        if table not in self._primary_keys:
            self.columns(table)
            self._primary_keys[table] = self._read_primary_key(table)
        return list(self._primary_keys[table])

    def identity_columns(self, table: str) -> list[str]:
        return [col.name for col in self.columns(table) if col.is_identity]

    def rowversion_columns(self, table: str) -> list[str]:
        """Server-generated row version columns, which can never be written."""
        return [col.name for col in self.columns(table) if col.is_rowversion]

    def _read_columns(self, table: str) -> list[Column]:
        schema, name = self._qualify(table)

        if self.db_type == DatabaseType.SQLITE:
            rows = self.connection.query(f"PRAGMA table_info({self.connection.dialect.quote_identifier(name)})")
            return [
                Column(
                    name=row["name"],
                    data_type=(row["type"] or "").lower(),
                    nullable=not row["notnull"] and not row["pk"],
                )
                for row in rows
            ]

        p = self.connection.dialect.placeholder
        rows = self.connection.query(COLUMNS_QUERY.format(p=p), [schema, name])
        identity = set(self._read_identity_columns(schema, name)) if rows else set()
        columns = []
        for row in rows:
            data_type = row["data_type"].lower()
            is_rowversion = self.db_type == DatabaseType.SQLSERVER and data_type in (
                "timestamp", "rowversion"
            )
            columns.append(
                Column(
                    name=row["column_name"],
                    data_type="rowversion" if is_rowversion else data_type,
                    nullable=str(row["is_nullable"]).upper() == "YES",
                    is_identity=row["column_name"] in identity,
                    is_rowversion=is_rowversion,
                )
            )
        return columns

    def _read_identity_columns(self, schema: str, name: str) -> list[str]:
        if self.db_type == DatabaseType.SQLSERVER:
            qualified = self.connection.dialect.quote_table(f"{schema}.{name}")
            rows = self.connection.query(SQLSERVER_IDENTITY_QUERY, [qualified])
        else:
            rows = self.connection.query(POSTGRES_IDENTITY_QUERY, [schema, name])
        return [row["column_name"] for row in rows]

    def _read_primary_key(self, table: str) -> list[str]:
        schema, name = self._qualify(table)

        if self.db_type == DatabaseType.SQLITE:
            rows = self.connection.query(f"PRAGMA table_info({self.connection.dialect.quote_identifier(name)})")
            keyed = sorted((row for row in rows if row["pk"]), key=lambda row: row["pk"])
            return [row["name"] for row in keyed]

        p = self.connection.dialect.placeholder
        rows = self.connection.query(PRIMARY_KEY_QUERY.format(p=p), [schema, name])
        return [row["column_name"] for row in rows]
