"""
Database access layer: backend types, SQL dialects, connections and
schema inspection.
"""

from .connection import (
    DatabaseConnection,
    PostgresConnection,
    SQLiteConnection,
    SQLServerConnection,
    create_connection,
)
from .dialect import Dialect, get_dialect, split_table_name, validate_identifier
from .inspector import SchemaInspector
from .types import DatabaseType

__all__ = [
    "DatabaseType",
    "Dialect",
    "get_dialect",
    "split_table_name",
    "validate_identifier",
    "DatabaseConnection",
    "SQLServerConnection",
    "PostgresConnection",
    "SQLiteConnection",
    "create_connection",
    "SchemaInspector",
]
