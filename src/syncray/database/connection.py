"""
Database connections for SyncRay.

Every backend exposes the same narrow capability to the sync engine:
``query`` (rows as dicts), ``scalar``, ``execute`` (affected row count) and
explicit transactions. Connections run in autocommit mode between
transactions so schema lookups and reads never hold locks.
"""

import json
import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import psycopg2
from opentelemetry import trace
from psycopg2.extras import Json

from syncray.snapshot.values import column_family
from syncray.utils.retry import retry_with_backoff
from syncray.utils.tracing import trace_operation

from .dialect import Dialect, get_dialect
from .types import DatabaseType

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """
    Base class for backend connections.

    Subclasses implement ``_connect`` and the autocommit switch; the query
    and transaction protocol is shared.
    """

    db_type: DatabaseType

    def __init__(self, name: str = "default", statement_timeout: int | None = None):
        """
        Args:
            name: Logical database name from the configuration (for logs)
            statement_timeout: Per-statement timeout in seconds (None = driver default)
        """
        self.name = name
        self.statement_timeout = statement_timeout
        self._conn: Any = None
        self._in_transaction = False

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"

    @property
    def dialect(self) -> Dialect:
        return get_dialect(self.db_type)

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    @property
    def connection(self) -> Any:
        if self._conn is None:
            raise RuntimeError(f"Connection '{self.name}' is not open")
        return self._conn

    def open(self) -> "DatabaseConnection":
        """Open the underlying driver connection (retried on transient errors)."""
        if self._conn is None:
            with trace_operation(
                "db_connect",
                kind=trace.SpanKind.CLIENT,
                db_system=self.db_type.value,
                db_name=self.name,
            ):
                self._conn = retry_with_backoff(max_retries=3, base_delay=1.0)(self._connect)()
            self._set_autocommit(True)
            logger.info(f"Connected to {self.db_type.value} database '{self.name}'")
        return self

    def close(self) -> None:
        if self._conn is not None:
            if self._in_transaction:
                logger.warning(f"Closing '{self.name}' with an open transaction, rolling back")
                self.rollback()
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "DatabaseConnection":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Backend hooks

    def _connect(self) -> Any:
        """Create the driver connection. Must be implemented by subclasses."""
        raise NotImplementedError

    def _set_autocommit(self, enabled: bool) -> None:
        self.connection.autocommit = enabled

    def _begin(self) -> None:
        self._set_autocommit(False)

    def _commit(self) -> None:
        self.connection.commit()
        self._set_autocommit(True)

    def _rollback(self) -> None:
        self.connection.rollback()
        self._set_autocommit(True)

    def adapt_value(self, value: Any, data_type: str | None = None) -> Any:
        """
        Convert a value into something the driver can bind.

        JSON objects and arrays are bound as JSON text; backends with
        native JSON or array types override this.
        """
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        return value

    # Statement execution

    @contextmanager
    def _cursor(self, sql: str, params: Sequence[Any] | None) -> Iterator[Any]:
        cursor = self.connection.cursor()
        try:
            logger.debug(f"[{self.name}] {sql} params={list(params) if params else []}")
            if params:
                cursor.execute(sql, [self.adapt_value(value) for value in params])
            else:
                cursor.execute(sql)
            yield cursor
        finally:
            cursor.close()

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        """Run a query and return every row as a column-name -> value dict."""
        with self._cursor(sql, params) as cursor:
            if cursor.description is None:
                return []
            columns = [desc[0] for desc in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def scalar(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        """Run a query and return the first column of the first row (or None)."""
        with self._cursor(sql, params) as cursor:
            row = cursor.fetchone()
            return row[0] if row else None

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> int:
        """Run a statement and return the number of affected rows."""
        with self._cursor(sql, params) as cursor:
            return cursor.rowcount

    # Transactions

    def begin(self) -> None:
        if self._in_transaction:
            raise RuntimeError(f"Transaction already open on '{self.name}'")
        self._begin()
        self._in_transaction = True

    def commit(self) -> None:
        if not self._in_transaction:
            raise RuntimeError(f"No open transaction on '{self.name}'")
        # Still flagged open if COMMIT fails, so the caller can roll back
        self._commit()
        self._in_transaction = False

    def rollback(self) -> None:
        if not self._in_transaction:
            return
        try:
            self._rollback()
        finally:
            self._in_transaction = False

    @contextmanager
    def transaction(self) -> Iterator["DatabaseConnection"]:
        """
        Scope a transaction: commit on success, roll back on any exception.

        Example:
            >>> with conn.transaction():
            ...     conn.execute(sql, params)
        """
        self.begin()
        try:
            yield self
            self.commit()
        except BaseException:
            self.rollback()
            raise


class SQLServerConnection(DatabaseConnection):
    """SQL Server connection through pyodbc."""

    db_type = DatabaseType.SQLSERVER

    def __init__(
        self,
        server: str | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        port: int | None = None,
        driver: str = "ODBC Driver 18 for SQL Server",
        connection_string: str | None = None,
        trust_server_certificate: bool = True,
        **kwargs: Any,
    ):
        """
        Args:
            server: Host name (with optional instance)
            database: Database name
            user: SQL login; Windows/integrated auth is used when omitted
            password: SQL login password
            port: TCP port
            driver: ODBC driver name
            connection_string: Complete ODBC connection string (overrides the rest)
            trust_server_certificate: Accept self-signed server certificates
        """
        super().__init__(**kwargs)
        if not connection_string and not (server and database):
            raise ValueError("Either connection_string or server and database must be provided")
        self.server = server
        self.database = database
        self.user = user
        self.password = password
        self.port = port
        self.driver = driver
        self.connection_string = connection_string
        self.trust_server_certificate = trust_server_certificate

    def build_connection_string(self) -> str:
        if self.connection_string:
            return self.connection_string

        server = f"{self.server},{self.port}" if self.port else self.server
        parts = [
            f"DRIVER={{{self.driver}}}",
            f"SERVER={server}",
            f"DATABASE={self.database}",
        ]
        if self.user:
            parts += [f"UID={self.user}", f"PWD={self.password or ''}"]
        else:
            parts.append("Trusted_Connection=yes")
        if self.trust_server_certificate:
            parts.append("TrustServerCertificate=yes")
        return ";".join(parts) + ";"

    def _connect(self) -> Any:
        # pyodbc needs the system ODBC manager at import time
        import pyodbc

        conn = pyodbc.connect(self.build_connection_string(), timeout=10)
        if self.statement_timeout:
            conn.timeout = self.statement_timeout
        return conn


class PostgresConnection(DatabaseConnection):
    """PostgreSQL connection through psycopg2."""

    db_type = DatabaseType.POSTGRESQL

    def __init__(
        self,
        host: str = "localhost",
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        port: int = 5432,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        if not database:
            raise ValueError("database must be provided for PostgreSQL")
        self.host = host
        self.database = database
        self.user = user
        self.password = password
        self.port = port

    def _connect(self) -> Any:
        options = None
        if self.statement_timeout:
            options = f"-c statement_timeout={int(self.statement_timeout * 1000)}"
        return psycopg2.connect(
            host=self.host,
            port=self.port,
            dbname=self.database,
            user=self.user,
            password=self.password,
            connect_timeout=10,
            options=options,
        )

    def adapt_value(self, value: Any, data_type: str | None = None) -> Any:
        # psycopg2 binds lists as ARRAY and cannot bind dicts at all
        if isinstance(value, dict) or (
            isinstance(value, list) and column_family(data_type) == "json"
        ):
            return Json(value)
        return value


def _convert_datetime(raw: bytes) -> Any:
    text = raw.decode()
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return text


def _convert_date(raw: bytes) -> Any:
    text = raw.decode()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return text


def _convert_bool(raw: bytes) -> Any:
    text = raw.decode().strip().lower()
    if text in ("1", "true"):
        return True
    if text in ("0", "false"):
        return False
    return text


SQLITE_CONVERTERS = {
    "DATETIME": _convert_datetime,
    "DATETIME2": _convert_datetime,
    "TIMESTAMP": _convert_datetime,
    "SMALLDATETIME": _convert_datetime,
    "DATE": _convert_date,
    "BOOLEAN": _convert_bool,
    "BOOL": _convert_bool,
    "BIT": _convert_bool,
}


class SQLiteConnection(DatabaseConnection):
    """
    SQLite connection through the standard library driver.

    Declared column types drive conversion of DATETIME/DATE/BOOLEAN values
    back to native Python types. The converters are registered with the
    sqlite3 module on first connect, so they also apply to other
    connections in the process that are opened with ``PARSE_DECLTYPES``.
    Parameters are adapted per connection.
    """

    db_type = DatabaseType.SQLITE

    def __init__(self, path: str = ":memory:", **kwargs: Any):
        super().__init__(**kwargs)
        self.path = path

    def _connect(self) -> sqlite3.Connection:
        for declared, converter in SQLITE_CONVERTERS.items():
            sqlite3.register_converter(declared, converter)
        conn = sqlite3.connect(
            self.path,
            timeout=self.statement_timeout or 5.0,
            detect_types=sqlite3.PARSE_DECLTYPES,
            isolation_level=None,
        )
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _set_autocommit(self, enabled: bool) -> None:
        # isolation_level=None keeps the driver out of transaction handling
        pass

    def _begin(self) -> None:
        self.connection.execute("BEGIN")

    def _commit(self) -> None:
        self.connection.execute("COMMIT")

    def _rollback(self) -> None:
        self.connection.execute("ROLLBACK")

    def adapt_value(self, value: Any, data_type: str | None = None) -> Any:
        if isinstance(value, datetime):
            # Keys read back from the table must bind to the text they were stored as
            timespec = "milliseconds" if value.microsecond % 1000 == 0 else "microseconds"
            return value.isoformat(" ", timespec=timespec)
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, Decimal):
            return str(value)
        return super().adapt_value(value, data_type)


CONNECTION_CLASSES: dict[DatabaseType, type[DatabaseConnection]] = {
    DatabaseType.SQLSERVER: SQLServerConnection,
    DatabaseType.POSTGRESQL: PostgresConnection,
    DatabaseType.SQLITE: SQLiteConnection,
}


def create_connection(db_type: DatabaseType | str, **params: Any) -> DatabaseConnection:
    """
    Build an unopened connection for a backend.

    Args:
        db_type: Backend type or alias
        **params: Backend-specific connection parameters

    Returns:
        DatabaseConnection subclass instance (call ``open()`` or use ``with``)
    """
    if not isinstance(db_type, DatabaseType):
        db_type = DatabaseType.from_name(db_type)
    return CONNECTION_CLASSES[db_type](**params)
