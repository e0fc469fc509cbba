"""
Pytest configuration and fixtures for SyncRay tests.
Provides SQLite-backed connections, isolated metrics and common rules.
"""

from pathlib import Path

import pytest
from prometheus_client import CollectorRegistry

from syncray.database.connection import SQLiteConnection
from syncray.database.inspector import SchemaInspector
from syncray.snapshot.models import Column, SyncRule
from syncray.utils.metrics import SyncMetrics

USERS_DDL = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    email VARCHAR(100),
    name VARCHAR(100) NOT NULL,
    active BOOLEAN,
    created_at DATETIME,
    score REAL,
    note TEXT
)
"""


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Get project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def metrics() -> SyncMetrics:
    """Metrics bound to a private registry so tests do not share counters."""
    return SyncMetrics(registry=CollectorRegistry())


@pytest.fixture
def sqlite_db(tmp_path):
    """Open SQLite connection on a file database; closed after the test."""
    conn = SQLiteConnection(path=str(tmp_path / "target.db"), name="target").open()
    yield conn
    conn.close()


@pytest.fixture
def source_db(tmp_path):
    conn = SQLiteConnection(path=str(tmp_path / "source.db"), name="source").open()
    yield conn
    conn.close()


def create_users(conn, rows=()):
    """Create the users table and insert ``rows`` (dicts)."""
    conn.execute(USERS_DDL)
    for row in rows:
        sql, params = conn.dialect.insert_statement("users", row)
        conn.execute(sql, params)


@pytest.fixture
def users_db(sqlite_db):
    create_users(sqlite_db)
    return sqlite_db


@pytest.fixture
def inspector(users_db) -> SchemaInspector:
    return SchemaInspector(users_db)


@pytest.fixture
def users_columns() -> list[Column]:
    return [
        Column("id", "integer", nullable=False),
        Column("email", "varchar(100)"),
        Column("name", "varchar(100)", nullable=False),
        Column("active", "boolean"),
        Column("created_at", "datetime"),
        Column("score", "real"),
        Column("note", "text"),
    ]


@pytest.fixture
def users_rule() -> SyncRule:
    return SyncRule(source_table="users", match_on=("id",))


@pytest.fixture
def make_users():
    """Factory fixture: ``make_users(conn, rows)`` creates and fills the users table."""
    return create_users
