"""
Sync configuration loading.

The configuration file is JSON with three sections: ``databases`` (named
connection settings), ``syncTables`` (ordered per-table rules) and
``exportPath`` (snapshot directory). It is validated against a JSON schema
before anything else is read from it.

Passwords are never required in the file: ``passwordEnv`` names an
environment variable, and ``SYNCRAY_<NAME>_PASSWORD`` is consulted as a
fallback.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema

from syncray.database.connection import DatabaseConnection, create_connection
from syncray.database.types import DatabaseType
from syncray.exceptions import ConfigurationError
from syncray.snapshot.models import SyncRule

logger = logging.getLogger(__name__)

DEFAULT_EXPORT_PATH = "./sync-data"

_RULE_SCHEMA = {
    "type": "object",
    "required": ["sourceTable"],
    "additionalProperties": False,
    "properties": {
        "sourceTable": {"type": "string", "minLength": 1},
        "targetTable": {"type": ["string", "null"]},
        "matchOn": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "ignoreColumns": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "allowInserts": {"type": "boolean"},
        "allowUpdates": {"type": "boolean"},
        "allowDeletes": {"type": "boolean"},
        "preserveIdentity": {"type": "boolean"},
        "replaceMode": {"type": "boolean"},
        "exportWhere": {"type": ["string", "null"]},
    },
}

_DATABASE_SCHEMA = {
    "type": "object",
    "required": ["type"],
    "additionalProperties": False,
    "properties": {
        "type": {"type": "string"},
        "server": {"type": "string"},
        "host": {"type": "string"},
        "port": {"type": "integer", "minimum": 1, "maximum": 65535},
        "database": {"type": "string"},
        "user": {"type": "string"},
        "password": {"type": "string"},
        "passwordEnv": {"type": "string"},
        "connectionString": {"type": "string"},
        "path": {"type": "string"},
        "driver": {"type": "string"},
        "statementTimeout": {"type": "number", "exclusiveMinimum": 0},
    },
}

CONFIG_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["syncTables"],
    "properties": {
        "databases": {"type": "object", "additionalProperties": _DATABASE_SCHEMA},
        "syncTables": {"type": "array", "items": _RULE_SCHEMA},
        "exportPath": {"type": "string", "minLength": 1},
    },
}


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for one named database."""

    name: str
    type: DatabaseType
    server: str | None = None
    host: str | None = None
    port: int | None = None
    database: str | None = None
    user: str | None = None
    password: str | None = field(default=None, repr=False)
    connection_string: str | None = field(default=None, repr=False)
    path: str | None = None
    driver: str | None = None
    statement_timeout: float | None = None

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "DatabaseConfig":
        try:
            db_type = DatabaseType.from_name(data["type"])
        except ValueError as e:
            raise ConfigurationError(f"Database '{name}': {e}") from e

        password = data.get("password")
        if password is None:
            password = resolve_password(name, data.get("passwordEnv"))

        return cls(
            name=name,
            type=db_type,
            server=data.get("server"),
            host=data.get("host"),
            port=data.get("port"),
            database=data.get("database"),
            user=data.get("user"),
            password=password,
            connection_string=data.get("connectionString"),
            path=data.get("path"),
            driver=data.get("driver"),
            statement_timeout=data.get("statementTimeout"),
        )

    def connection_params(self) -> dict[str, Any]:
        """Keyword arguments for the backend connection class."""
        params: dict[str, Any] = {"name": self.name, "statement_timeout": self.statement_timeout}

        if self.type == DatabaseType.SQLSERVER:
            params.update(
                server=self.server or self.host,
                database=self.database,
                user=self.user,
                password=self.password,
                port=self.port,
                connection_string=self.connection_string,
            )
            if self.driver:
                params["driver"] = self.driver
        elif self.type == DatabaseType.POSTGRESQL:
            params.update(
                host=self.host or self.server or "localhost",
                database=self.database,
                user=self.user,
                password=self.password,
                port=self.port or 5432,
            )
        else:
            params["path"] = self.path or self.database or ":memory:"

        return params


def _env_name(name: str) -> str:
    return "SYNCRAY_" + re.sub(r"[^A-Za-z0-9]", "_", name).upper() + "_PASSWORD"


def resolve_password(name: str, password_env: str | None = None) -> str | None:
    """
    Look up a database password in the environment.

    ``password_env`` is tried first, then ``SYNCRAY_<NAME>_PASSWORD``.
    """
    if password_env:
        value = os.getenv(password_env)
        if value is None:
            logger.warning(f"Database '{name}': environment variable {password_env} is not set")
        else:
            return value
    return os.getenv(_env_name(name))


@dataclass(frozen=True)
class SyncConfig:
    """Parsed sync configuration."""

    sync_rules: tuple[SyncRule, ...]
    databases: dict[str, DatabaseConfig] = field(default_factory=dict)
    export_path: str = DEFAULT_EXPORT_PATH
    source_file: str | None = None

    def database(self, name: str) -> DatabaseConfig:
        if name not in self.databases:
            known = ", ".join(sorted(self.databases)) or "none"
            raise ConfigurationError(f"Database '{name}' is not configured (known: {known})")
        return self.databases[name]

    def select_tables(self, tables: list[str] | None) -> list[SyncRule]:
        """
        Rules for the requested tables, in configuration order.

        Raises:
            ConfigurationError: If a requested table has no rule
        """
        if not tables:
            return list(self.sync_rules)

        wanted = {t.strip().lower() for t in tables if t.strip()}
        known = {rule.source_table.lower() for rule in self.sync_rules}
        unknown = sorted(wanted - known)
        if unknown:
            raise ConfigurationError(f"Tables not in configuration: {', '.join(unknown)}")
        return [rule for rule in self.sync_rules if rule.source_table.lower() in wanted]


def parse_config(document: dict[str, Any], source_file: str | None = None) -> SyncConfig:
    """
    Validate and parse a configuration document.

    Raises:
        ConfigurationError: If the document does not match the schema or
            lists a source table twice
    """
    try:
        jsonschema.validate(instance=document, schema=CONFIG_SCHEMA)
    except jsonschema.exceptions.ValidationError as e:
        location = "/".join(str(part) for part in e.absolute_path) or "<root>"
        raise ConfigurationError(f"Invalid configuration at {location}: {e.message}") from e

    rules = []
    seen: set[str] = set()
    for entry in document["syncTables"]:
        rule = SyncRule.from_dict(entry)
        if rule.source_table.lower() in seen:
            raise ConfigurationError(
                f"sourceTable {rule.source_table} is configured more than once",
                table=rule.source_table,
            )
        seen.add(rule.source_table.lower())
        rules.append(rule)

    databases = {
        name: DatabaseConfig.from_dict(name, data)
        for name, data in document.get("databases", {}).items()
    }

    return SyncConfig(
        sync_rules=tuple(rules),
        databases=databases,
        export_path=document.get("exportPath", DEFAULT_EXPORT_PATH),
        source_file=source_file,
    )


def load_config(path: str | Path) -> SyncConfig:
    """
    Load a sync configuration file.

    Raises:
        ConfigurationError: If the file is missing, not JSON or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            document = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Configuration file {path} is not valid JSON: {e}") from e

    config = parse_config(document, source_file=str(path))
    logger.info(
        f"Loaded {len(config.sync_rules)} table rule(s) and "
        f"{len(config.databases)} database(s) from {path}"
    )
    return config


def open_connection(db_config: DatabaseConfig) -> DatabaseConnection:
    """Create and open the connection described by ``db_config``."""
    try:
        connection = create_connection(db_config.type, **db_config.connection_params())
    except ValueError as e:
        raise ConfigurationError(f"Database '{db_config.name}': {e}") from e
    return connection.open()
