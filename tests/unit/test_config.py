"""
Unit tests for syncray.config
"""

import json
from unittest.mock import patch

import pytest

from syncray.config import DatabaseConfig, load_config, open_connection, parse_config, resolve_password
from syncray.database.connection import SQLiteConnection
from syncray.database.types import DatabaseType
from syncray.exceptions import ConfigurationError

CONFIG = {
    "databases": {
        "prod": {"type": "sqlserver", "server": "db01", "database": "App", "user": "sync", "passwordEnv": "PROD_PW"},
        "dev": {"type": "postgres", "host": "localhost", "database": "app"},
        "local": {"type": "sqlite", "path": "local.db"},
    },
    "syncTables": [
        {"sourceTable": "Users", "matchOn": ["Email"], "ignoreColumns": ["LastLogin"]},
        {"sourceTable": "Roles", "allowDeletes": True},
    ],
    "exportPath": "./out",
}


def write_config(tmp_path, document) -> str:
    path = tmp_path / "sync.json"
    path.write_text(json.dumps(document))
    return str(path)


class TestLoadConfig:
    """Test load_config/parse_config"""

    def test_parses_rules_in_order(self, tmp_path):
        config = load_config(write_config(tmp_path, CONFIG))

        assert [rule.source_table for rule in config.sync_rules] == ["Users", "Roles"]
        assert config.sync_rules[0].match_on == ("Email",)
        assert config.sync_rules[1].allow_deletes is True
        assert config.export_path == "./out"

    def test_database_types_and_aliases(self, tmp_path):
        config = load_config(write_config(tmp_path, CONFIG))

        assert config.database("prod").type == DatabaseType.SQLSERVER
        assert config.database("dev").type == DatabaseType.POSTGRESQL
        assert config.database("local").type == DatabaseType.SQLITE

    def test_default_export_path(self):
        config = parse_config({"syncTables": [{"sourceTable": "T"}]})
        assert config.export_path == "./sync-data"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "sync.json"
        path.write_text("{")
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            load_config(path)

    def test_schema_violation_reports_location(self):
        document = {"syncTables": [{"sourceTable": "T", "allowDeletes": "yes"}]}
        with pytest.raises(ConfigurationError, match="syncTables/0/allowDeletes"):
            parse_config(document)

    def test_unknown_rule_key(self):
        with pytest.raises(ConfigurationError):
            parse_config({"syncTables": [{"sourceTable": "T", "matchon": ["id"]}]})

    def test_duplicate_source_table(self):
        document = {"syncTables": [{"sourceTable": "Users"}, {"sourceTable": "users"}]}
        with pytest.raises(ConfigurationError, match="more than once"):
            parse_config(document)

    def test_unsupported_database_type(self):
        document = {"databases": {"x": {"type": "oracle"}}, "syncTables": []}
        with pytest.raises(ConfigurationError, match="Unsupported database type"):
            parse_config(document)

    def test_unknown_database_name(self):
        config = parse_config(CONFIG)
        with pytest.raises(ConfigurationError, match="not configured"):
            config.database("staging")


class TestSelectTables:
    """Test SyncConfig.select_tables"""

    def test_all_when_no_filter(self):
        assert len(parse_config(CONFIG).select_tables(None)) == 2

    def test_filter_keeps_configuration_order(self):
        rules = parse_config(CONFIG).select_tables(["roles", " Users"])
        assert [rule.source_table for rule in rules] == ["Users", "Roles"]

    def test_unknown_table(self):
        with pytest.raises(ConfigurationError, match="Orders"):
            parse_config(CONFIG).select_tables(["Orders"])


class TestPasswords:
    """Password resolution from the environment"""

    def test_password_env(self, monkeypatch):
        monkeypatch.setenv("PROD_PW", "s3cret")
        assert parse_config(CONFIG).database("prod").password == "s3cret"

    def test_fallback_variable(self, monkeypatch):
        monkeypatch.setenv("SYNCRAY_DEV_PASSWORD", "devpw")
        assert parse_config(CONFIG).database("dev").password == "devpw"

    def test_fallback_name_is_sanitized(self, monkeypatch):
        monkeypatch.setenv("SYNCRAY_PROD_EU_PASSWORD", "pw")
        assert resolve_password("prod-eu") == "pw"

    def test_password_not_in_repr(self, monkeypatch):
        monkeypatch.setenv("PROD_PW", "s3cret")
        assert "s3cret" not in repr(parse_config(CONFIG).database("prod"))


class TestConnectionParams:
    """DatabaseConfig to connection parameters"""

    def test_sqlserver_params(self):
        db = DatabaseConfig.from_dict("prod", CONFIG["databases"]["prod"])
        params = db.connection_params()

        assert params["server"] == "db01"
        assert params["database"] == "App"
        assert params["name"] == "prod"

    def test_postgres_default_port(self):
        db = DatabaseConfig.from_dict("dev", CONFIG["databases"]["dev"])
        assert db.connection_params()["port"] == 5432

    def test_open_sqlite_connection(self, tmp_path):
        db = DatabaseConfig.from_dict("local", {"type": "sqlite", "path": str(tmp_path / "x.db")})

        conn = open_connection(db)
        try:
            assert isinstance(conn, SQLiteConnection)
            assert conn.is_open
        finally:
            conn.close()

    def test_invalid_connection_settings(self):
        db = DatabaseConfig.from_dict("pg", {"type": "postgresql"})
        with patch("syncray.database.connection.psycopg2.connect") as connect:
            with pytest.raises(ConfigurationError, match="database must be provided"):
                open_connection(db)
            connect.assert_not_called()
