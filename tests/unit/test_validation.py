"""
Unit tests for syncray.reconciliation.validation
"""

from unittest.mock import MagicMock

import pytest

from syncray.exceptions import ConfigurationError, SchemaError
from syncray.reconciliation.validation import resolve_sync_rule
from syncray.snapshot.models import Column, SyncRule


def make_inspector(columns, primary_key=(), identity=()):
    inspector = MagicMock()
    inspector.columns.return_value = [
        Column(name, "int", is_identity=name in identity) for name in columns
    ]
    inspector.primary_key.return_value = list(primary_key)
    inspector.identity_columns.return_value = list(identity)
    return inspector


class TestResolveSyncRule:
    """Test resolve_sync_rule"""

    def test_match_on_derived_from_primary_key(self):
        inspector = make_inspector(["id", "name"], primary_key=["id"])

        resolved = resolve_sync_rule(SyncRule(source_table="T"), inspector)

        assert resolved.match_on == ("id",)

    def test_configured_match_on_is_kept(self):
        inspector = make_inspector(["id", "email"], primary_key=["id"])

        resolved = resolve_sync_rule(SyncRule(source_table="T", match_on=("email",)), inspector)

        assert resolved.match_on == ("email",)
        inspector.primary_key.assert_not_called()

    def test_no_primary_key_and_no_match_on(self):
        inspector = make_inspector(["a", "b"])

        with pytest.raises(ConfigurationError, match="no primary key"):
            resolve_sync_rule(SyncRule(source_table="T"), inspector)

    def test_replace_mode_needs_no_key(self):
        inspector = make_inspector(["a", "b"])
        rule = SyncRule(source_table="T", replace_mode=True)

        assert resolve_sync_rule(rule, inspector) == rule

    def test_missing_match_column(self):
        inspector = make_inspector(["id"])

        with pytest.raises(SchemaError, match="email"):
            resolve_sync_rule(SyncRule(source_table="T", match_on=("email",)), inspector)

    def test_match_on_overlapping_ignore_columns(self):
        inspector = make_inspector(["id", "name"])
        rule = SyncRule(source_table="T", match_on=("id",), ignore_columns=frozenset({"id"}))

        with pytest.raises(ConfigurationError, match="cannot be ignored"):
            resolve_sync_rule(rule, inspector)

    def test_identity_match_column_without_preserve_identity(self):
        inspector = make_inspector(["id", "name"], primary_key=["id"], identity=["id"])

        with pytest.raises(ConfigurationError, match="identity"):
            resolve_sync_rule(SyncRule(source_table="T"), inspector)

    def test_identity_match_column_with_preserve_identity(self):
        inspector = make_inspector(["id", "name"], primary_key=["id"], identity=["id"])

        resolved = resolve_sync_rule(SyncRule(source_table="T", preserve_identity=True), inspector)

        assert resolved.match_on == ("id",)

    def test_identity_match_column_allowed_without_inserts(self):
        inspector = make_inspector(["id", "name"], primary_key=["id"], identity=["id"])

        resolved = resolve_sync_rule(SyncRule(source_table="T", allow_inserts=False), inspector)

        assert resolved.match_on == ("id",)

    def test_unknown_ignored_column_only_warns(self, caplog):
        inspector = make_inspector(["id"], primary_key=["id"])
        rule = SyncRule(source_table="T", ignore_columns=frozenset({"ghost"}))

        resolved = resolve_sync_rule(rule, inspector)

        assert resolved.match_on == ("id",)
        assert "ghost" in caplog.text
