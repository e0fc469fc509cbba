"""
End-to-end sync tests against SQLite source and target databases.

Covers the export/import and direct sync workflows, dry runs, duplicate
policies, fail-fast validation, stop-on-failure execution and the CLI.
"""

import csv
import json
import sqlite3
from datetime import datetime
from unittest.mock import patch

import pytest

from syncray.cli import main
from syncray.exceptions import DuplicateKeyError
from syncray.orchestrator import DuplicateResolutionPolicy, SyncOrchestrator
from syncray.snapshot.files import read_snapshot
from syncray.snapshot.models import SyncRule

pytestmark = pytest.mark.integration

SOURCE_USERS = [
    {"id": 1, "email": "a@x.com", "name": "Alice", "active": True,
     "created_at": datetime(2024, 1, 1, 9, 0, 0, 125000), "score": 1.5, "note": None},
    {"id": 2, "email": "b@x.com", "name": "Bob", "active": False,
     "created_at": datetime(2024, 1, 2, 9, 0), "score": 2.0, "note": "vip"},
    {"id": 3, "email": "c@x.com", "name": "Carol", "active": True,
     "created_at": datetime(2024, 1, 3, 9, 0), "score": None, "note": None},
]

TARGET_USERS = [
    {**SOURCE_USERS[0], "name": "Alicia"},
    dict(SOURCE_USERS[1]),
    {"id": 4, "email": "d@x.com", "name": "Dave", "active": True,
     "created_at": datetime(2023, 12, 1), "score": 0.0, "note": None},
]


def users(conn) -> dict[int, dict]:
    return {row["id"]: row for row in conn.query("SELECT * FROM users ORDER BY id")}


@pytest.fixture
def databases(source_db, sqlite_db, make_users):
    make_users(source_db, SOURCE_USERS)
    make_users(sqlite_db, TARGET_USERS)
    return source_db, sqlite_db


def orchestrator(source, target, metrics, **kwargs) -> SyncOrchestrator:
    return SyncOrchestrator(target=target, source=source, metrics=metrics, **kwargs)


class TestDirectSync:
    """Source to target in one step"""

    def test_dry_run_changes_nothing(self, databases, metrics):
        source, target = databases
        rule = SyncRule(source_table="users", allow_deletes=True)

        plans, summary = orchestrator(source, target, metrics).sync_tables([rule])

        [result] = summary.results
        assert (result.status, result.inserts, result.updates, result.deletes) == ("preview", 1, 1, 1)
        assert plans[0].rule.match_on == ("id",)
        assert users(target)[1]["name"] == "Alicia"
        assert 3 not in users(target)

    def test_execute_applies_and_is_idempotent(self, databases, metrics):
        source, target = databases
        rule = SyncRule(source_table="users")

        _, summary = orchestrator(source, target, metrics, dry_run=False).sync_tables([rule])

        [result] = summary.results
        assert (result.status, result.inserts, result.updates, result.deletes) == ("applied", 1, 1, 0)
        rows = users(target)
        assert rows[1]["name"] == "Alice"
        assert rows[3]["created_at"] == datetime(2024, 1, 3, 9, 0)
        assert rows[3]["active"] is True
        # allowDeletes defaults to off
        assert 4 in rows

        plans, again = orchestrator(source, target, metrics).sync_tables([rule])
        assert plans[0].change_set.is_empty
        assert again.total_inserts == again.total_updates == again.total_deletes == 0

    def test_deletes_when_allowed(self, databases, metrics):
        source, target = databases
        rule = SyncRule(source_table="users", allow_deletes=True)

        orchestrator(source, target, metrics, dry_run=False).sync_tables([rule])

        assert sorted(users(target)) == [1, 2, 3]

    def test_ignored_columns_are_left_alone(self, databases, metrics):
        source, target = databases
        rule = SyncRule(source_table="users", ignore_columns=frozenset({"name"}))

        orchestrator(source, target, metrics, dry_run=False).sync_tables([rule])

        assert users(target)[1]["name"] == "Alicia"

    def test_replace_mode(self, databases, metrics):
        source, target = databases
        rule = SyncRule(source_table="users", replace_mode=True)

        _, summary = orchestrator(source, target, metrics, dry_run=False).sync_tables([rule])

        assert summary.results[0].deletes == 3
        assert summary.results[0].inserts == 3
        assert sorted(users(target)) == [1, 2, 3]

    def test_declined_table_is_skipped(self, databases, metrics):
        source, target = databases

        _, summary = orchestrator(
            source, target, metrics, dry_run=False, confirm=lambda plan: False
        ).sync_tables([SyncRule(source_table="users")])

        assert summary.results[0].skipped == "declined"
        assert users(target)[1]["name"] == "Alicia"

    def test_export_where_limits_source_rows(self, databases, metrics):
        source, target = databases
        rule = SyncRule(source_table="users", export_where="active = 1")

        plans, _ = orchestrator(source, target, metrics).sync_tables([rule])

        assert [row["id"] for row in plans[0].source_rows] == [1, 3]


class TestExportImport:
    """Snapshot files between the two steps"""

    def test_round_trip(self, databases, metrics, tmp_path):
        source, target = databases
        rule = SyncRule(source_table="users", allow_deletes=True)
        export_path = tmp_path / "sync-data"

        [path] = SyncOrchestrator(source=source, metrics=metrics).export_tables([rule], export_path)

        snapshot = read_snapshot(path)
        assert snapshot.metadata.row_count == 3
        assert snapshot.metadata.primary_keys == ("id",)
        assert snapshot.data[0]["created_at"] == "2024-01-01 09:00:00.125"

        importer = SyncOrchestrator(target=target, metrics=metrics, dry_run=False)
        _, summary = importer.import_tables([rule], export_path)

        assert summary.exit_code == 0
        rows = users(target)
        assert sorted(rows) == [1, 2, 3]
        assert rows[1]["created_at"] == datetime(2024, 1, 1, 9, 0, 0, 125000)
        assert rows[2]["active"] is False

        plans, _ = SyncOrchestrator(target=target, metrics=metrics).import_tables([rule], export_path)
        assert plans[0].change_set.is_empty

    def test_export_aborts_on_duplicate_match_keys(self, source_db, make_users, metrics, tmp_path):
        make_users(source_db, [
            {"id": 1, "email": "a@x.com", "name": "A"},
            {"id": 2, "email": "a@x.com", "name": "B"},
        ])
        rule = SyncRule(source_table="users", match_on=("email",))

        exporter = SyncOrchestrator(source=source_db, metrics=metrics)
        with pytest.raises(DuplicateKeyError, match="duplicate group"):
            exporter.export_tables([rule], tmp_path)

        skipping = SyncOrchestrator(
            source=source_db, metrics=metrics, duplicate_policy=DuplicateResolutionPolicy.SKIP
        )
        assert skipping.export_tables([rule], tmp_path) == []


class TestDuplicatePolicies:
    """Duplicate match keys in the target"""

    @pytest.fixture
    def duplicated(self, source_db, sqlite_db, make_users):
        make_users(source_db, [{"id": 10, "email": "a@x.com", "name": "New A"}])
        make_users(sqlite_db, [
            {"id": 1, "email": "a@x.com", "name": "Old A"},
            {"id": 2, "email": "a@x.com", "name": "Older A"},
            {"id": 3, "email": "z@x.com", "name": "Z"},
        ])
        rule = SyncRule(source_table="users", match_on=("email",), ignore_columns=frozenset({"id"}))
        return source_db, sqlite_db, rule

    def test_abort(self, duplicated, metrics):
        source, target, rule = duplicated

        plans, summary = orchestrator(source, target, metrics, dry_run=False).sync_tables([rule])

        assert plans[0].failed
        assert "duplicate" in summary.results[0].error
        assert sorted(users(target)) == [1, 2, 3]

    def test_skip(self, duplicated, metrics):
        source, target, rule = duplicated

        _, summary = orchestrator(
            source, target, metrics, dry_run=False,
            duplicate_policy=DuplicateResolutionPolicy.SKIP,
        ).sync_tables([rule])

        assert summary.results[0].status == "skipped"
        assert sorted(users(target)) == [1, 2, 3]

    def test_auto_clean_keeps_lowest_primary_key(self, duplicated, metrics):
        source, target, rule = duplicated

        plans, summary = orchestrator(
            source, target, metrics, dry_run=False,
            duplicate_policy=DuplicateResolutionPolicy.AUTO_CLEAN,
        ).sync_tables([rule])

        assert plans[0].cleanup.would_delete == [{"id": 2}]
        assert summary.results[0].updates == 1
        assert summary.results[0].deletes == 1
        rows = users(target)
        assert sorted(rows) == [1, 3]
        assert rows[1]["name"] == "New A"

    def test_auto_clean_target_read_failure_stops_run(self, duplicated, metrics):
        source, target, rule = duplicated
        orch = orchestrator(
            source, target, metrics, dry_run=False,
            duplicate_policy=DuplicateResolutionPolicy.AUTO_CLEAN,
        )
        plans = orch.plan_sync([rule])
        real_query = target.query
        full_table = target.dialect.select_rows("users")

        def failing_query(sql, params=None):
            if sql == full_table:
                raise sqlite3.OperationalError("database is locked")
            return real_query(sql, params)

        with patch.object(target, "query", side_effect=failing_query):
            summary = orch.execute(plans)

        assert summary.exit_code == 1
        assert "[users][read_target]" in summary.results[0].error
        assert "database is locked" in summary.results[0].error

    def test_analyze(self, duplicated, metrics):
        _, target, rule = duplicated

        [report] = SyncOrchestrator(target=target, metrics=metrics).analyze([rule])

        assert report.group_count == 1
        assert report.example_groups == [{"values": {"email": "a@x.com"}, "count": 2}]


class TestFailures:
    """Validation failures block the run; execution failures stop it"""

    @pytest.fixture
    def three_tables(self, source_db, sqlite_db, make_users):
        make_users(source_db, SOURCE_USERS)
        make_users(sqlite_db, [])
        source_db.execute("CREATE TABLE tags (id INTEGER PRIMARY KEY, label TEXT)")
        source_db.execute("INSERT INTO tags VALUES (1, 'red')")
        sqlite_db.execute("CREATE TABLE tags (id INTEGER PRIMARY KEY, label TEXT)")
        source_db.execute("CREATE TABLE roles (id INTEGER PRIMARY KEY, label TEXT)")
        source_db.execute("INSERT INTO roles VALUES (1, NULL)")
        sqlite_db.execute("CREATE TABLE roles (id INTEGER PRIMARY KEY, label TEXT NOT NULL)")
        return source_db, sqlite_db

    def test_validation_failure_writes_nothing(self, three_tables, metrics):
        source, target = three_tables
        rules = [SyncRule(source_table="tags"), SyncRule(source_table="missing")]

        _, summary = orchestrator(source, target, metrics, dry_run=False).sync_tables(rules)

        assert summary.results[0].skipped == "other tables failed validation"
        assert summary.results[1].status == "failed"
        assert summary.exit_code == 1
        assert target.scalar("SELECT COUNT(*) FROM tags") == 0

    def test_execution_failure_stops_the_run(self, three_tables, metrics):
        source, target = three_tables
        rules = [
            SyncRule(source_table="tags"),
            SyncRule(source_table="roles"),
            SyncRule(source_table="users"),
        ]

        _, summary = orchestrator(source, target, metrics, dry_run=False).sync_tables(rules)

        tags, roles, users_result = summary.results
        assert tags.status == "applied"
        assert roles.status == "failed"
        assert roles.error.startswith("[roles][insert]")
        assert users_result.skipped == "not run after earlier failure"
        assert target.scalar("SELECT COUNT(*) FROM tags") == 1
        assert target.scalar("SELECT COUNT(*) FROM roles") == 0
        assert target.scalar("SELECT COUNT(*) FROM users") == 0

    def test_validate(self, three_tables, metrics):
        source, target = three_tables
        source.execute("ALTER TABLE tags ADD COLUMN color TEXT")
        rules = [SyncRule(source_table="tags"), SyncRule(source_table="missing")]

        issues = SyncOrchestrator(target=target, source=source, metrics=metrics).validate(rules)

        messages = [str(issue) for issue in issues]
        assert "[ERROR] tags: Source column(s) missing in target: color" in messages
        assert any(message.startswith("[ERROR] missing:") for message in messages)


@pytest.fixture
def config_file(tmp_path, databases):
    path = tmp_path / "sync.json"
    path.write_text(json.dumps({
        "databases": {
            "source": {"type": "sqlite", "path": str(tmp_path / "source.db")},
            "target": {"type": "sqlite", "path": str(tmp_path / "target.db")},
        },
        "syncTables": [{"sourceTable": "users", "allowDeletes": True}],
        "exportPath": str(tmp_path / "sync-data"),
    }))
    return str(path)


@patch("syncray.cli.shutdown_logging")
@patch("syncray.cli.configure_from_env")
class TestCli:
    """The syncray command against SQLite databases"""

    def test_sync_preview(self, mock_setup, mock_shutdown, config_file, databases, capsys):
        _, target = databases

        assert main(["sync", "--config", config_file, "--show-sql"]) == 0

        out = capsys.readouterr().out
        assert "SYNC PREVIEW" in out
        assert 'INSERT INTO "users"' in out
        assert users(target)[1]["name"] == "Alicia"

    def test_sync_execute_with_reports(self, mock_setup, mock_shutdown, config_file, databases, tmp_path):
        _, target = databases
        report_dir = tmp_path / "reports"

        exit_code = main([
            "sync", "--config", config_file, "--execute", "--yes", "--report-dir", str(report_dir),
        ])

        assert exit_code == 0
        assert sorted(users(target)) == [1, 2, 3]
        [report_file] = report_dir.glob("sync-report-*.json")
        assert json.loads(report_file.read_text())["status"] == "SUCCESS"
        with open(report_dir / "users-changes.csv", newline="") as f:
            operations = [row[0] for row in csv.reader(f)][1:]
        assert operations == ["INSERT", "UPDATE", "DELETE"]

    def test_export_then_import(self, mock_setup, mock_shutdown, config_file, databases, tmp_path):
        _, target = databases

        assert main(["export", "--config", config_file]) == 0
        assert (tmp_path / "sync-data" / "users.json").exists()

        assert main(["import", "--config", config_file, "--execute", "--yes"]) == 0
        assert sorted(users(target)) == [1, 2, 3]

    def test_import_declined_at_prompt(self, mock_setup, mock_shutdown, config_file, databases):
        _, target = databases
        main(["export", "--config", config_file])

        with patch("builtins.input", return_value="n"):
            assert main(["import", "--config", config_file, "--execute"]) == 0

        assert 4 in users(target)

    def test_validate_and_analyze(self, mock_setup, mock_shutdown, config_file, capsys):
        assert main(["validate", "--config", config_file, "--from", "source"]) == 0
        assert main(["analyze", "--config", config_file]) == 0

        out = capsys.readouterr().out
        assert "1 table(s) checked: 0 error(s)" in out
        assert "users: (id) is unique" in out

    def test_missing_snapshot(self, mock_setup, mock_shutdown, config_file):
        assert main(["import", "--config", config_file, "--export-path", "/nonexistent"]) == 1
