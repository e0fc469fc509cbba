"""
Unit tests for CLI module

Tests for argument parsing, confirmation prompts and command dispatch.
Database access is mocked; end-to-end runs live in the integration tests.
"""

import argparse
import json
from unittest.mock import MagicMock, patch

import pytest

from syncray.cli import create_parser, main, prompt_confirm, run_command
from syncray.cli.commands import cmd_analyze, cmd_validate
from syncray.exceptions import ConfigurationError
from syncray.orchestrator import TablePlan, ValidationIssue
from syncray.reconciliation.differ import ChangeSet
from syncray.reconciliation.duplicates import UniquenessReport
from syncray.snapshot.models import SyncRule


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "sync.json"
    path.write_text(json.dumps({
        "databases": {
            "target": {"type": "sqlite", "path": str(tmp_path / "t.db")},
        },
        "syncTables": [{"sourceTable": "users"}, {"sourceTable": "roles"}],
    }))
    return str(path)


class TestCreateParser:
    """Tests for create_parser"""

    def test_import_defaults(self):
        args = create_parser().parse_args(["import", "--config", "sync.json"])

        assert args.command == "import"
        assert args.target == "target"
        assert args.execute is False
        assert args.yes is False
        assert args.on_duplicates == "abort"
        assert args.log_level is None

    def test_sync_options(self):
        args = create_parser().parse_args([
            "--log-json", "sync", "--config", "c.json", "--from", "prod", "--to", "dev",
            "--tables", "Users,Orders", "--execute", "--yes", "--on-duplicates", "clean",
        ])

        assert args.log_json is True
        assert (args.source, args.target) == ("prod", "dev")
        assert args.tables == "Users,Orders"
        assert args.execute and args.yes
        assert args.on_duplicates == "clean"

    def test_config_is_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["export"])

    def test_invalid_duplicate_policy(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["sync", "--config", "c.json", "--on-duplicates", "merge"])

    def test_validate_source_is_optional(self):
        args = create_parser().parse_args(["validate", "--config", "c.json"])
        assert args.source is None


class TestPromptConfirm:
    """Tests for prompt_confirm"""

    def make_plan(self, **kwargs) -> TablePlan:
        return TablePlan(rule=SyncRule(source_table="users"), **kwargs)

    @pytest.mark.parametrize("answer,expected", [("y", True), ("YES", True), ("n", False), ("", False)])
    def test_answers(self, answer, expected):
        plan = self.make_plan(change_set=ChangeSet(inserts=[{"id": 1}]))

        with patch("builtins.input", return_value=answer) as mock_input:
            assert prompt_confirm(plan) is expected

        assert "1 inserts, 0 updates, 0 deletes" in mock_input.call_args[0][0]

    def test_replace_mode_prompt(self):
        plan = self.make_plan(
            change_set=ChangeSet(replace_mode=True), source_rows=[{"id": 1}], target_row_count=7
        )

        with patch("builtins.input", return_value="n") as mock_input:
            prompt_confirm(plan)

        assert "replace all 7 rows with 1 source rows" in mock_input.call_args[0][0]


class TestCommands:
    """Tests for command functions"""

    def args(self, config_file, **overrides) -> argparse.Namespace:
        values = {
            "command": "analyze",
            "config": config_file,
            "tables": None,
            "on_duplicates": "abort",
            "target": "target",
            "source": None,
        }
        values.update(overrides)
        return argparse.Namespace(**values)

    @patch("syncray.cli.commands.SyncOrchestrator")
    def test_analyze_prints_reports(self, mock_orchestrator, config_file, capsys):
        mock_orchestrator.return_value.analyze.return_value = [
            UniquenessReport("users", ("email",), group_count=1, duplicate_row_count=2,
                             example_groups=[{"values": {"email": "a@x.com"}, "count": 3}]),
            UniquenessReport("roles", ("id",)),
        ]

        assert cmd_analyze(self.args(config_file)) == 0

        out = capsys.readouterr().out
        assert "users: 1 duplicate group(s) on (email), 2 surplus row(s)" in out
        assert "email='a@x.com' x3" in out
        assert "1 of 2 table(s) have duplicate match keys" in out

    @patch("syncray.cli.commands.SyncOrchestrator")
    def test_analyze_table_filter(self, mock_orchestrator, config_file):
        mock_orchestrator.return_value.analyze.return_value = []

        cmd_analyze(self.args(config_file, tables="roles"))

        rules = mock_orchestrator.return_value.analyze.call_args[0][0]
        assert [rule.source_table for rule in rules] == ["roles"]

    @patch("syncray.cli.commands.SyncOrchestrator")
    def test_validate_exit_codes(self, mock_orchestrator, config_file, capsys):
        validate = mock_orchestrator.return_value.validate
        validate.return_value = [ValidationIssue("users", "warning", "replaceMode deletes all rows")]
        assert cmd_validate(self.args(config_file, command="validate")) == 0

        validate.return_value = [ValidationIssue("users", "error", "Table not found: users")]
        assert cmd_validate(self.args(config_file, command="validate")) == 1
        assert "[ERROR] users: Table not found: users" in capsys.readouterr().out

    def test_run_command_turns_sync_errors_into_exit_code(self, config_file):
        args = self.args(config_file, tables="orders")

        assert run_command(args) == 1

    def test_unknown_database(self, config_file):
        args = self.args(config_file, target="staging")

        assert run_command(args) == 1


class TestMain:
    """Tests for main entry point"""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage: syncray" in capsys.readouterr().out

    @patch("syncray.cli.shutdown_logging")
    @patch("syncray.cli.configure_from_env")
    @patch("syncray.cli.run_command", return_value=0)
    def test_logging_options(self, mock_run, mock_setup, mock_shutdown, config_file):
        exit_code = main(["--log-level", "DEBUG", "--log-json", "analyze", "--config", config_file])

        assert exit_code == 0
        mock_setup.assert_called_once_with(level="DEBUG", log_file=None, json_format=True)
        mock_shutdown.assert_called_once()

    @patch("syncray.cli.shutdown_logging")
    @patch("syncray.cli.configure_from_env")
    @patch("syncray.cli.run_command", side_effect=ConfigurationError("bad"))
    def test_cleanup_runs_on_error(self, mock_run, mock_setup, mock_shutdown, config_file):
        with pytest.raises(ConfigurationError):
            main(["analyze", "--config", config_file])

        mock_shutdown.assert_called_once()

    @patch("syncray.cli.shutdown_logging")
    @patch("syncray.cli.configure_from_env")
    @patch("syncray.cli.default_metrics")
    @patch("syncray.cli.run_command", return_value=0)
    def test_metrics_file(self, mock_run, mock_metrics, mock_setup, mock_shutdown, config_file, tmp_path):
        path = str(tmp_path / "syncray.prom")

        main(["--metrics-file", path, "analyze", "--config", config_file])

        mock_metrics.return_value.write_textfile.assert_called_once_with(path)

    @patch("syncray.cli.shutdown_tracing")
    @patch("syncray.cli.initialize_tracing")
    @patch("syncray.cli.shutdown_logging")
    @patch("syncray.cli.configure_from_env")
    @patch("syncray.cli.run_command", return_value=0)
    def test_trace_flag(self, mock_run, mock_setup, mock_shutdown, mock_init, mock_trace_shutdown,
                        config_file, monkeypatch):
        monkeypatch.delenv("OTLP_ENDPOINT", raising=False)

        main(["--trace", "analyze", "--config", config_file])

        mock_init.assert_called_once_with(otlp_endpoint=None, console_export=True)
        mock_trace_shutdown.assert_called_once()
