"""
Command-line argument parser configuration.

This module sets up the argument parser for the syncray CLI tool,
defining all modes and their options.
"""

import argparse

DUPLICATE_POLICIES = ["abort", "skip", "clean"]


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        required=True,
        help="Path to the sync configuration file (JSON)",
    )
    parser.add_argument(
        "--tables",
        help="Comma-separated list of source tables to process (default: all configured)",
    )
    parser.add_argument(
        "--on-duplicates",
        choices=DUPLICATE_POLICIES,
        default="abort",
        help="What to do when matchOn columns are not unique (default: abort)",
    )


def _add_source_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--from",
        dest="source",
        default="source",
        help="Name of the source database in the configuration (default: source)",
    )


def _add_target_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--to",
        dest="target",
        default="target",
        help="Name of the target database in the configuration (default: target)",
    )


def _add_apply_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Apply the changes (default: preview only)",
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Do not ask for confirmation before applying each table",
    )
    parser.add_argument(
        "--report-dir",
        help="Directory for the JSON report and per-table CSV change listings",
    )
    parser.add_argument(
        "--show-sql",
        action="store_true",
        help="Print the pending changes as a SQL script",
    )


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="syncray",
        description="Reconcile and sync table data between databases",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Export configured tables from the source database to snapshot files
  syncray export --config sync.json --from prod

  # Preview what importing the snapshots would change
  syncray import --config sync.json --to dev

  # Apply the changes without prompting
  syncray import --config sync.json --to dev --execute --yes

  # Sync directly between two databases, removing target duplicates first
  syncray sync --config sync.json --from prod --to dev --execute --on-duplicates clean

  # Check matchOn uniqueness without changing anything
  syncray analyze --config sync.json --to dev --tables Users,Orders
        """,
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: $LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        default=None,
        help="Emit structured JSON log lines (default: $LOG_JSON)",
    )
    parser.add_argument(
        "--log-file",
        help="Also write logs to this file, rotated (default: $LOG_FILE)",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        help="Print OpenTelemetry spans to the console (OTLP_ENDPOINT exports them instead)",
    )
    parser.add_argument(
        "--metrics-file",
        help="Write Prometheus metrics in textfile-collector format on exit",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available modes")

    # ========== Export ==========
    export_parser = subparsers.add_parser("export", help="Export source tables to snapshot files")
    _add_common_arguments(export_parser)
    _add_source_argument(export_parser)
    export_parser.add_argument(
        "--export-path",
        help="Snapshot directory (default: exportPath from the configuration)",
    )

    # ========== Import ==========
    import_parser = subparsers.add_parser("import", help="Apply snapshot files to the target database")
    _add_common_arguments(import_parser)
    _add_target_argument(import_parser)
    import_parser.add_argument(
        "--export-path",
        help="Snapshot directory (default: exportPath from the configuration)",
    )
    _add_apply_arguments(import_parser)

    # ========== Sync ==========
    sync_parser = subparsers.add_parser("sync", help="Sync tables directly from source to target")
    _add_common_arguments(sync_parser)
    _add_source_argument(sync_parser)
    _add_target_argument(sync_parser)
    _add_apply_arguments(sync_parser)

    # ========== Analyze ==========
    analyze_parser = subparsers.add_parser("analyze", help="Report duplicate match keys")
    _add_common_arguments(analyze_parser)
    _add_target_argument(analyze_parser)

    # ========== Validate ==========
    validate_parser = subparsers.add_parser("validate", help="Check sync rules against the schemas")
    _add_common_arguments(validate_parser)
    _add_target_argument(validate_parser)
    validate_parser.add_argument(
        "--from",
        dest="source",
        help="Also check source tables in this database",
    )

    return parser
