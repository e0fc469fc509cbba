"""
CLI command implementations.

Each command returns the process exit code: 0 on success or when there was
nothing to do, 1 on a validation or execution failure.
"""

import argparse
import logging
from contextlib import ExitStack
from datetime import UTC, datetime
from pathlib import Path

from syncray.config import SyncConfig, load_config, open_connection
from syncray.exceptions import SyncError
from syncray.orchestrator import DuplicateResolutionPolicy, SyncOrchestrator, TablePlan
from syncray.reconciliation.applier import SyncSummary
from syncray.reconciliation.script import render_change_set_sql
from syncray.report import (
    export_changes_csv,
    export_report_json,
    format_report_console,
    generate_report,
)
from syncray.snapshot.models import SyncRule

logger = logging.getLogger(__name__)


def _selected_rules(config: SyncConfig, args: argparse.Namespace) -> list[SyncRule]:
    tables = args.tables.split(",") if args.tables else None
    return config.select_tables(tables)


def _policy(args: argparse.Namespace) -> DuplicateResolutionPolicy:
    return DuplicateResolutionPolicy(args.on_duplicates)


def prompt_confirm(plan: TablePlan) -> bool:
    """Ask on the terminal whether to apply the changes of one table."""
    change_set = plan.change_set
    if change_set.replace_mode:
        detail = f"replace all {plan.target_row_count} rows with {len(plan.source_rows)} source rows"
    else:
        counts = change_set.counts()
        detail = f"{counts['inserts']} inserts, {counts['updates']} updates, {counts['deletes']} deletes"
    if plan.needs_cleanup:
        detail += f", {len(plan.cleanup.would_delete)} duplicate rows removed"

    answer = input(f"Apply changes to {plan.table} ({detail})? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def _output_results(
    args: argparse.Namespace,
    plans: list[TablePlan],
    summary: SyncSummary,
    connection,
) -> int:
    if args.show_sql:
        for plan in plans:
            if plan.change_set is not None and plan.has_changes:
                print(render_change_set_sql(
                    plan.table, plan.change_set, plan.rule, connection.dialect, plan.source_rows
                ))
                print()

    report = generate_report(summary, plans)
    print(format_report_console(report))

    if args.report_dir:
        report_dir = Path(args.report_dir)
        report_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
        export_report_json(report, report_dir / f"sync-report-{stamp}.json")
        for plan in plans:
            export_changes_csv(plan, report_dir)
        logger.info(f"Reports written to {report_dir}")

    return summary.exit_code


def cmd_export(args: argparse.Namespace) -> int:
    """Export configured source tables to snapshot files."""
    config = load_config(args.config)
    rules = _selected_rules(config, args)
    export_path = args.export_path or config.export_path

    with open_connection(config.database(args.source)) as source:
        orchestrator = SyncOrchestrator(source=source, duplicate_policy=_policy(args))
        paths = orchestrator.export_tables(rules, export_path)

    for path in paths:
        print(path)
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Apply snapshot files to the target database."""
    config = load_config(args.config)
    rules = _selected_rules(config, args)
    export_path = args.export_path or config.export_path

    snapshots = SyncOrchestrator.load_snapshots(rules, export_path)

    with open_connection(config.database(args.target)) as target:
        orchestrator = SyncOrchestrator(
            target=target,
            duplicate_policy=_policy(args),
            dry_run=not args.execute,
            confirm=None if args.yes else prompt_confirm,
        )
        plans = orchestrator.plan_import(rules, snapshots)
        summary = orchestrator.execute(plans)
        return _output_results(args, plans, summary, target)


def cmd_sync(args: argparse.Namespace) -> int:
    """Sync tables directly from the source database to the target."""
    config = load_config(args.config)
    rules = _selected_rules(config, args)

    with ExitStack() as stack:
        source = stack.enter_context(open_connection(config.database(args.source)))
        target = stack.enter_context(open_connection(config.database(args.target)))
        orchestrator = SyncOrchestrator(
            target=target,
            source=source,
            duplicate_policy=_policy(args),
            dry_run=not args.execute,
            confirm=None if args.yes else prompt_confirm,
        )
        plans, summary = orchestrator.sync_tables(rules)
        return _output_results(args, plans, summary, target)


def cmd_analyze(args: argparse.Namespace) -> int:
    """Report duplicate match keys; never changes data."""
    config = load_config(args.config)
    rules = _selected_rules(config, args)

    with open_connection(config.database(args.target)) as target:
        reports = SyncOrchestrator(target=target).analyze(rules)

    for report in reports:
        print(report.describe())

    duplicated = [r for r in reports if not r.is_unique]
    print(f"\n{len(duplicated)} of {len(reports)} table(s) have duplicate match keys")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Check sync rules against the target (and optionally source) schema."""
    config = load_config(args.config)
    rules = _selected_rules(config, args)

    with ExitStack() as stack:
        target = stack.enter_context(open_connection(config.database(args.target)))
        source = None
        if args.source:
            source = stack.enter_context(open_connection(config.database(args.source)))
        issues = SyncOrchestrator(target=target, source=source).validate(rules)

    for issue in issues:
        print(issue)

    errors = [issue for issue in issues if issue.severity == "error"]
    print(f"\n{len(rules)} table(s) checked: {len(errors)} error(s), {len(issues) - len(errors)} warning(s)")
    return 1 if errors else 0


COMMANDS = {
    "export": cmd_export,
    "import": cmd_import,
    "sync": cmd_sync,
    "analyze": cmd_analyze,
    "validate": cmd_validate,
}


def run_command(args: argparse.Namespace) -> int:
    """Dispatch to a command, turning sync errors into exit code 1."""
    try:
        return COMMANDS[args.command](args)
    except SyncError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
