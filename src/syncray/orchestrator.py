"""
Sync workflows: export, import, sync, analyze and validate.

Every table is planned before anything is written. A plan carries the
resolved rule, the target schema, the coerced source rows, the duplicate
findings and the computed change set. Execution refuses to start while any
plan has failed, then applies tables one by one in configuration order and
stops at the first failure. Tables committed before the failure stay
committed.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from opentelemetry import trace

from syncray.database.connection import DatabaseConnection
from syncray.database.inspector import SchemaInspector
from syncray.exceptions import (
    ConfigurationError,
    DuplicateKeyError,
    ExecutionError,
    SchemaError,
    SyncError,
)
from syncray.reconciliation.applier import SyncSummary, TableSyncResult, TransactionalApplier
from syncray.reconciliation.differ import ChangeSet, Reconciler
from syncray.reconciliation.duplicates import (
    DuplicateAnalyzer,
    DuplicateResolution,
    UniquenessReport,
    find_duplicate_rows,
)
from syncray.reconciliation.validation import resolve_sync_rule
from syncray.snapshot.files import read_snapshot, snapshot_path, write_snapshot
from syncray.snapshot.models import Column, SyncRule, TableSnapshot
from syncray.snapshot.values import coerce_row
from syncray.utils.metrics import SyncMetrics, default_metrics
from syncray.utils.tracing import trace_operation

logger = logging.getLogger(__name__)


class DuplicateResolutionPolicy(str, Enum):
    """What to do when match columns are not unique."""

    ABORT = "abort"
    SKIP = "skip"
    AUTO_CLEAN = "clean"


@dataclass
class TablePlan:
    """Everything known about one table before changes are applied."""

    rule: SyncRule
    columns: list[Column] = field(default_factory=list)
    primary_key: list[str] = field(default_factory=list)
    source_rows: list[dict[str, Any]] = field(default_factory=list)
    target_row_count: int = 0
    change_set: ChangeSet | None = None
    source_duplicates: UniquenessReport | None = None
    target_duplicates: UniquenessReport | None = None
    cleanup: DuplicateResolution | None = None
    skipped: str | None = None
    error: str | None = None

    @property
    def table(self) -> str:
        return self.rule.table

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def has_changes(self) -> bool:
        if self.change_set is None:
            return False
        return self.change_set.replace_mode or self.change_set.total > 0 or self.needs_cleanup

    @property
    def needs_cleanup(self) -> bool:
        return self.cleanup is not None and bool(self.cleanup.would_delete)

    def preview_result(self) -> TableSyncResult:
        if self.error:
            return TableSyncResult(table=self.table, error=self.error, dry_run=True)
        if self.skipped:
            return TableSyncResult(table=self.table, skipped=self.skipped, dry_run=True)
        if self.change_set is None:
            return TableSyncResult(table=self.table, dry_run=True)
        if self.change_set.replace_mode:
            return TableSyncResult(
                table=self.table,
                inserts=len(self.source_rows),
                deletes=self.target_row_count,
                dry_run=True,
            )
        return TableSyncResult(table=self.table, dry_run=True, **self.change_set.counts())


@dataclass(frozen=True)
class ValidationIssue:
    table: str
    severity: str
    message: str

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.table}: {self.message}"


class SyncOrchestrator:
    """
    Runs sync workflows between a source and a target database.

    Args:
        target: Open connection to the database being written
        source: Open connection to the source database (export and sync)
        duplicate_policy: Reaction to non-unique match columns
        dry_run: Plan and report only; never write to the target
        confirm: Called with each plan before it is applied; returning
            False skips the table
        metrics: Metrics sink (defaults to the shared registry)
    """

    def __init__(
        self,
        target: DatabaseConnection | None = None,
        source: DatabaseConnection | None = None,
        duplicate_policy: DuplicateResolutionPolicy = DuplicateResolutionPolicy.ABORT,
        dry_run: bool = True,
        confirm: Callable[[TablePlan], bool] | None = None,
        metrics: SyncMetrics | None = None,
    ):
        self.target = target
        self.source = source
        self.duplicate_policy = DuplicateResolutionPolicy(duplicate_policy)
        self.dry_run = dry_run
        self.confirm = confirm
        self.metrics = metrics or default_metrics()

        self._target_inspector = SchemaInspector(target) if target else None
        self._source_inspector = SchemaInspector(source) if source else None

    def _require_target(self) -> DatabaseConnection:
        if self.target is None:
            raise ConfigurationError("A target database is required for this operation")
        return self.target

    def _require_source(self) -> DatabaseConnection:
        if self.source is None:
            raise ConfigurationError("A source database is required for this operation")
        return self.source

    # Export

    def export_table(self, rule: SyncRule, export_path: str | Path) -> Path | None:
        """
        Export one source table to a snapshot file.

        Returns:
            Path of the snapshot, or None if the table was skipped

        Raises:
            SchemaError: If the source table does not exist
            ConfigurationError: If no match columns can be resolved
            DuplicateKeyError: If match columns are not unique (policy ABORT)
        """
        source = self._require_source()
        inspector = self._source_inspector
        table = rule.source_table

        with trace_operation("export_table", kind=trace.SpanKind.INTERNAL, table=table):
            columns = inspector.columns(table)
            primary_key = inspector.primary_key(table)
            match_on = rule.match_on or tuple(primary_key)

            if not rule.replace_mode:
                if not match_on:
                    raise ConfigurationError(
                        f"{table} has no primary key; matchOn must be configured", table=table
                    )
                names = {col.name for col in columns}
                missing = [col for col in match_on if col not in names]
                if missing:
                    raise SchemaError(
                        f"matchOn column(s) not found in {table}: {', '.join(missing)}",
                        table=table,
                    )

                report = DuplicateAnalyzer(source, self.metrics).check_uniqueness(
                    table, match_on, rule.export_where
                )
                if not report.is_unique:
                    if self.duplicate_policy == DuplicateResolutionPolicy.SKIP:
                        logger.warning(f"Skipping export of {table}: duplicate match keys")
                        return None
                    raise DuplicateKeyError(report.describe(), table=table, report=report)

            order_by = primary_key or list(match_on) or None
            rows = source.query(
                source.dialect.select_rows(table, where=rule.export_where, order_by=order_by)
            )
            snapshot = TableSnapshot.from_rows(
                rule.with_match_on(match_on), columns, rows, primary_key
            )
            return write_snapshot(snapshot, export_path)

    def export_tables(self, rules: list[SyncRule], export_path: str | Path) -> list[Path]:
        """Export every rule's source table; stops at the first failing table."""
        paths = []
        for rule in rules:
            try:
                path = self.export_table(rule, export_path)
            except SyncError as e:
                logger.error(f"Export of {rule.source_table} failed: {e}")
                self.metrics.record_table_run(rule.source_table, "failed")
                raise
            if path is not None:
                paths.append(path)
                self.metrics.record_table_run(rule.source_table, "exported")
        logger.info(f"Exported {len(paths)} of {len(rules)} table(s) to {export_path}")
        return paths

    @staticmethod
    def load_snapshots(rules: list[SyncRule], export_path: str | Path) -> dict[str, TableSnapshot]:
        """
        Read the snapshot of every rule from ``export_path``.

        Raises:
            SnapshotError: If a snapshot is missing or invalid
        """
        return {
            rule.source_table: read_snapshot(snapshot_path(export_path, rule.source_table))
            for rule in rules
        }

    # Planning

    def _apply_duplicate_policy(self, plan: TablePlan, report: UniquenessReport, side: str) -> bool:
        """Record a duplicate finding on the plan; returns False if planning stops."""
        if report.is_unique:
            return True

        message = f"{side} {report.describe()}"
        if self.duplicate_policy == DuplicateResolutionPolicy.SKIP:
            plan.skipped = f"duplicate match keys in {side}"
            logger.warning(f"Skipping {plan.table}: {message}")
            return False
        if self.duplicate_policy == DuplicateResolutionPolicy.AUTO_CLEAN and side == "target":
            return True

        plan.error = str(DuplicateKeyError(message, table=plan.table, report=report))
        logger.error(f"{plan.table}: {message}")
        return False

    def _fetch_target_rows(self, plan: TablePlan) -> list[dict[str, Any]]:
        target = self._require_target()
        try:
            rows = target.query(target.dialect.select_rows(plan.table))
        except Exception as e:
            raise ExecutionError(
                f"Reading target rows failed: {e}", table=plan.table, operation="read_target"
            ) from e
        plan.target_row_count = len(rows)
        return rows

    def plan_table(
        self,
        rule: SyncRule,
        source_rows: list[dict[str, Any]],
        source_columns: list[str] | None = None,
    ) -> TablePlan:
        """
        Build the plan for one table.

        Args:
            rule: Sync rule as configured
            source_rows: Source rows (serialized snapshot rows or native rows)
            source_columns: Column names of the source, checked against the target

        Returns:
            TablePlan; failures are recorded on it rather than raised
        """
        plan = TablePlan(rule=rule)
        inspector = self._target_inspector
        if inspector is None:
            raise ConfigurationError("A target database is required for this operation")

        with trace_operation("plan_table", kind=trace.SpanKind.INTERNAL, table=rule.table) as span:
            try:
                resolved = resolve_sync_rule(rule, inspector)
                plan.rule = resolved
                plan.columns = inspector.columns(resolved.table)
                plan.primary_key = inspector.primary_key(resolved.table)

                target_names = {col.name for col in plan.columns}
                names = source_columns or (list(source_rows[0]) if source_rows else [])
                missing = [col for col in names if col not in target_names]
                if missing:
                    raise SchemaError(
                        f"Source column(s) missing in target {resolved.table}: {', '.join(missing)}",
                        table=resolved.table,
                    )

                types = {col.name: col.data_type for col in plan.columns}
                plan.source_rows = [coerce_row(row, types) for row in source_rows]

                target_rows = self._fetch_target_rows(plan)

                if not resolved.replace_mode:
                    plan.source_duplicates = find_duplicate_rows(
                        plan.source_rows, resolved.match_on, rule.source_table
                    )
                    if not self._apply_duplicate_policy(plan, plan.source_duplicates, "source"):
                        return plan

                    analyzer = DuplicateAnalyzer(self.target, self.metrics)
                    plan.target_duplicates = analyzer.check_uniqueness(
                        resolved.table, resolved.match_on
                    )
                    if not self._apply_duplicate_policy(plan, plan.target_duplicates, "target"):
                        return plan

                    if not plan.target_duplicates.is_unique:
                        plan.cleanup = analyzer.resolve_duplicates(
                            resolved.table, resolved.match_on, plan.primary_key, dry_run=True
                        )
                        doomed = {
                            tuple(key[col] for col in plan.primary_key)
                            for key in plan.cleanup.would_delete
                        }
                        target_rows = [
                            row for row in target_rows
                            if tuple(row.get(col) for col in plan.primary_key) not in doomed
                        ]

                plan.change_set = Reconciler(resolved, plan.columns, self.metrics).reconcile(
                    plan.source_rows, target_rows
                )
            except SyncError as e:
                plan.error = str(e)
                span.set_attribute("error", True)
                logger.error(f"Planning {rule.table} failed: {e}")

            return plan

    def plan_import(
        self,
        rules: list[SyncRule],
        snapshots: dict[str, TableSnapshot],
    ) -> list[TablePlan]:
        """Plan every table from loaded snapshots."""
        plans = []
        for rule in rules:
            snapshot = snapshots.get(rule.source_table)
            if snapshot is None:
                plans.append(TablePlan(rule=rule, error=f"No snapshot loaded for {rule.source_table}"))
                continue
            plans.append(
                self.plan_table(rule, snapshot.data, [col.name for col in snapshot.columns])
            )
        return plans

    def plan_sync(self, rules: list[SyncRule]) -> list[TablePlan]:
        """Plan every table reading source rows live from the source database."""
        source = self._require_source()
        plans = []
        for rule in rules:
            try:
                source_columns = self._source_inspector.column_names(rule.source_table)
            except SyncError as e:
                logger.error(f"Planning {rule.table} failed: {e}")
                plans.append(TablePlan(rule=rule, error=str(e)))
                continue
            rows = source.query(
                source.dialect.select_rows(rule.source_table, where=rule.export_where)
            )
            plans.append(self.plan_table(rule, rows, source_columns))
        return plans

    # Execution

    def _apply_plan(self, plan: TablePlan, applier: TransactionalApplier) -> TableSyncResult:
        change_set = plan.change_set
        deleted_duplicates = 0

        if plan.needs_cleanup:
            resolution = DuplicateAnalyzer(self.target, self.metrics).resolve_duplicates(
                plan.table, plan.rule.match_on, plan.primary_key, dry_run=False
            )
            deleted_duplicates = resolution.deleted_count
            target_rows = self._fetch_target_rows(plan)
            change_set = Reconciler(plan.rule, plan.columns, self.metrics).reconcile(
                plan.source_rows, target_rows
            )

        if not change_set.replace_mode and change_set.total == 0:
            logger.info(f"{plan.table}: already in sync")
            self.metrics.record_table_run(plan.table, "unchanged")
            return TableSyncResult(table=plan.table, deletes=deleted_duplicates)

        result = applier.apply(change_set, plan.rule, plan.source_rows)
        if deleted_duplicates:
            return TableSyncResult(
                table=result.table,
                inserts=result.inserts,
                updates=result.updates,
                deletes=result.deletes + deleted_duplicates,
            )
        return result

    def execute(self, plans: list[TablePlan]) -> SyncSummary:
        """
        Apply planned tables in order.

        Nothing is written when any plan failed or in dry-run mode. Stops
        at the first table that fails to apply.
        """
        summary = SyncSummary(dry_run=self.dry_run)

        failed = [plan for plan in plans if plan.failed]
        if failed:
            logger.error(
                f"Not applying changes: {len(failed)} table(s) failed validation: "
                f"{', '.join(plan.table for plan in failed)}"
            )
            for plan in plans:
                if plan.failed:
                    summary.add(TableSyncResult(table=plan.table, error=plan.error, dry_run=True))
                else:
                    summary.add(TableSyncResult(
                        table=plan.table, skipped="other tables failed validation", dry_run=True
                    ))
            return summary

        if self.dry_run:
            for plan in plans:
                summary.add(plan.preview_result())
                self.metrics.record_table_run(plan.table, "preview")
            logger.info("Dry run: no changes applied")
            return summary

        applier = TransactionalApplier(self._require_target(), self._target_inspector, self.metrics)
        for index, plan in enumerate(plans):
            if plan.skipped:
                summary.add(TableSyncResult(table=plan.table, skipped=plan.skipped))
                self.metrics.record_table_run(plan.table, "skipped")
                continue

            if plan.has_changes and self.confirm is not None and not self.confirm(plan):
                logger.info(f"{plan.table}: skipped by user")
                summary.add(TableSyncResult(table=plan.table, skipped="declined"))
                self.metrics.record_table_run(plan.table, "skipped")
                continue

            with trace_operation("sync_table", kind=trace.SpanKind.INTERNAL, table=plan.table):
                try:
                    summary.add(self._apply_plan(plan, applier))
                except ExecutionError as e:
                    logger.error(f"Stopping sync: {e}")
                    summary.add(TableSyncResult(table=plan.table, error=str(e)))
                    for remaining in plans[index + 1:]:
                        summary.add(TableSyncResult(
                            table=remaining.table, skipped="not run after earlier failure"
                        ))
                    break

        self.metrics.mark_run_completed()
        return summary

    def import_tables(
        self, rules: list[SyncRule], export_path: str | Path
    ) -> tuple[list[TablePlan], SyncSummary]:
        plans = self.plan_import(rules, self.load_snapshots(rules, export_path))
        return plans, self.execute(plans)

    def sync_tables(self, rules: list[SyncRule]) -> tuple[list[TablePlan], SyncSummary]:
        plans = self.plan_sync(rules)
        return plans, self.execute(plans)

    # Read-only modes

    def analyze(self, rules: list[SyncRule]) -> list[UniquenessReport]:
        """Uniqueness report of the match columns of every table; changes nothing."""
        inspector = self._target_inspector
        analyzer = DuplicateAnalyzer(self._require_target(), self.metrics)
        reports = []
        for rule in rules:
            with trace_operation("analyze_table", kind=trace.SpanKind.INTERNAL, table=rule.table):
                resolved = resolve_sync_rule(rule, inspector)
                if not resolved.match_on:
                    logger.info(f"{rule.table}: replace mode without key, nothing to analyze")
                    continue
                reports.append(analyzer.check_uniqueness(resolved.table, resolved.match_on))
        return reports

    def validate(self, rules: list[SyncRule]) -> list[ValidationIssue]:
        """
        Check every rule against the target (and the source, if connected).

        Returns:
            Issues found; severity "error" blocks a sync, "warning" does not
        """
        issues: list[ValidationIssue] = []
        inspector = self._target_inspector
        if inspector is None:
            raise ConfigurationError("A target database is required for this operation")

        for rule in rules:
            table = rule.table
            try:
                resolved = resolve_sync_rule(rule, inspector)
            except SyncError as e:
                issues.append(ValidationIssue(table, "error", str(e)))
                continue

            target_names = set(inspector.column_names(table))

            if self._source_inspector is not None:
                if not self._source_inspector.table_exists(rule.source_table):
                    issues.append(ValidationIssue(
                        table, "error", f"Source table not found: {rule.source_table}"
                    ))
                else:
                    missing = [
                        col for col in self._source_inspector.column_names(rule.source_table)
                        if col not in target_names
                    ]
                    if missing:
                        issues.append(ValidationIssue(
                            table, "error", f"Source column(s) missing in target: {', '.join(missing)}"
                        ))

            identity = inspector.identity_columns(table)
            if identity and not resolved.preserve_identity and resolved.allow_inserts:
                issues.append(ValidationIssue(
                    table,
                    "warning",
                    f"Identity column(s) {', '.join(identity)} will get new values on insert",
                ))

            if resolved.allow_deletes and resolved.export_where:
                issues.append(ValidationIssue(
                    table,
                    "warning",
                    "allowDeletes with exportWhere deletes target rows outside the export filter",
                ))

            if resolved.replace_mode and not resolved.allow_deletes:
                issues.append(ValidationIssue(
                    table, "warning", "replaceMode deletes all target rows regardless of allowDeletes"
                ))

        for issue in issues:
            log = logger.error if issue.severity == "error" else logger.warning
            log(str(issue))
        return issues
