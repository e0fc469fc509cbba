"""
Transactional application of change sets.

Each table is written inside its own transaction: either every insert,
update and delete of the table lands, or none does. Statements are never
retried. An UPDATE or DELETE that affects no row fails the table, since the
row it was computed from is gone or was changed concurrently.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace

from syncray.database.connection import DatabaseConnection
from syncray.database.inspector import SchemaInspector
from syncray.exceptions import ExecutionError
from syncray.snapshot.models import SyncRule
from syncray.utils.metrics import SyncMetrics, default_metrics
from syncray.utils.tracing import add_span_event, trace_operation

from .differ import ChangeSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableSyncResult:
    """Outcome of syncing one table."""

    table: str
    inserts: int = 0
    updates: int = 0
    deletes: int = 0
    skipped: str | None = None
    error: str | None = None
    dry_run: bool = False

    @property
    def status(self) -> str:
        if self.error:
            return "failed"
        if self.skipped:
            return "skipped"
        if self.dry_run:
            return "preview"
        return "applied"

    @property
    def total(self) -> int:
        return self.inserts + self.updates + self.deletes

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "status": self.status,
            "inserts": self.inserts,
            "updates": self.updates,
            "deletes": self.deletes,
            "skipped": self.skipped,
            "error": self.error,
            "dry_run": self.dry_run,
        }


@dataclass
class SyncSummary:
    """Per-table results of a run plus totals."""

    results: list[TableSyncResult] = field(default_factory=list)
    dry_run: bool = False

    def add(self, result: TableSyncResult) -> None:
        self.results.append(result)

    @property
    def total_inserts(self) -> int:
        return sum(r.inserts for r in self.results)

    @property
    def total_updates(self) -> int:
        return sum(r.updates for r in self.results)

    @property
    def total_deletes(self) -> int:
        return sum(r.deletes for r in self.results)

    @property
    def failed(self) -> list[TableSyncResult]:
        return [r for r in self.results if r.error]

    @property
    def succeeded(self) -> bool:
        return not self.failed

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1


class TransactionalApplier:
    """
    Applies a ChangeSet to one target table in a single transaction.

    Args:
        connection: Open target connection
        inspector: Schema inspector for the target (created if omitted)
        metrics: Metrics sink (defaults to the shared registry)
    """

    def __init__(
        self,
        connection: DatabaseConnection,
        inspector: SchemaInspector | None = None,
        metrics: SyncMetrics | None = None,
    ):
        self.connection = connection
        self.inspector = inspector or SchemaInspector(connection)
        self.metrics = metrics or default_metrics()

    def _insert_columns(self, rule: SyncRule, row: dict[str, Any]) -> list[str]:
        table_columns = self.inspector.column_names(rule.table)
        skipped = set(self.inspector.rowversion_columns(rule.table))
        if not rule.preserve_identity:
            skipped.update(self.inspector.identity_columns(rule.table))
        return [
            col for col in table_columns
            if col in row and col not in rule.ignore_columns and col not in skipped
        ]

    def _bind(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        """Adapt values for the driver by the type of their target column."""
        types = {col.name: col.data_type for col in self.inspector.columns(table)}
        return {
            column: self.connection.adapt_value(value, types.get(column))
            for column, value in values.items()
        }

    def _execute_keyed(
        self, sql: str, params: list[Any], table: str, operation: str, key: dict[str, Any]
    ) -> None:
        if self.connection.execute(sql, params) == 0:
            raise ExecutionError(
                f"{operation.upper()} affected no rows for key {key}",
                table=table,
                operation=operation,
            )

    def apply(
        self,
        change_set: ChangeSet,
        rule: SyncRule,
        source_rows: list[dict[str, Any]] | None = None,
    ) -> TableSyncResult:
        """
        Apply a change set to ``rule.table``.

        Args:
            change_set: Changes computed by the reconciler
            rule: Sync rule the changes were computed under
            source_rows: Coerced source rows; required in replace mode

        Returns:
            TableSyncResult with the number of rows written per operation

        Raises:
            ExecutionError: If any statement fails; nothing of this table
                is committed
        """
        table = rule.table
        dialect = self.connection.dialect

        if change_set.replace_mode and source_rows is None:
            raise ValueError(f"source_rows are required to replace {table}")

        counts = {"inserts": 0, "updates": 0, "deletes": 0}
        operation = "begin"

        with trace_operation(
            "apply_changes",
            kind=trace.SpanKind.CLIENT,
            table=table,
            replace_mode=change_set.replace_mode,
        ) as span:
            start = time.monotonic()
            try:
                self.connection.begin()

                identity = self.inspector.identity_columns(table) if rule.preserve_identity else []
                if identity:
                    operation = "identity_insert"
                    add_span_event("identity_insert_on", columns=",".join(identity))
                    for sql in dialect.identity_insert(table, True):
                        self.connection.execute(sql)

                if change_set.replace_mode:
                    operation = "delete_all"
                    counts["deletes"] = max(self.connection.execute(dialect.delete_all(table)), 0)
                    add_span_event("table_cleared", rows=counts["deletes"])
                    inserts = source_rows
                else:
                    inserts = change_set.inserts

                operation = "insert"
                for row in inserts:
                    sql, params = dialect.insert_statement(
                        table, self._bind(table, row), self._insert_columns(rule, row)
                    )
                    self.connection.execute(sql, params)
                    counts["inserts"] += 1
                add_span_event("inserted", rows=counts["inserts"])

                if not change_set.replace_mode:
                    operation = "update"
                    for update in change_set.updates:
                        sql, params = dialect.update_statement(
                            table, self._bind(table, update.changes), update.key
                        )
                        self._execute_keyed(sql, params, table, operation, update.key)
                        counts["updates"] += 1
                    add_span_event("updated", rows=counts["updates"])

                    operation = "delete"
                    for row in change_set.deletes:
                        key = {col: row.get(col) for col in rule.match_on}
                        sql, params = dialect.delete_statement(table, key)
                        self._execute_keyed(sql, params, table, operation, key)
                        counts["deletes"] += 1
                    add_span_event("deleted", rows=counts["deletes"])

                if identity:
                    operation = "identity_insert"
                    for sql in dialect.identity_insert(table, False):
                        self.connection.execute(sql)
                    if counts["inserts"]:
                        for column in identity:
                            for sql, params in dialect.reseed_identity(table, column):
                                self.connection.query(sql, params)

                operation = "commit"
                self.connection.commit()

            except Exception as e:
                self.connection.rollback()
                logger.error(
                    f"Failed to apply changes to {table} during {operation}: {e}. "
                    f"Transaction rolled back",
                    extra={"table": table, "operation": operation},
                )
                self.metrics.record_table_run(table, "failed")
                if isinstance(e, ExecutionError):
                    raise
                raise ExecutionError(str(e), table=table, operation=operation) from e

            duration = time.monotonic() - start
            self.metrics.apply_duration_seconds.labels(table_name=table).observe(duration)
            for op, count in counts.items():
                if count:
                    self.metrics.record_row_applied(table, op, count)
            self.metrics.record_table_run(table, "applied")

            span.set_attribute("inserts", counts["inserts"])
            span.set_attribute("updates", counts["updates"])
            span.set_attribute("deletes", counts["deletes"])

            logger.info(
                f"{table}: applied {counts['inserts']} inserts, {counts['updates']} updates, "
                f"{counts['deletes']} deletes ({duration:.2f}s)"
            )
            return TableSyncResult(table=table, **counts)
