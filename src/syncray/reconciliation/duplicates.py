"""
Duplicate analysis for match keys.

Reconciliation indexes target rows by their match key, so a key shared by
several rows silently collapses them. The analyzer finds such groups before
any change is computed and can remove the surplus rows, keeping the row
with the smallest primary key in each group.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace

from syncray.database.connection import DatabaseConnection
from syncray.exceptions import ExecutionError, NoPrimaryKeyError
from syncray.utils.metrics import SyncMetrics, default_metrics
from syncray.utils.tracing import trace_operation

from .comparison import composite_key

logger = logging.getLogger(__name__)

EXAMPLE_GROUP_LIMIT = 5


@dataclass
class UniquenessReport:
    """Outcome of a uniqueness check on a set of match columns."""

    table: str
    match_on: tuple[str, ...]
    group_count: int = 0
    duplicate_row_count: int = 0
    example_groups: list[dict[str, Any]] = field(default_factory=list)

    @property
    def is_unique(self) -> bool:
        return self.group_count == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "match_on": list(self.match_on),
            "group_count": self.group_count,
            "duplicate_row_count": self.duplicate_row_count,
            "example_groups": self.example_groups,
        }

    def describe(self) -> str:
        if self.is_unique:
            return f"{self.table}: ({', '.join(self.match_on)}) is unique"
        lines = [
            f"{self.table}: {self.group_count} duplicate group(s) on "
            f"({', '.join(self.match_on)}), {self.duplicate_row_count} surplus row(s)"
        ]
        for group in self.example_groups:
            values = ", ".join(f"{col}={group['values'].get(col)!r}" for col in self.match_on)
            lines.append(f"  {values} x{group['count']}")
        return "\n".join(lines)


@dataclass
class DuplicateResolution:
    """Rows removed (or, in preview, to be removed) from duplicate groups."""

    table: str
    would_delete: list[dict[str, Any]] = field(default_factory=list)
    deleted_count: int = 0
    dry_run: bool = True


def _group_rows(
    rows: list[dict[str, Any]], match_on: tuple[str, ...] | list[str]
) -> dict[tuple, list[dict[str, Any]]]:
    groups: dict[tuple, list[dict[str, Any]]] = defaultdict(list)
    for row in rows:
        groups[composite_key(row, match_on)].append(row)
    return {key: members for key, members in groups.items() if len(members) > 1}


def _build_report(
    table: str, match_on: tuple[str, ...], groups: list[tuple[dict[str, Any], int]]
) -> UniquenessReport:
    ordered = sorted(groups, key=lambda item: item[1], reverse=True)
    return UniquenessReport(
        table=table,
        match_on=match_on,
        group_count=len(ordered),
        duplicate_row_count=sum(count - 1 for _, count in ordered),
        example_groups=[
            {"values": values, "count": count}
            for values, count in ordered[:EXAMPLE_GROUP_LIMIT]
        ],
    )


def find_duplicate_rows(
    rows: list[dict[str, Any]], match_on: tuple[str, ...] | list[str], table: str = ""
) -> UniquenessReport:
    """Uniqueness check over in-memory rows (e.g. a loaded snapshot)."""
    match_on = tuple(match_on)
    groups = _group_rows(rows, match_on)
    return _build_report(
        table,
        match_on,
        [
            ({col: members[0].get(col) for col in match_on}, len(members))
            for members in groups.values()
        ],
    )


def _pk_sort_key(row: dict[str, Any], primary_key: list[str]) -> tuple:
    # NULLs sort last
    return tuple((row.get(col) is None, row.get(col)) for col in primary_key)


class DuplicateAnalyzer:
    """
    Uniqueness checks and duplicate cleanup against a live table.

    Example:
        >>> analyzer = DuplicateAnalyzer(conn)
        >>> report = analyzer.check_uniqueness("dbo.Users", ["Email"])
        >>> if not report.is_unique:
        ...     analyzer.resolve_duplicates("dbo.Users", ["Email"], ["UserId"], dry_run=False)
    """

    def __init__(self, connection: DatabaseConnection, metrics: SyncMetrics | None = None):
        self.connection = connection
        self.metrics = metrics or default_metrics()

    def check_uniqueness(
        self,
        table: str,
        match_on: tuple[str, ...] | list[str],
        where: str | None = None,
    ) -> UniquenessReport:
        """
        Find groups of rows sharing the same match-column values.

        Runs a single grouped aggregation; NULL values group together.
        """
        match_on = tuple(match_on)
        with trace_operation(
            "check_uniqueness",
            kind=trace.SpanKind.CLIENT,
            table=table,
            match_on=",".join(match_on),
        ) as span:
            sql = self.connection.dialect.duplicate_groups(table, match_on, where)
            rows = self.connection.query(sql)

            report = _build_report(
                table,
                match_on,
                [
                    ({col: row.get(col) for col in match_on}, int(row["dup_count"]))
                    for row in rows
                ],
            )
            span.set_attribute("duplicate_groups", report.group_count)
            self.metrics.record_duplicates(table, report.group_count)

            if not report.is_unique:
                logger.warning(
                    f"{table}: {report.group_count} duplicate group(s) on "
                    f"({', '.join(match_on)}), {report.duplicate_row_count} surplus row(s)"
                )
            return report

    def resolve_duplicates(
        self,
        table: str,
        match_on: tuple[str, ...] | list[str],
        primary_key: list[str],
        where: str | None = None,
        dry_run: bool = True,
    ) -> DuplicateResolution:
        """
        Delete all but one row of every duplicate group.

        The row with the smallest primary key is kept. Deletes run by primary
        key inside a single transaction.

        Raises:
            NoPrimaryKeyError: If the table has no primary key
            ExecutionError: If a delete fails (the transaction is rolled back)
        """
        if not primary_key:
            raise NoPrimaryKeyError(
                f"Cannot resolve duplicates in {table} without a primary key", table=table
            )

        match_on = tuple(match_on)
        columns = list(dict.fromkeys([*match_on, *primary_key]))

        with trace_operation(
            "resolve_duplicates", kind=trace.SpanKind.CLIENT, table=table, dry_run=dry_run
        ):
            rows = self.connection.query(
                self.connection.dialect.select_rows(table, columns, where)
            )

            doomed = []
            for members in _group_rows(rows, match_on).values():
                ordered = sorted(members, key=lambda row: _pk_sort_key(row, primary_key))
                doomed.extend({col: row[col] for col in primary_key} for row in ordered[1:])

            resolution = DuplicateResolution(table=table, would_delete=doomed, dry_run=dry_run)
            if dry_run or not doomed:
                logger.info(f"{table}: {len(doomed)} duplicate row(s) would be deleted")
                return resolution

            try:
                with self.connection.transaction():
                    for key in doomed:
                        sql, params = self.connection.dialect.delete_statement(table, key)
                        resolution.deleted_count += self.connection.execute(sql, params)
            except Exception as e:
                logger.error(f"{table}: duplicate cleanup failed and was rolled back: {e}")
                raise ExecutionError(str(e), table=table, operation="resolve_duplicates") from e

            logger.info(f"{table}: deleted {resolution.deleted_count} duplicate row(s)")
            return resolution
