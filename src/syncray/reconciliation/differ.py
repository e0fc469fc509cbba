"""
Change-set computation.

Given the rows of a source snapshot and the current rows of the target
table, compute the inserts, updates and deletes that make the target match
the source under a sync rule. Both inputs may be in any order; the result
is deterministic for a given source order.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace

from syncray.exceptions import ConfigurationError
from syncray.snapshot.models import Column, SyncRule
from syncray.snapshot.values import coerce_row
from syncray.utils.metrics import SyncMetrics, default_metrics
from syncray.utils.tracing import trace_operation

from .comparison import composite_key, values_equal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldChange:
    """One column whose value differs between source and target."""

    field: str
    old_value: Any
    new_value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "old_value": self.old_value, "new_value": self.new_value}


@dataclass
class RowUpdate:
    """A matched row with at least one changed field."""

    key: dict[str, Any]
    changed_fields: list[FieldChange]
    full_row: dict[str, Any]

    @property
    def changes(self) -> dict[str, Any]:
        """Column -> new value, as written by the UPDATE."""
        return {change.field: change.new_value for change in self.changed_fields}


@dataclass
class ChangeSet:
    """Operations needed to bring one target table in line with its source."""

    inserts: list[dict[str, Any]] = field(default_factory=list)
    updates: list[RowUpdate] = field(default_factory=list)
    deletes: list[dict[str, Any]] = field(default_factory=list)
    replace_mode: bool = False

    @property
    def total(self) -> int:
        return len(self.inserts) + len(self.updates) + len(self.deletes)

    @property
    def is_empty(self) -> bool:
        return self.total == 0 and not self.replace_mode

    def counts(self) -> dict[str, int]:
        return {
            "inserts": len(self.inserts),
            "updates": len(self.updates),
            "deletes": len(self.deletes),
        }


class Reconciler:
    """
    Computes the ChangeSet for one table.

    Args:
        rule: Sync rule with ``match_on`` already resolved
        columns: Target table columns; when given, source values are
            coerced by column type instead of by string heuristics
            and rowversion columns are left out of the comparison
        metrics: Metrics sink (defaults to the shared registry)
    """

    def __init__(
        self,
        rule: SyncRule,
        columns: list[Column] | None = None,
        metrics: SyncMetrics | None = None,
    ):
        if not rule.replace_mode and not rule.match_on:
            raise ConfigurationError(
                f"No match columns resolved for {rule.table}", table=rule.table
            )
        overlap = set(rule.match_on) & rule.ignore_columns
        if overlap:
            raise ConfigurationError(
                f"matchOn columns cannot be ignored: {', '.join(sorted(overlap))}",
                table=rule.table,
            )
        self.rule = rule
        self.columns = columns
        self.column_types = {col.name: col.data_type for col in columns} if columns else None
        self.generated_columns = frozenset(
            col.name for col in columns or () if col.is_rowversion
        )
        self.metrics = metrics or default_metrics()

    def coerce(self, row: dict[str, Any]) -> dict[str, Any]:
        return coerce_row(row, self.column_types)

    def _changed_fields(
        self, source: dict[str, Any], target: dict[str, Any]
    ) -> list[FieldChange]:
        changes = []
        for column in self.rule.compared_columns(list(source.keys())):
            if column in self.generated_columns:
                continue
            new_value = source[column]
            old_value = target.get(column)
            if not values_equal(new_value, old_value):
                changes.append(FieldChange(column, old_value, new_value))
        return changes

    def reconcile(
        self,
        source_rows: list[dict[str, Any]],
        target_rows: list[dict[str, Any]],
    ) -> ChangeSet:
        """
        Compute the change set.

        Args:
            source_rows: Snapshot rows (serialized or native values)
            target_rows: Current target rows (native values)

        Returns:
            ChangeSet; in replace mode an empty one flagged ``replace_mode``
        """
        table = self.rule.table
        if self.rule.replace_mode:
            logger.info(f"{table}: replace mode, skipping row comparison")
            return ChangeSet(replace_mode=True)

        with trace_operation(
            "reconcile_table",
            kind=trace.SpanKind.INTERNAL,
            table=table,
            source_rows=len(source_rows),
            target_rows=len(target_rows),
        ) as span:
            start = time.monotonic()
            match_on = self.rule.match_on
            change_set = ChangeSet()

            target_index: dict[tuple, dict[str, Any]] = {}
            for row in target_rows:
                target_index[composite_key(row, match_on)] = row

            for raw in source_rows:
                source = self.coerce(raw)
                key = composite_key(source, match_on)
                target = target_index.pop(key, None)

                if target is None:
                    if self.rule.allow_inserts:
                        change_set.inserts.append(source)
                    continue

                changed = self._changed_fields(source, target)
                if changed and self.rule.allow_updates:
                    change_set.updates.append(
                        RowUpdate(
                            # Matched by normalized key; the WHERE clause needs the stored values
                            key={column: target.get(column) for column in match_on},
                            changed_fields=changed,
                            full_row=source,
                        )
                    )

            if self.rule.allow_deletes:
                change_set.deletes.extend(target_index.values())

            duration = time.monotonic() - start
            self.metrics.reconcile_duration_seconds.labels(table_name=table).observe(duration)

            counts = change_set.counts()
            span.set_attribute("inserts", counts["inserts"])
            span.set_attribute("updates", counts["updates"])
            span.set_attribute("deletes", counts["deletes"])

            logger.info(
                f"{table}: {counts['inserts']} inserts, {counts['updates']} updates, "
                f"{counts['deletes']} deletes ({duration:.2f}s)"
            )
            return change_set


def reconcile(
    source_rows: list[dict[str, Any]],
    target_rows: list[dict[str, Any]],
    rule: SyncRule,
    columns: list[Column] | None = None,
) -> ChangeSet:
    """Compute the ChangeSet for ``rule`` (see ``Reconciler.reconcile``)."""
    return Reconciler(rule, columns).reconcile(source_rows, target_rows)
