"""
Prometheus metrics for sync runs.

Tracks applied row changes, per-table run outcomes, durations and duplicate
findings. The CLI can dump the registry in textfile-collector format so a
node exporter picks it up after a batch run.
"""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    write_to_textfile,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_or_create_metric(
    metric_factory: Callable[[], T],
    metric_name: str,
    registry: CollectorRegistry = REGISTRY,
) -> T:
    """
    Create a metric, or return the existing one if already registered.

    Args:
        metric_factory: Callable that creates the metric
        metric_name: Name used to look the metric up if registration fails
        registry: Prometheus registry to use

    Returns:
        The metric instance
    """
    try:
        return metric_factory()
    except ValueError:
        existing = registry._names_to_collectors.get(metric_name)
        if existing is not None:
            return existing
        raise


class SyncMetrics:
    """
    Metrics for table synchronization

    One instance per registry; ``default_metrics()`` returns the shared
    instance bound to the global registry.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or REGISTRY

        self.rows_applied_total = get_or_create_metric(
            lambda: Counter(
                "syncray_rows_applied_total",
                "Rows written to target tables",
                ["table_name", "operation"],
                registry=self.registry,
            ),
            "syncray_rows_applied",
            self.registry,
        )

        self.table_runs_total = get_or_create_metric(
            lambda: Counter(
                "syncray_table_runs_total",
                "Per-table sync outcomes",
                ["table_name", "status"],
                registry=self.registry,
            ),
            "syncray_table_runs",
            self.registry,
        )

        self.reconcile_duration_seconds = get_or_create_metric(
            lambda: Histogram(
                "syncray_reconcile_duration_seconds",
                "Time to compute a change set",
                ["table_name"],
                buckets=(0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30, 60, 300),
                registry=self.registry,
            ),
            "syncray_reconcile_duration_seconds",
            self.registry,
        )

        self.apply_duration_seconds = get_or_create_metric(
            lambda: Histogram(
                "syncray_apply_duration_seconds",
                "Time to apply a change set inside its transaction",
                ["table_name"],
                buckets=(0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30, 60, 300, 900),
                registry=self.registry,
            ),
            "syncray_apply_duration_seconds",
            self.registry,
        )

        self.duplicate_groups = get_or_create_metric(
            lambda: Gauge(
                "syncray_duplicate_groups",
                "Duplicate match-key groups found in the last analysis",
                ["table_name"],
                registry=self.registry,
            ),
            "syncray_duplicate_groups",
            self.registry,
        )

        self.last_run_timestamp = get_or_create_metric(
            lambda: Gauge(
                "syncray_last_run_timestamp",
                "Unix time of the last completed sync run",
                registry=self.registry,
            ),
            "syncray_last_run_timestamp",
            self.registry,
        )

    def record_row_applied(self, table_name: str, operation: str, count: int = 1) -> None:
        self.rows_applied_total.labels(table_name=table_name, operation=operation).inc(count)

    def record_table_run(self, table_name: str, status: str) -> None:
        self.table_runs_total.labels(table_name=table_name, status=status).inc()

    def record_duplicates(self, table_name: str, group_count: int) -> None:
        self.duplicate_groups.labels(table_name=table_name).set(group_count)

    def mark_run_completed(self) -> None:
        self.last_run_timestamp.set(time.time())

    def write_textfile(self, path: str) -> None:
        """Write the registry in node-exporter textfile format."""
        write_to_textfile(path, self.registry)
        logger.info(f"Metrics written to {path}")


_default_metrics: SyncMetrics | None = None


def default_metrics() -> SyncMetrics:
    """Return the shared metrics instance bound to the global registry."""
    global _default_metrics
    if _default_metrics is None:
        _default_metrics = SyncMetrics()
    return _default_metrics
