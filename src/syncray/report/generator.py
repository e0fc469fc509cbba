"""
Summary report generation for sync runs.

Builds a plain dictionary from the run summary and the table plans, with
per-table counts, duplicate findings and recommendations. The dictionary is
what the console, JSON and CSV exporters consume.
"""

from datetime import UTC, datetime
from typing import Any

from syncray.orchestrator import TablePlan
from syncray.reconciliation.applier import SyncSummary, TableSyncResult


class RunStatus:
    """Constants for the overall run status."""

    SUCCESS = "SUCCESS"
    PREVIEW = "PREVIEW"
    FAILED = "FAILED"
    NO_DATA = "NO_DATA"


def _table_entry(result: TableSyncResult, plan: TablePlan | None) -> dict[str, Any]:
    entry = result.to_dict()
    if plan is None:
        return entry

    entry["source_table"] = plan.rule.source_table
    entry["source_rows"] = len(plan.source_rows)
    entry["target_rows"] = plan.target_row_count
    entry["match_on"] = list(plan.rule.match_on)
    entry["replace_mode"] = plan.rule.replace_mode
    if plan.target_duplicates and not plan.target_duplicates.is_unique:
        entry["target_duplicates"] = plan.target_duplicates.to_dict()
    if plan.source_duplicates and not plan.source_duplicates.is_unique:
        entry["source_duplicates"] = plan.source_duplicates.to_dict()
    if plan.cleanup and plan.cleanup.would_delete:
        entry["duplicate_rows_removed"] = len(plan.cleanup.would_delete)
    return entry


def generate_report(summary: SyncSummary, plans: list[TablePlan] | None = None) -> dict[str, Any]:
    """
    Generate a report for a sync run.

    Args:
        summary: Results of ``SyncOrchestrator.execute``
        plans: Plans the summary was executed from (adds row counts and
            duplicate details)

    Returns:
        Dictionary containing:
        - status: SUCCESS, PREVIEW, FAILED or NO_DATA
        - dry_run: Whether the run only previewed changes
        - total_tables, tables_applied, tables_skipped, tables_failed
        - total_inserts, total_updates, total_deletes
        - tables: Per-table entries
        - summary: Human-readable summary
        - recommendations: List of recommended actions
        - timestamp: Report generation timestamp
    """
    timestamp = datetime.now(UTC).isoformat()
    if not summary.results:
        return {
            "status": RunStatus.NO_DATA,
            "dry_run": summary.dry_run,
            "total_tables": 0,
            "tables_applied": 0,
            "tables_skipped": 0,
            "tables_failed": 0,
            "total_inserts": 0,
            "total_updates": 0,
            "total_deletes": 0,
            "tables": [],
            "summary": "No tables were processed",
            "recommendations": [],
            "timestamp": timestamp,
        }

    plans_by_table = {plan.table: plan for plan in plans or []}
    tables = [_table_entry(r, plans_by_table.get(r.table)) for r in summary.results]

    failed = len(summary.failed)
    skipped = sum(1 for r in summary.results if r.skipped)
    applied = len(summary.results) - failed - skipped

    if failed:
        status = RunStatus.FAILED
    elif summary.dry_run:
        status = RunStatus.PREVIEW
    else:
        status = RunStatus.SUCCESS

    return {
        "status": status,
        "dry_run": summary.dry_run,
        "total_tables": len(summary.results),
        "tables_applied": applied,
        "tables_skipped": skipped,
        "tables_failed": failed,
        "total_inserts": summary.total_inserts,
        "total_updates": summary.total_updates,
        "total_deletes": summary.total_deletes,
        "tables": tables,
        "summary": _generate_summary(summary, applied, skipped, failed),
        "recommendations": _generate_recommendations(tables, summary),
        "timestamp": timestamp,
    }


def _generate_summary(summary: SyncSummary, applied: int, skipped: int, failed: int) -> str:
    total = len(summary.results)
    changes = (
        f"{summary.total_inserts} inserts, {summary.total_updates} updates, "
        f"{summary.total_deletes} deletes"
    )
    if failed:
        return f"Sync failed for {failed} of {total} tables. {applied} tables completed ({changes})."
    if summary.dry_run:
        return f"Preview of {total} tables: {changes} pending. No changes were applied."
    if skipped:
        return f"Synced {applied} of {total} tables ({changes}); {skipped} skipped."
    return f"All {total} tables synced ({changes})."


def _generate_recommendations(tables: list[dict[str, Any]], summary: SyncSummary) -> list[str]:
    recommendations = []

    duplicated = [t["table"] for t in tables if "target_duplicates" in t or "source_duplicates" in t]
    if duplicated:
        recommendations.append(
            f"Match keys are not unique in {', '.join(duplicated)}. "
            "Run 'syncray analyze' and clean up with --on-duplicates clean, "
            "or choose matchOn columns that identify rows uniquely."
        )

    if summary.failed:
        recommendations.append(
            "Fix the reported errors and re-run; tables committed before the failure "
            "are already in sync and will show no changes."
        )

    if summary.dry_run and (summary.total_inserts or summary.total_updates or summary.total_deletes):
        recommendations.append("Review the pending changes, then re-run with --execute to apply them.")

    return recommendations
