"""
Report formatting and export: console text, JSON and per-table CSV change
listings.
"""

import csv
import json
import logging
import re
from pathlib import Path
from typing import Any

from syncray.orchestrator import TablePlan

logger = logging.getLogger(__name__)

CHANGE_CSV_HEADER = ["Operation", "Key", "Field", "OldValue", "NewValue"]


def export_report_json(report: dict[str, Any], output_path: str | Path) -> None:
    """
    Export report to JSON file

    Values that are not JSON types (datetimes, decimals) are written as strings.
    """
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2, default=str)


def _key_text(key: dict[str, Any]) -> str:
    return ", ".join(f"{col}={value}" for col, value in key.items())


def _safe_filename(table: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", table)


def export_changes_csv(plan: TablePlan, report_dir: str | Path) -> Path | None:
    """
    Write every pending insert, update and delete of a table to a CSV file.

    Inserts and deletes produce one line per row; updates one line per
    changed field.

    Returns:
        Path of the written file, or None if the table has no change set
    """
    change_set = plan.change_set
    if change_set is None:
        return None

    report_dir = Path(report_dir)
    report_dir.mkdir(parents=True, exist_ok=True)
    path = report_dir / f"{_safe_filename(plan.table)}-changes.csv"
    match_on = plan.rule.match_on

    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(CHANGE_CSV_HEADER)

        inserts = plan.source_rows if change_set.replace_mode else change_set.inserts
        if change_set.replace_mode:
            writer.writerow(["DELETE ALL", "", "", plan.target_row_count, ""])

        for row in inserts:
            writer.writerow(["INSERT", _key_text({c: row.get(c) for c in match_on}), "", "", ""])

        for update in change_set.updates:
            for change in update.changed_fields:
                writer.writerow([
                    "UPDATE",
                    _key_text(update.key),
                    change.field,
                    change.old_value,
                    change.new_value,
                ])

        for row in change_set.deletes:
            writer.writerow(["DELETE", _key_text({c: row.get(c) for c in match_on}), "", "", ""])

    logger.info(f"Wrote change listing for {plan.table} to {path}")
    return path


def format_report_console(report: dict[str, Any]) -> str:
    """
    Format report for console output

    Args:
        report: Report dictionary from ``generate_report``

    Returns:
        Formatted string for console display
    """
    lines = []

    title = "SYNC PREVIEW" if report["dry_run"] else "SYNC REPORT"
    lines.append("=" * 80)
    lines.append(title)
    lines.append("=" * 80)
    lines.append(f"Status: {report['status']}")
    lines.append(f"Timestamp: {report['timestamp']}")
    lines.append(f"Total Tables: {report['total_tables']}")
    lines.append(f"Tables Applied: {report['tables_applied']}")
    lines.append(f"Tables Skipped: {report['tables_skipped']}")
    lines.append(f"Tables Failed: {report['tables_failed']}")
    lines.append(f"Inserts: {report['total_inserts']:,}")
    lines.append(f"Updates: {report['total_updates']:,}")
    lines.append(f"Deletes: {report['total_deletes']:,}")
    lines.append("")

    lines.append("SUMMARY")
    lines.append("-" * 80)
    lines.append(report["summary"])
    lines.append("")

    if report["tables"]:
        lines.append("TABLES")
        lines.append("-" * 80)
        for table in report["tables"]:
            lines.append(
                f"{table['table']:<40} {table['status']:<10} "
                f"+{table['inserts']} ~{table['updates']} -{table['deletes']}"
            )
            if table.get("skipped"):
                lines.append(f"  Skipped: {table['skipped']}")
            if table.get("error"):
                lines.append(f"  Error: {table['error']}")
            for side in ("source_duplicates", "target_duplicates"):
                if side in table:
                    dup = table[side]
                    lines.append(
                        f"  {side.replace('_', ' ').capitalize()}: {dup['group_count']} group(s), "
                        f"{dup['duplicate_row_count']} surplus row(s)"
                    )
        lines.append("")

    if report["recommendations"]:
        lines.append("RECOMMENDATIONS")
        lines.append("-" * 80)
        for i, rec in enumerate(report["recommendations"], 1):
            lines.append(f"{i}. {rec}")
        lines.append("")

    lines.append("=" * 80)

    return "\n".join(lines)
