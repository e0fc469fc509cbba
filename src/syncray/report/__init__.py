"""
Sync run reports.

This submodule builds summary reports from sync results and exports them
as console text, JSON, or per-table CSV change listings.
"""

from .formatters import export_changes_csv, export_report_json, format_report_console
from .generator import RunStatus, generate_report

__all__ = [
    "generate_report",
    "RunStatus",
    "export_report_json",
    "export_changes_csv",
    "format_report_console",
]
