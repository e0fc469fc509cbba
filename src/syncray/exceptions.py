"""
Exception hierarchy for SyncRay.

Schema, configuration and duplicate errors abort a single table before any
change is computed; ``ExecutionError`` aborts the whole run after rolling
back the table being applied.
"""

from typing import Any


class SyncError(Exception):
    """Base exception for all sync errors."""

    def __init__(self, message: str, table: str | None = None):
        super().__init__(message)
        self.table = table


class SchemaError(SyncError):
    """Raised when a table or column does not exist."""

    pass


class ConfigurationError(SyncError):
    """Raised when a sync rule or configuration file is invalid."""

    pass


class SnapshotError(SyncError):
    """Raised when a snapshot file cannot be read or does not validate."""

    pass


class DuplicateKeyError(SyncError):
    """Raised when the match columns do not identify rows uniquely."""

    def __init__(self, message: str, table: str | None = None, report: Any = None):
        super().__init__(message, table)
        self.report = report


class NoPrimaryKeyError(SyncError):
    """Raised when duplicate resolution needs a primary key the table lacks."""

    pass


class ExecutionError(SyncError):
    """Raised when a statement fails while applying changes to a table."""

    def __init__(self, message: str, table: str | None = None, operation: str | None = None):
        super().__init__(message, table)
        self.operation = operation

    def __str__(self) -> str:
        prefix = f"[{self.table}]" if self.table else ""
        if self.operation:
            prefix += f"[{self.operation}]"
        message = super().__str__()
        return f"{prefix} {message}" if prefix else message
