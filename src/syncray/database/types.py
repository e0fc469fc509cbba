"""
Database type enumeration for type-safe backend identification.
"""

from enum import Enum


class DatabaseType(str, Enum):
    """
    Supported database backends.

    Inherits from str so config values and report fields compare and
    serialize as plain strings.
    """

    SQLSERVER = "sqlserver"
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"

    @classmethod
    def from_name(cls, name: str) -> "DatabaseType":
        """
        Parse a backend name from configuration.

        Accepts the canonical values plus common aliases ("mssql",
        "postgres", "pg", "sqlite3").

        Raises:
            ValueError: If the name is not a supported backend
        """
        normalized = (name or "").strip().lower()
        aliases = {
            "mssql": cls.SQLSERVER,
            "sql server": cls.SQLSERVER,
            "postgres": cls.POSTGRESQL,
            "pg": cls.POSTGRESQL,
            "sqlite3": cls.SQLITE,
        }
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            supported = ", ".join(t.value for t in cls)
            raise ValueError(f"Unsupported database type: {name!r} (supported: {supported})") from None

    @property
    def default_schema(self) -> str | None:
        if self == DatabaseType.SQLSERVER:
            return "dbo"
        if self == DatabaseType.POSTGRESQL:
            return "public"
        return None
