"""
Value conversion between native column types and the snapshot format.

Snapshots carry dates as ``yyyy-MM-dd HH:mm:ss.fff`` strings (with a
``+HH:MM`` offset when the value is timezone-aware), binary data as base64
and JSON/array columns as native JSON, so everything survives a JSON file.
Decimals that a float cannot hold exactly are written as strings. Coercion
reverses that: with column metadata the conversion follows the column's
type family; without it a string heuristic recognizes ``"True"``/``"False"``
and ISO-dated strings. Coercion never raises; a value that cannot be
converted is returned as is.
"""

import base64
import binascii
import re
import uuid
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

ISO_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")

BOOLEAN_TYPES = frozenset({"bit", "bool", "boolean"})
DATETIME_TYPES = frozenset({
    "datetime", "datetime2", "smalldatetime", "datetimeoffset",
    "timestamp", "timestamptz", "timestamp without time zone",
    "timestamp with time zone",
})
DATE_TYPES = frozenset({"date"})
TIME_TYPES = frozenset({"time", "time without time zone", "time with time zone"})
# SQL Server reports rowversion columns as "timestamp"; the inspector renames them
BINARY_TYPES = frozenset({"binary", "varbinary", "image", "bytea", "blob", "rowversion"})
NUMERIC_TYPES = frozenset({
    "int", "integer", "bigint", "smallint", "tinyint", "decimal", "numeric",
    "money", "smallmoney", "float", "real", "double", "double precision",
})
JSON_TYPES = frozenset({"json", "jsonb"})
ARRAY_TYPES = frozenset({"array"})
TEXT_TYPES = frozenset({
    "char", "varchar", "nchar", "nvarchar", "text", "ntext", "character",
    "character varying", "uniqueidentifier", "uuid", "xml", "citext", "clob",
})


def column_family(data_type: str | None) -> str | None:
    """
    Classify a column type name into a conversion family.

    Returns one of "boolean", "datetime", "date", "time", "binary",
    "numeric", "json", "array", "text", or None when the type is unknown.
    """
    if not data_type:
        return None

    base = re.sub(r"\(.*\)", "", data_type).strip().lower()
    for family, names in (
        ("boolean", BOOLEAN_TYPES),
        ("datetime", DATETIME_TYPES),
        ("date", DATE_TYPES),
        ("time", TIME_TYPES),
        ("binary", BINARY_TYPES),
        ("numeric", NUMERIC_TYPES),
        ("json", JSON_TYPES),
        ("array", ARRAY_TYPES),
        ("text", TEXT_TYPES),
    ):
        if base in names:
            return family
    return None


def format_utc_offset(value: datetime | time) -> str:
    """``+HH:MM`` offset of an aware value, or "" for a naive one."""
    offset = value.utcoffset()
    if offset is None:
        return ""
    minutes = int(offset.total_seconds()) // 60
    sign = "-" if minutes < 0 else "+"
    hours, minutes = divmod(abs(minutes), 60)
    return f"{sign}{hours:02d}:{minutes:02d}"


def _serialize_decimal(value: Decimal) -> int | float | str:
    if not value.is_finite():
        return str(value)
    if value == value.to_integral_value():
        return int(value)
    as_float = float(value)
    if Decimal(repr(as_float)) == value:
        return as_float
    return str(value)


def serialize_value(value: Any) -> Any:
    """Convert a native value into its JSON snapshot representation."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value

    if isinstance(value, datetime):
        return (
            value.strftime(DATETIME_FORMAT)
            + f".{value.microsecond // 1000:03d}"
            + format_utc_offset(value)
        )

    if isinstance(value, date):
        return value.strftime("%Y-%m-%d") + " 00:00:00.000"

    if isinstance(value, time):
        return value.isoformat()

    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")

    if isinstance(value, Decimal):
        return _serialize_decimal(value)

    if isinstance(value, uuid.UUID):
        return str(value)

    if isinstance(value, dict):
        return {str(key): serialize_value(item) for key, item in value.items()}

    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]

    return str(value)


def serialize_row(row: dict[str, Any]) -> dict[str, Any]:
    return {column: serialize_value(value) for column, value in row.items()}


def to_bool(value: Any) -> Any:
    """
    Interpret a value as a boolean.

    Strings accept true/false/1/0/yes/no in any case; unrecognized strings
    are returned unchanged so they compare as different.
    """
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1", "yes", "y"):
            return True
        if text in ("false", "0", "no", "n", ""):
            return False
        return value
    return bool(value)


def parse_datetime(text: str) -> datetime | None:
    """Parse an ISO-style date/datetime string, or return None."""
    if not ISO_DATE_PREFIX.match(text):
        return None
    try:
        return datetime.fromisoformat(text.strip())
    except ValueError:
        return None


def coerce_heuristic(value: Any) -> Any:
    """Coerce a serialized value when the column type is unknown."""
    if not isinstance(value, str):
        return value

    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False

    if ISO_DATE_PREFIX.match(value):
        parsed = parse_datetime(value)
        return parsed if parsed is not None else value

    return value


def coerce_value(value: Any, data_type: str | None = None) -> Any:
    """
    Coerce a serialized snapshot value to the native type of its column.

    Args:
        value: Value as read from a snapshot (or already native)
        data_type: Column type name, if known

    Returns:
        Native value, or the input unchanged when conversion is not possible
    """
    if value is None:
        return None

    family = column_family(data_type)
    if family is None:
        return coerce_heuristic(value)

    if family == "boolean":
        return to_bool(value)

    if not isinstance(value, str):
        return value

    if family == "datetime":
        parsed = parse_datetime(value)
        return parsed if parsed is not None else value

    if family == "date":
        parsed = parse_datetime(value)
        return parsed.date() if parsed is not None else value

    if family == "time":
        try:
            return time.fromisoformat(value)
        except ValueError:
            return value

    if family == "binary":
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return value

    if family == "numeric":
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return value

    # json, array and text strings are already native
    return value


def coerce_row(row: dict[str, Any], column_types: dict[str, str] | None = None) -> dict[str, Any]:
    """Coerce every value of a row, using column types where available."""
    types = column_types or {}
    return {column: coerce_value(value, types.get(column)) for column, value in row.items()}
