"""
Value comparison and match-key construction.

Source rows come from a serialized snapshot and target rows from a live
driver, so the same logical value may arrive as different Python types
(``"True"`` vs ``True``, ``date`` vs ``datetime``, ``Decimal`` vs ``float``,
``dict`` vs JSON text). These helpers decide equality across those
representations. They never raise on mismatched types; an incomparable
pair is simply "not equal".
"""

import json
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from syncray.snapshot.values import parse_datetime, to_bool


def _truncate_ms(value: datetime) -> datetime:
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return _truncate_ms(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        parsed = parse_datetime(value)
        return _truncate_ms(parsed) if parsed is not None else None
    return None


def _as_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None
    return None


def _as_structure(value: Any) -> Any:
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def _structures_equal(source: Any, target: Any) -> bool:
    left, right = _as_structure(source), _as_structure(target)
    if isinstance(left, list) and isinstance(right, list):
        return len(left) == len(right) and all(
            values_equal(a, b) for a, b in zip(left, right)
        )
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(
            values_equal(left[key], right[key]) for key in left
        )
    return False


def values_equal(source: Any, target: Any) -> bool:
    """
    Compare a source value with a target value.

    Rules, in order:
        - both None: equal; exactly one None: different
        - either side a dict/list: compare structurally, element by element
          (JSON text on the other side is parsed first)
        - either side a bool: compare both as booleans
        - either side a date/datetime: compare as datetimes truncated to
          milliseconds (a date equals midnight of that day)
        - both numeric: compare as decimals
        - otherwise: plain equality
    """
    if source is None and target is None:
        return True
    if source is None or target is None:
        return False

    structured = (dict, list, tuple)
    if isinstance(source, structured) or isinstance(target, structured):
        return _structures_equal(source, target)

    if isinstance(source, bool) or isinstance(target, bool):
        return to_bool(source) == to_bool(target)

    if isinstance(source, (date, datetime)) or isinstance(target, (date, datetime)):
        left, right = _as_datetime(source), _as_datetime(target)
        if left is None or right is None:
            return False
        # Naive and aware datetimes cannot be compared; treat as different
        if (left.tzinfo is None) != (right.tzinfo is None):
            return False
        return left == right

    left_num, right_num = _as_decimal(source), _as_decimal(target)
    if left_num is not None and right_num is not None:
        return left_num == right_num

    if isinstance(source, (bytes, bytearray, memoryview)) and isinstance(
        target, (bytes, bytearray, memoryview)
    ):
        return bytes(source) == bytes(target)

    return source == target


def normalize_key_part(value: Any) -> Any:
    """
    Normalize one match-column value so equal values hash equally.

    Integral numbers become int, datetimes are truncated to milliseconds,
    dates become midnight datetimes, binary becomes bytes,
    JSON values become their canonical JSON text.
    """
    if value is None or isinstance(value, bool):
        return value

    if isinstance(value, Decimal):
        if value.is_finite() and value == value.to_integral_value():
            return int(value)
        return value

    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        return Decimal(str(value))

    if isinstance(value, datetime):
        return _truncate_ms(value)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)

    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=str)

    return value


def composite_key(row: dict[str, Any], match_on: tuple[str, ...] | list[str]) -> tuple:
    """
    Build the match key of a row.

    The key is a tuple of normalized values, usable directly as a dict key.
    Missing columns count as NULL.
    """
    return tuple(normalize_key_part(row.get(column)) for column in match_on)
