"""
Field decoders shared by the exchange mappers.

Exchange payloads are loosely typed: numbers arrive as strings or numbers,
fields move between endpoint versions. Every decoder separates "field absent"
from "field present but unparsable" and raises MalformedRecordError for the
cases a mapper cannot recover from.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional

from budget_tracker.core.exceptions import MalformedRecordError

_MISSING = object()


def _lookup(raw: Dict[str, Any], keys: Iterable[str]):
    for key in keys:
        value = raw.get(key, _MISSING)
        if value is not _MISSING and value is not None and value != "":
            return key, value
    return None, _MISSING


def _keys(key):
    return (key,) if isinstance(key, str) else tuple(key)


def to_decimal(value: Any, field: str = "") -> Decimal:
    if isinstance(value, bool):
        raise MalformedRecordError(f"{field}: boolean is not a number", field=field)
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise MalformedRecordError(f"{field}: unparsable number {value!r}", field=field)
    if not result.is_finite():
        raise MalformedRecordError(f"{field}: non-finite number {value!r}", field=field)
    return result


def required_decimal(raw: Dict[str, Any], key) -> Decimal:
    name, value = _lookup(raw, _keys(key))
    if value is _MISSING:
        raise MalformedRecordError(f"missing field {key}", field=str(key))
    return to_decimal(value, name)


def optional_decimal(raw: Dict[str, Any], key, default: Decimal = Decimal("0")) -> Decimal:
    name, value = _lookup(raw, _keys(key))
    if value is _MISSING:
        return default
    return to_decimal(value, name)


def required_str(raw: Dict[str, Any], key) -> str:
    name, value = _lookup(raw, _keys(key))
    if value is _MISSING:
        raise MalformedRecordError(f"missing field {key}", field=str(key))
    if isinstance(value, (dict, list)):
        raise MalformedRecordError(f"{name}: expected scalar, got {type(value).__name__}", field=name)
    return str(value)


def optional_int(raw: Dict[str, Any], key, default: int = 0) -> int:
    name, value = _lookup(raw, _keys(key))
    if value is _MISSING:
        return default
    number = to_decimal(value, name)
    return int(number)


def millis_to_datetime(raw: Dict[str, Any], key) -> datetime:
    name, value = _lookup(raw, _keys(key))
    if value is _MISSING:
        raise MalformedRecordError(f"missing field {key}", field=str(key))
    millis = to_decimal(value, name)
    try:
        return datetime.fromtimestamp(int(millis) / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        raise MalformedRecordError(f"{name}: timestamp out of range {value!r}", field=name)


def first_present(raw: Dict[str, Any], *keys: str) -> Optional[Any]:
    _, value = _lookup(raw, keys)
    return None if value is _MISSING else value
