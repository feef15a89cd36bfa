# src/async_liteorm/base/transforms.py

import json
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from .types import StorageType

# Delimiter of the StringArray encoding. Values containing it are not supported.
STRING_ARRAY_SEPARATOR = "\x1f"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Transformer:
    """Converts between the stored (native) value and the logical Python value."""

    get: Optional[Callable[[Any], Any]] = None
    set: Optional[Callable[[Any], Any]] = None


def to_epoch_millis(value: Any) -> int:
    """
    Convert a date/datetime to integer epoch milliseconds.

    Naive datetimes are treated as UTC; a bare `date` is midnight UTC.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
            value = value.replace(tzinfo=timezone.utc)
    elif isinstance(value, date):
        value = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    elif isinstance(value, str):
        return to_epoch_millis(datetime.fromisoformat(value.replace("Z", "+00:00")))
    else:
        raise TypeError(f"Cannot convert {type(value).__name__} to a timestamp")
    return (value - EPOCH) // timedelta(milliseconds=1)


def from_epoch_millis(value: int) -> datetime:
    return EPOCH + timedelta(milliseconds=value)


def _date_get(repr_: Any) -> Optional[datetime]:
    if isinstance(repr_, (int, float)) and not isinstance(repr_, bool):
        return from_epoch_millis(int(repr_))
    return None


def _date_set(value: Any) -> Optional[int]:
    if value is None:
        return None
    return to_epoch_millis(value)


def _json_get(repr_: Any) -> Any:
    if repr_ is None:
        return None
    return json.loads(repr_)


def _json_set(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _string_array_get(repr_: Optional[str]) -> Optional[List[str]]:
    if repr_ is None:
        return None
    # "" is the empty list; a list holding one empty string is "\x1f\x1f"
    if repr_ == "":
        return []
    return repr_[1:-1].split(STRING_ARRAY_SEPARATOR)


def _string_array_set(value: Optional[Iterable[str]]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    value = list(value)
    if not value:
        return ""
    return (
        STRING_ARRAY_SEPARATOR
        + STRING_ARRAY_SEPARATOR.join(value)
        + STRING_ARRAY_SEPARATOR
    )


def _boolean_get(repr_: Any) -> Optional[bool]:
    # 0 must come back as False, only NULL means absent
    if repr_ is None:
        return None
    return bool(repr_)


def _boolean_set(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(bool(value))


TRANSFORMERS: Dict[StorageType, Transformer] = {
    StorageType.DATE: Transformer(get=_date_get, set=_date_set),
    StorageType.JSON: Transformer(get=_json_get, set=_json_set),
    StorageType.STRING_ARRAY: Transformer(
        get=_string_array_get, set=_string_array_set
    ),
    StorageType.BOOLEAN: Transformer(get=_boolean_get, set=_boolean_set),
}


def identity(value: Any) -> Any:
    return value


def resolve_transform(
    storage_type: Optional[StorageType],
    custom: Optional[Transformer],
    method: str,
) -> Callable[[Any], Any]:
    """
    Pick the converter for one column.

    A custom transformer wins for whichever half it defines; the other half
    falls back to the registry default for the storage type, then to identity.
    """
    if method not in ("get", "set"):
        raise ValueError(f"method must be 'get' or 'set', got {method!r}")

    fn = getattr(custom, method) if custom is not None else None
    if fn is None and storage_type is not None:
        default = TRANSFORMERS.get(storage_type)
        if default is not None:
            fn = getattr(default, method)
    return fn or identity
