# src/async_liteorm/base/types.py

import collections.abc
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Tuple, Union, get_args, get_origin


class StorageType(str, Enum):
    """
    Column storage types.

    The first four are SQLite's native storage classes
    (https://www.sqlite.org/datatype3.html). The rest are logical types stored
    on top of a native one through a get/set transformer pair.
    """

    TEXT = "TEXT"
    INTEGER = "INTEGER"
    REAL = "REAL"
    BLOB = "BLOB"
    BOOLEAN = "Boolean"
    DATE = "Date"
    JSON = "JSON"
    STRING_ARRAY = "StringArray"

    @property
    def native(self) -> str:
        return NATIVE_TYPE[self]

    @property
    def is_extended(self) -> bool:
        return self not in (
            StorageType.TEXT,
            StorageType.INTEGER,
            StorageType.REAL,
            StorageType.BLOB,
        )


NATIVE_TYPE: Dict[StorageType, str] = {
    StorageType.TEXT: "TEXT",
    StorageType.INTEGER: "INTEGER",
    StorageType.REAL: "REAL",
    StorageType.BLOB: "BLOB",
    StorageType.BOOLEAN: "INTEGER",
    StorageType.DATE: "INTEGER",
    StorageType.JSON: "TEXT",
    StorageType.STRING_ARRAY: "TEXT",
}

# Friendly names accepted wherever a storage type is expected.
TYPE_ALIASES: Dict[str, StorageType] = {
    # Class name types
    "String": StorageType.TEXT,
    "Number": StorageType.REAL,
    "Date": StorageType.DATE,
    "ArrayBuffer": StorageType.BLOB,
    "Boolean": StorageType.BOOLEAN,
    "Object": StorageType.JSON,
    # Additional aliases
    "JSON": StorageType.JSON,
    "StringArray": StorageType.STRING_ARRAY,
    "str": StorageType.TEXT,
    "string": StorageType.TEXT,
    "int": StorageType.INTEGER,
    "integer": StorageType.INTEGER,
    "float": StorageType.REAL,
    "bin": StorageType.BLOB,
    "binary": StorageType.BLOB,
    "bytes": StorageType.BLOB,
    "boolean": StorageType.BOOLEAN,
    "bool": StorageType.BOOLEAN,
    "datetime": StorageType.DATE,
    "date": StorageType.DATE,
    "dict": StorageType.JSON,
    "list": StorageType.JSON,
    "json": StorageType.JSON,
}


def normalize_alias(type_name: Union[str, StorageType]) -> StorageType:
    """Resolve a storage type or any of its aliases (case-sensitive first, then upper-cased)."""
    if isinstance(type_name, StorageType):
        return type_name
    if type_name in TYPE_ALIASES:
        return TYPE_ALIASES[type_name]
    try:
        return StorageType(type_name)
    except ValueError:
        pass
    try:
        return StorageType(type_name.upper())
    except ValueError:
        raise ValueError(f"Unknown storage type alias: {type_name!r}") from None


def _is_none_type(t: Any) -> bool:
    return t is type(None)


def unwrap_optional(hint: Any) -> Tuple[Any, bool]:
    """Strip ``Optional[...]`` from a type hint, returning (inner_hint, is_optional)."""
    if get_origin(hint) is Union:
        args = get_args(hint)
        non_none = tuple(a for a in args if not _is_none_type(a))
        if len(non_none) < len(args):
            if len(non_none) == 1:
                return non_none[0], True
            return Union[non_none], True
    return hint, False


def storage_type_from_hint(hint: Any) -> StorageType:
    """Map a Python annotation to the storage type used for its column."""
    hint, _ = unwrap_optional(hint)
    origin = get_origin(hint)
    args = get_args(hint)

    if origin in (list, set, frozenset, collections.abc.Sequence) and args:
        if args[0] is str:
            return StorageType.STRING_ARRAY
        return StorageType.JSON
    if origin is tuple and args:
        if all(a is str for a in args if a is not Ellipsis):
            return StorageType.STRING_ARRAY
        return StorageType.JSON
    if origin is not None:
        # Dict[...], Mapping[...], Union[...] and friends
        return StorageType.JSON

    if hint is bool:
        return StorageType.BOOLEAN
    if hint is int:
        return StorageType.INTEGER
    if hint is float:
        return StorageType.REAL
    if hint is str:
        return StorageType.TEXT
    if hint in (bytes, bytearray, memoryview):
        return StorageType.BLOB
    if hint in (datetime, date):
        return StorageType.DATE
    return StorageType.JSON


class RawSQL:
    """
    Trusted SQL fragment, interpolated verbatim.

    Never build one from user input; use `sql` for literals written in code.
    """

    def __init__(self, content: str):
        self.content = content

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, RawSQL) and other.content == self.content

    def __hash__(self) -> int:
        return hash(self.content)

    def __repr__(self) -> str:
        return f"RawSQL({self.content!r})"


def sql(content: str) -> RawSQL:
    """
    Mark a trusted SQL fragment.

    ```python
    sql("COUNT (*)")
    sql("CURRENT_TIMESTAMP")
    ```
    """
    return RawSQL(content)


__all__ = [
    "StorageType",
    "NATIVE_TYPE",
    "TYPE_ALIASES",
    "normalize_alias",
    "unwrap_optional",
    "storage_type_from_hint",
    "RawSQL",
    "sql",
]
