# src/async_liteorm/base/utils.py
from dataclasses import asdict, fields, is_dataclass
from typing import Any, Dict, Mapping

from .metadata import to_snake_case


def prepare_for_storage(data: Any) -> Any:
    """
    Recursively convert pydantic models and dataclasses nested in a value to
    plain dicts and lists.

    Scalars (including datetimes) are returned as is; the column transform
    decides how they are stored.
    """
    if data is None:
        return None

    if is_dataclass(data) and not isinstance(data, type):
        return prepare_for_storage(asdict(data))

    if hasattr(data, "model_dump") and callable(getattr(data, "model_dump")):
        return prepare_for_storage(data.model_dump(by_alias=True))

    if isinstance(data, dict):
        return {k: prepare_for_storage(v) for k, v in data.items()}

    if isinstance(data, (list, tuple)):
        return [prepare_for_storage(item) for item in data]

    if isinstance(data, (set, frozenset)):
        return [prepare_for_storage(item) for item in data]

    # pydantic URL types and friends
    if data.__class__.__module__.startswith("pydantic"):
        return str(data)

    return data


def entity_to_dict(entry: Any) -> Dict[str, Any]:
    """
    Flatten an entry into ``{column_name: value}``.

    Accepts mappings, pydantic models, dataclass instances and plain objects
    (for instance an instance of an `entity`-decorated class). Attribute names
    are converted to column names the same way `entity` converts them.
    """
    if isinstance(entry, Mapping):
        raw = dict(entry)
    elif is_dataclass(entry) and not isinstance(entry, type):
        raw = {f.name: getattr(entry, f.name) for f in fields(entry)}
    elif hasattr(entry, "model_dump") and callable(getattr(entry, "model_dump")):
        raw = {k: getattr(entry, k) for k in type(entry).model_fields}
    elif hasattr(entry, "__dict__"):
        raw = {k: v for k, v in vars(entry).items() if not k.startswith("__")}
    else:
        raise TypeError(
            f"Cannot convert {type(entry).__name__} to a row; "
            f"expected a mapping, a pydantic model, a dataclass or an object"
        )

    return {to_snake_case(k): prepare_for_storage(v) for k, v in raw.items()}
