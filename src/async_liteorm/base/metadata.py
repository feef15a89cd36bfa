# src/async_liteorm/base/metadata.py
"""
Static entity metadata and the builders that produce it.

An entity is a plain class whose annotated attributes describe columns::

    @entity(name="card", timestamp=True)
    class Card:
        id: str = primary(name="_id")
        front: str = prop(unique=True)
        next_review: Optional[datetime] = prop(index=True)
        tags: List[str] = prop()

`entity` reads the type hints once, resolves names, storage types and
constraint names, and attaches the resulting `EntityMeta` as ``__meta__``.
"""

import logging
import re
from datetime import datetime, timezone
from typing import (
    Any,
    ClassVar,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
    get_origin,
    get_type_hints,
)

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from .exceptions import EntityDefinitionException
from .identifiers import escape_identifier
from .transforms import Transformer
from .types import StorageType, normalize_alias, storage_type_from_hint, unwrap_optional

logger = logging.getLogger(__name__)

ROWID = "ROWID"
CREATED_AT = "created_at"
UPDATED_AT = "updated_at"

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_COLLATION_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def to_snake_case(name: str) -> str:
    """``nextReview`` -> ``next_review``. Names already containing ``_`` are kept as is."""
    if "_" in name:
        return name
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _coerce_storage_type(value: Any) -> Any:
    if isinstance(value, str):
        return normalize_alias(value)
    return value


class _Row(BaseModel):
    model_config = ConfigDict(
        frozen=True, extra="forbid", arbitrary_types_allowed=True
    )

    @field_validator("type", mode="before", check_fields=False)
    @classmethod
    def _normalize_type(cls, v: Any) -> Any:
        return _coerce_storage_type(v)


class PrimaryRow(_Row):
    """Primary key description. A tuple `name` is a composite key."""

    name: Optional[Union[str, Tuple[str, ...]]] = None
    type: Optional[StorageType] = None
    autoincrement: bool = False
    default: Any = None
    on_update: Any = None
    on_change: Any = None

    @property
    def names(self) -> Tuple[str, ...]:
        if self.name is None:
            return ()
        if isinstance(self.name, str):
            return (self.name,)
        return tuple(self.name)


class PropRow(_Row):
    """One non-primary column."""

    name: Optional[str] = None
    type: Optional[StorageType] = None
    unique: Optional[Union[bool, str]] = None
    null: bool = False
    index: Optional[Union[bool, str]] = None
    collate: Optional[str] = None
    references: Optional[str] = None
    default: Any = None
    on_update: Any = None
    on_change: Any = None
    transform: Optional[Transformer] = None

    @field_validator("collate")
    @classmethod
    def _valid_collation(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not _COLLATION_NAME.match(v):
            raise ValueError(f"invalid collation name: {v!r}")
        return v


class IndexSpec(_Row):
    """A named composite UNIQUE constraint or index."""

    name: str
    keys: Tuple[str, ...]

    @field_validator("keys")
    @classmethod
    def _non_empty(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        if not v:
            raise ValueError("an index needs at least one key")
        return v


def _utcnow(_entry: Any = None) -> datetime:
    return datetime.now(timezone.utc)


class EntityMeta(_Row):
    """Immutable description of one table."""

    name: str
    primary: Optional[PrimaryRow] = None
    prop: Dict[str, PropRow]
    unique: Tuple[IndexSpec, ...] = ()
    index: Tuple[IndexSpec, ...] = ()
    created_at: bool = False
    updated_at: bool = False
    without_rowid: bool = False

    @model_validator(mode="after")
    def _check_consistency(self) -> "EntityMeta":
        if self.primary is not None and self.primary.autoincrement:
            if not isinstance(self.primary.name, str):
                raise EntityDefinitionException(
                    f"{self.name}: autoincrement requires a single-column primary key"
                )
            if self.primary.type not in (None, StorageType.INTEGER):
                raise EntityDefinitionException(
                    f"{self.name}: autoincrement requires an INTEGER primary key, "
                    f"got {self.primary.type.value}"
                )

        known = set(self.prop)
        if self.primary is not None and self.primary.type is not None:
            known.update(self.primary.names)
        if self.created_at:
            known.add(CREATED_AT)
        if self.updated_at:
            known.add(UPDATED_AT)

        if self.primary is not None and self.primary.type is None:
            missing = [k for k in self.primary.names if k not in known]
            if missing:
                raise EntityDefinitionException(
                    f"{self.name}: primary key column(s) {missing} are not declared"
                )
            known.update(self.primary.names)

        for spec in self.unique + self.index:
            missing = [k for k in spec.keys if k not in known]
            if missing:
                raise EntityDefinitionException(
                    f"{self.name}: {spec.name} refers to unknown column(s) {missing}"
                )
        return self

    @property
    def primary_key(self) -> str:
        """The single column addressing a row; ``ROWID`` for composite or missing keys."""
        if self.primary is not None and len(self.primary.names) == 1:
            return self.primary.names[0]
        return ROWID

    def with_timestamps(self) -> "EntityMeta":
        """Return a copy with the ``created_at``/``updated_at`` columns materialized."""
        prop = dict(self.prop)
        if self.created_at and CREATED_AT not in prop:
            prop[CREATED_AT] = PropRow(
                name=CREATED_AT, type=StorageType.DATE, default=_utcnow
            )
        if self.updated_at and UPDATED_AT not in prop:
            prop[UPDATED_AT] = PropRow(
                name=UPDATED_AT, type=StorageType.DATE, on_change=_utcnow
            )
        if len(prop) == len(self.prop):
            return self
        return self.model_copy(update={"prop": prop})


# --- Builders ---


def primary(
    name: Optional[str] = None,
    type: Optional[Union[str, StorageType]] = None,
    autoincrement: bool = False,
    default: Any = None,
    on_update: Any = None,
    on_change: Any = None,
) -> PrimaryRow:
    """Mark a class attribute as the primary key."""
    if autoincrement:
        type = StorageType.INTEGER
        default = None
    return PrimaryRow(
        name=name,
        type=type,
        autoincrement=autoincrement,
        default=default,
        on_update=on_update,
        on_change=on_change,
    )


def _resolve_references(references: Any) -> Tuple[Optional[str], Optional[StorageType]]:
    """Turn a `references` argument into ``table(column)`` text and the target type."""
    from .table import Table

    if references is None:
        return None, None
    if isinstance(references, str):
        return references, None
    if isinstance(references, Table):
        meta = references.meta
        target = meta.primary_key
        target_type = meta.primary.type if meta.primary is not None else None
        return (
            f"{escape_identifier(meta.name)}({escape_identifier(target)})",
            target_type or StorageType.INTEGER,
        )
    if isinstance(references, tuple) and len(references) == 2:
        table, column = references
        if not isinstance(table, Table):
            raise EntityDefinitionException(
                f"references=(table, column) expects a Table, got {type(table).__name__}"
            )
        meta = table.meta
        if column in meta.prop:
            target_type = meta.prop[column].type
        elif meta.primary is not None and column in meta.primary.names:
            target_type = meta.primary.type
        else:
            raise EntityDefinitionException(
                f"{meta.name} has no column {column!r} to reference"
            )
        return (
            f"{escape_identifier(meta.name)}({escape_identifier(column)})",
            target_type or StorageType.INTEGER,
        )
    raise EntityDefinitionException(
        f"Unsupported references value: {references!r}"
    )


def prop(
    name: Optional[str] = None,
    type: Optional[Union[str, StorageType]] = None,
    unique: Optional[Union[bool, str]] = None,
    null: bool = False,
    index: Optional[Union[bool, str]] = None,
    collate: Optional[str] = None,
    references: Any = None,
    default: Any = None,
    on_update: Any = None,
    on_change: Any = None,
    transform: Optional[Union[Transformer, Mapping[str, Any]]] = None,
) -> PropRow:
    """
    Mark a class attribute as a column.

    `unique`/`index` may be ``True`` (named ``<col>_unique_idx``/``<col>_idx``)
    or an explicit name. `references` accepts a ``"table(col)"`` string, a
    `Table` (its primary key), or a ``(Table, column)`` pair; unless `type` is
    given, the column takes the referenced column's type.
    """
    ref_text, ref_type = _resolve_references(references)
    if isinstance(transform, Mapping):
        transform = Transformer(get=transform.get("get"), set=transform.get("set"))
    return PropRow(
        name=name,
        type=type if type is not None else ref_type,
        unique=unique or None,
        null=null,
        index=index or None,
        collate=collate,
        references=ref_text,
        default=default,
        on_update=on_update,
        on_change=on_change,
        transform=transform,
    )


def _hint_is_classvar(hint: Any) -> bool:
    return hint is ClassVar or get_origin(hint) is ClassVar


def _to_index_specs(
    entries: Optional[Iterable[Any]], kind: str
) -> Tuple[IndexSpec, ...]:
    specs: List[IndexSpec] = []
    for entry in entries or ():
        if isinstance(entry, IndexSpec):
            specs.append(entry)
        elif isinstance(entry, Mapping):
            specs.append(IndexSpec(name=entry["name"], keys=tuple(entry["keys"])))
        elif isinstance(entry, str):
            key = to_snake_case(entry)
            specs.append(IndexSpec(name=f"{key}_idx", keys=(key,)))
        elif isinstance(entry, Sequence):
            keys = tuple(to_snake_case(k) for k in entry)
            specs.append(IndexSpec(name="_".join(keys) + "_idx", keys=keys))
        else:
            raise EntityDefinitionException(f"Invalid {kind} entry: {entry!r}")
    return tuple(specs)


def _timestamp_flags(timestamp: Union[bool, Mapping[str, bool]]) -> Tuple[bool, bool]:
    if timestamp is True:
        return True, True
    if not timestamp:
        return False, False
    return bool(timestamp.get(CREATED_AT, False)), bool(timestamp.get(UPDATED_AT, False))


def build_entity_meta(
    cls: type,
    name: Optional[str] = None,
    primary: Optional[Union[str, Sequence[str]]] = None,
    unique: Optional[Iterable[Any]] = None,
    index: Optional[Iterable[Any]] = None,
    timestamp: Union[bool, Mapping[str, bool]] = False,
    without_rowid: bool = False,
) -> EntityMeta:
    try:
        hints = get_type_hints(cls)
    except Exception as e:
        raise EntityDefinitionException(
            f"Could not resolve type hints of {cls.__name__}: {e}"
        ) from e

    attrs: Dict[str, Any] = {
        k: v for k, v in hints.items() if not k.startswith("__") and not _hint_is_classvar(v)
    }
    for attr, value in vars(cls).items():
        if isinstance(value, (PrimaryRow, PropRow)) and attr not in attrs:
            attrs[attr] = None

    primary_row: Optional[PrimaryRow] = None
    props: Dict[str, PropRow] = {}

    for attr, hint in attrs.items():
        marker = getattr(cls, attr, None)
        inner, is_optional = unwrap_optional(hint) if hint is not None else (None, False)

        if isinstance(marker, PrimaryRow):
            if primary_row is not None:
                raise EntityDefinitionException(
                    f"{cls.__name__} declares more than one primary key"
                )
            col_type = marker.type
            if col_type is None and inner is not None:
                col_type = storage_type_from_hint(inner)
            primary_row = marker.model_copy(
                update={
                    "name": to_snake_case(marker.name or attr),
                    "type": col_type or StorageType.INTEGER,
                }
            )
            continue

        row = marker if isinstance(marker, PropRow) else PropRow()
        col_name = to_snake_case(row.name or attr)
        col_type = row.type
        if col_type is None:
            if inner is None:
                raise EntityDefinitionException(
                    f"{cls.__name__}.{attr} has neither a type hint nor an explicit type"
                )
            col_type = storage_type_from_hint(inner)

        update: Dict[str, Any] = {
            "name": col_name,
            "type": col_type,
            "null": row.null or is_optional,
        }
        if row.unique is True:
            update["unique"] = f"{col_name}_unique_idx"
        if row.index is True:
            update["index"] = f"{col_name}_idx"
        props[col_name] = row.model_copy(update=update)

    if primary_row is None and primary is not None:
        keys = (primary,) if isinstance(primary, str) else tuple(primary)
        primary_row = PrimaryRow(name=tuple(to_snake_case(k) for k in keys))

    created_at, updated_at = _timestamp_flags(timestamp)

    return EntityMeta(
        name=to_snake_case(name or cls.__name__),
        primary=primary_row,
        prop=props,
        unique=_to_index_specs(unique, "unique"),
        index=_to_index_specs(index, "index"),
        created_at=created_at,
        updated_at=updated_at,
        without_rowid=without_rowid,
    )


def entity(
    name: Optional[str] = None,
    *,
    primary: Optional[Union[str, Sequence[str]]] = None,
    unique: Optional[Iterable[Any]] = None,
    index: Optional[Iterable[Any]] = None,
    timestamp: Union[bool, Mapping[str, bool]] = False,
    without_rowid: bool = False,
):
    """Class decorator attaching an `EntityMeta` as ``__meta__``."""

    def decorator(cls: type) -> type:
        meta = build_entity_meta(
            cls,
            name=name,
            primary=primary,
            unique=unique,
            index=index,
            timestamp=timestamp,
            without_rowid=without_rowid,
        )
        cls.__meta__ = meta
        logger.debug(
            f"Entity {cls.__name__} -> table '{meta.name}' "
            f"(primary: {meta.primary_key}, columns: {list(meta.prop)})"
        )
        return cls

    return decorator


def get_entity_meta(source: Any) -> EntityMeta:
    """Accept an `EntityMeta` or a class decorated with `entity`."""
    if isinstance(source, EntityMeta):
        return source
    meta = getattr(source, "__meta__", None)
    if not isinstance(meta, EntityMeta):
        raise EntityDefinitionException(
            f"{source!r} is not an entity; decorate it with @entity()"
        )
    return meta
