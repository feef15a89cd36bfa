# src/async_liteorm/base/table.py
import copy
import inspect
import logging
from contextlib import asynccontextmanager
from typing import (
    Any,
    AsyncGenerator,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

import aiosqlite

from .events import (
    TABLE_EVENTS,
    BuildSqlEvent,
    EventEmitter,
    PreCreateEvent,
    PreDeleteEvent,
    PreUpdateEvent,
    SqlEvent,
)
from .identifiers import escape_identifier
from .metadata import ROWID, EntityMeta, PrimaryRow, PropRow, get_entity_meta
from .params import SQLParams
from .transforms import resolve_transform
from .types import RawSQL, StorageType
from .utils import entity_to_dict


class Column:
    """
    Typed handle on one column of a table.

    Holds no data; used in select lists, joins and sorting instead of raw
    strings so the owning table (and its transforms) stay known.
    """

    def __init__(
        self,
        name: str,
        table: "Table",
        row: Optional[Union[PropRow, PrimaryRow]] = None,
    ):
        self.name = name
        self.table = table
        self.row = row

    @property
    def table_name(self) -> str:
        return self.table.name

    @property
    def type(self) -> Optional[StorageType]:
        return self.row.type if self.row is not None else None

    @property
    def alias(self) -> str:
        """``<table>__<column>``, the alias used to keep joined columns apart."""
        return f"{self.table_name}__{self.name}"

    def sql(self) -> str:
        """Qualified, escaped reference: ``table.column``."""
        return escape_identifier(f"{self.table_name}.{self.name}")

    def __repr__(self) -> str:
        return f"Column({self.table_name}.{self.name})"


class ColumnSet(Mapping[str, Column]):
    """Column handles of a table, by name or attribute (``table.c.front``)."""

    def __init__(self, columns: Dict[str, Column]):
        self._columns = columns

    def __getattr__(self, name: str) -> Column:
        try:
            return self.__dict__["_columns"][name]
        except KeyError:
            raise AttributeError(f"No column named {name!r}") from None

    def __getitem__(self, name: str) -> Column:
        return self._columns[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def __repr__(self) -> str:
        return f"ColumnSet({list(self._columns)})"


def _default_clause(value: Any) -> Optional[str]:
    """DDL ``DEFAULT`` for values SQLite can hold as a literal; None otherwise."""
    if value is None or callable(value):
        return None
    if isinstance(value, RawSQL):
        return f"DEFAULT {value.content}"
    if isinstance(value, bool):
        return f"DEFAULT {int(value)}"
    if isinstance(value, (int, float)):
        return f"DEFAULT {value!r}"
    if isinstance(value, str):
        return "DEFAULT '" + value.replace("'", "''") + "'"
    return None


def _wants_entry(fn: Callable[..., Any]) -> bool:
    """True when `fn` has a required positional parameter."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return False
    for p in sig.parameters.values():
        if p.kind is inspect.Parameter.VAR_POSITIONAL:
            return True
        if (
            p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
            and p.default is inspect.Parameter.empty
        ):
            return True
    return False


async def _provide(provider: Any, arg: Dict[str, Any]) -> Any:
    """
    Evaluate a default/on-update provider.

    Callables taking a positional argument receive the entry (or SET mapping),
    others are called bare (``uuid4``, ``list``); coroutines are awaited.
    Plain values are copied, so rows never share a mutable default.
    """
    if not callable(provider):
        return copy.deepcopy(provider)
    value = provider(arg) if _wants_entry(provider) else provider()
    if inspect.isawaitable(value):
        value = await value
    return value


class Table(EventEmitter):
    """
    Runtime handle of one entity: DDL plus create/update/delete.

    Stateless with respect to data. Every operation takes the connection to
    run on; `Db` passes its own.
    """

    def __init__(self, entity: Union[type, EntityMeta]):
        self.meta: EntityMeta = get_entity_meta(entity).with_timestamps()
        super().__init__(TABLE_EVENTS, owner=f"Table[{self.meta.name}]")
        self.entity = entity if isinstance(entity, type) else None
        self._logger = logging.getLogger(
            f"{__name__}.{self.__class__.__name__}[{self.meta.name}]"
        )

        columns: Dict[str, Column] = {}
        primary = self.meta.primary
        if primary is not None and isinstance(primary.name, str):
            columns[primary.name] = Column(primary.name, self, primary)
        elif self.primary_key == ROWID and not self.meta.without_rowid:
            columns[ROWID] = Column(ROWID, self, None)
        for k, row in self.meta.prop.items():
            columns[k] = Column(k, self, row)
        self.c = ColumnSet(columns)

        self._register_value_hooks()

    # --- Properties ---
    @property
    def name(self) -> str:
        return self.meta.name

    @property
    def primary_key(self) -> str:
        return self.meta.primary_key

    @property
    def key_columns(self) -> Tuple[str, ...]:
        """Columns that address one row; several only for WITHOUT ROWID composite keys."""
        if self.primary_key == ROWID and self.meta.without_rowid:
            return self.meta.primary.names
        return (self.primary_key,)

    def key_sql(self) -> str:
        keys = [escape_identifier(k) for k in self.key_columns]
        return keys[0] if len(keys) == 1 else "(" + ", ".join(keys) + ")"

    def __repr__(self) -> str:
        return f"Table({self.name!r})"

    # --- Hooks ---
    def _value_rows(self) -> Iterator[Tuple[str, Union[PropRow, PrimaryRow]]]:
        primary = self.meta.primary
        if primary is not None and isinstance(primary.name, str):
            yield primary.name, primary
        yield from self.meta.prop.items()

    def _register_value_hooks(self) -> None:
        for key, row in self._value_rows():
            default = row.default
            needs_default = callable(default) or (
                default is not None and _default_clause(default) is None
            )
            if needs_default or row.on_change is not None:
                provider = default if needs_default else row.on_change
                self.on("pre-create", self._fill_on_create(key, provider))
            if row.on_update is not None or row.on_change is not None:
                provider = row.on_update if row.on_update is not None else row.on_change
                self.on("pre-update", self._fill_on_update(key, provider))

    def _fill_on_create(self, key: str, provider: Any) -> Callable[[PreCreateEvent], Any]:
        async def listener(event: PreCreateEvent) -> None:
            if event.entry.get(key) is None:
                event.entry[key] = await _provide(provider, event.entry)

        return listener

    def _fill_on_update(self, key: str, provider: Any) -> Callable[[PreUpdateEvent], Any]:
        async def listener(event: PreUpdateEvent) -> None:
            # an explicit None still clears the column
            if key not in event.set:
                event.set[key] = await _provide(provider, event.set)

        return listener

    # --- Connection/Session Management ---
    @asynccontextmanager
    async def _session(
        self, conn: aiosqlite.Connection, action: str
    ) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Run statements on the caller's connection; log and re-raise failures."""
        try:
            yield conn
        except Exception as e:
            self._logger.error(
                f"Error while {action} on table '{self.name}': {e}", exc_info=True
            )
            raise

    # --- Schema ---
    def schema_sql(self) -> List[str]:
        """``CREATE TABLE`` followed by every ``CREATE INDEX`` statement."""
        meta = self.meta
        cols: List[str] = []

        primary = meta.primary
        inline_primary = (
            primary is not None
            and isinstance(primary.name, str)
            and primary.type is not None
        )
        if inline_primary:
            cols.append(
                " ".join(
                    part
                    for part in (
                        escape_identifier(primary.name),
                        primary.type.native,
                        "PRIMARY KEY",
                        "AUTOINCREMENT" if primary.autoincrement else None,
                        _default_clause(primary.default),
                    )
                    if part
                )
            )

        for k, row in meta.prop.items():
            if row.type is None:
                continue
            cols.append(
                " ".join(
                    part
                    for part in (
                        escape_identifier(k),
                        row.type.native,
                        None if row.null else "NOT NULL",
                        f"COLLATE {row.collate}" if row.collate else None,
                        _default_clause(row.default),
                        f"REFERENCES {escape_identifier(row.references)}"
                        if row.references
                        else None,
                    )
                    if part
                )
            )

        if primary is not None and not inline_primary:
            cols.append(
                f"PRIMARY KEY ({', '.join(escape_identifier(k) for k in primary.names)})"
            )

        for spec in meta.unique:
            cols.append(
                f"CONSTRAINT {escape_identifier(spec.name)} UNIQUE "
                f"({', '.join(escape_identifier(k) for k in spec.keys)})"
            )
        for k, row in meta.prop.items():
            if row.unique:
                cols.append(
                    f"CONSTRAINT {escape_identifier(row.unique)} UNIQUE ({escape_identifier(k)})"
                )

        table = escape_identifier(meta.name)
        stmt = f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(cols)})"
        if meta.without_rowid:
            stmt += " WITHOUT ROWID"
        statements = [stmt]

        for spec in meta.index:
            statements.append(
                f"CREATE INDEX IF NOT EXISTS {escape_identifier(spec.name)} ON {table} "
                f"({', '.join(escape_identifier(k) for k in spec.keys)})"
            )
        for k, row in meta.prop.items():
            if row.index:
                statements.append(
                    f"CREATE INDEX IF NOT EXISTS {escape_identifier(row.index)} "
                    f"ON {table} ({escape_identifier(k)})"
                )
        return statements

    async def init(self, conn: aiosqlite.Connection) -> None:
        """Create the table and its indexes if they do not exist yet."""
        self._logger.info(f"Creating schema for table '{self.name}'...")
        async with self._session(conn, "creating schema"):
            for stmt in self.schema_sql():
                await self.emit("build-sql", BuildSqlEvent(stmt))
                self._logger.debug(f"Schema SQL: {stmt}")
                await conn.execute(stmt)
        self._logger.info(f"Schema creation/verification complete for '{self.name}'.")

    # --- Transforms ---
    def transform(self, key: str, method: str = "set") -> Callable[[Any], Any]:
        """
        Converter for one column: the column's own transform first, then the
        storage type default, then identity (also for unknown columns).
        """
        row = self.meta.prop.get(key)
        if row is not None:
            return resolve_transform(row.type, row.transform, method)
        primary = self.meta.primary
        if primary is not None and key in primary.names:
            return resolve_transform(primary.type, None, method)
        return resolve_transform(None, None, method)

    def _check_columns(self, keys: Any) -> None:
        known = set(self.meta.prop)
        if self.meta.primary is not None:
            known.update(self.meta.primary.names)
        known.add(ROWID)
        unknown = [k for k in keys if k not in known]
        if unknown:
            raise ValueError(f"Unknown column(s) {unknown} for table '{self.name}'")

    # --- CRUD ---
    async def create(
        self,
        conn: aiosqlite.Connection,
        entry: Any,
        postfix: Optional[str] = None,
        ignore_errors: bool = False,
        params: Optional[SQLParams] = None,
    ) -> int:
        """
        Insert one row and return its ROWID.

        Values that are None are left out, so column defaults apply. With
        `ignore_errors`, conflicting rows are skipped (``ON CONFLICT DO NOTHING``).
        """
        event = PreCreateEvent(
            entry=entity_to_dict(entry), postfix=[postfix] if postfix else []
        )
        if ignore_errors:
            event.postfix.append("ON CONFLICT DO NOTHING")
        await self.emit("pre-create", event)

        values = {k: v for k, v in event.entry.items() if v is not None}
        self._check_columns(values)

        params = params if params is not None else SQLParams()
        table = escape_identifier(self.name)
        if values:
            keys = ", ".join(escape_identifier(k) for k in values)
            tokens = ", ".join(
                params.add(self.transform(k, "set")(v)) for k, v in values.items()
            )
            stmt = f"INSERT INTO {table} ({keys}) VALUES ({tokens})"
        else:
            stmt = f"INSERT INTO {table} DEFAULT VALUES"
        if event.postfix:
            stmt += " " + " ".join(event.postfix)

        await self.emit("create-sql", SqlEvent(stmt, params))
        self._logger.debug(f"Create SQL: {stmt} | params: {params.values}")
        async with self._session(conn, "inserting a row"):
            cursor = await conn.execute(stmt, params.values)
            if ignore_errors and cursor.rowcount == 0:
                self._logger.warning(
                    f"Insert into '{self.name}' ignored by ON CONFLICT DO NOTHING."
                )
            return cursor.lastrowid

    async def update_by_sql(
        self,
        conn: aiosqlite.Connection,
        stmt: str,
        params: SQLParams,
        set_: Any,
    ) -> int:
        """
        ``UPDATE ... WHERE <key> IN (<stmt>)``.

        `stmt` is a sub-select of this table's key, typically from `Db.find_ids`,
        or a ``VALUES`` list of already resolved keys;
        `params` are its bound values and receive the SET values as well.
        Returns the number of updated rows.
        """
        event = PreUpdateEvent(stmt=stmt, params=params, set=entity_to_dict(set_))
        await self.emit("pre-update", event)
        self._check_columns(event.set)

        assignments = [
            f"{escape_identifier(k)} = {params.add(self.transform(k, 'set')(v))}"
            for k, v in event.set.items()
        ]
        if not assignments:
            self._logger.warning(f"Nothing to update on '{self.name}'.")
            return 0

        result_sql = (
            f"UPDATE {escape_identifier(self.name)} SET {', '.join(assignments)} "
            f"WHERE {self.key_sql()} IN ({stmt})"
        )
        await self.emit("update-sql", SqlEvent(result_sql, params))
        self._logger.debug(f"Update SQL: {result_sql} | params: {params.values}")
        async with self._session(conn, "updating rows"):
            cursor = await conn.execute(result_sql, params.values)
            return cursor.rowcount

    async def delete_by_sql(
        self,
        conn: aiosqlite.Connection,
        stmt: str,
        params: SQLParams,
    ) -> int:
        """``DELETE ... WHERE <key> IN (<stmt>)``; returns the number of deleted rows."""
        await self.emit("pre-delete", PreDeleteEvent(stmt=stmt, params=params))

        result_sql = (
            f"DELETE FROM {escape_identifier(self.name)} "
            f"WHERE {self.key_sql()} IN ({stmt})"
        )
        await self.emit("delete-sql", SqlEvent(result_sql, params))
        self._logger.debug(f"Delete SQL: {result_sql} | params: {params.values}")
        async with self._session(conn, "deleting rows"):
            cursor = await conn.execute(result_sql, params.values)
            return cursor.rowcount
