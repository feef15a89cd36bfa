# src/async_liteorm/db.py
import dataclasses
import inspect
import logging
from contextlib import asynccontextmanager
from logging import LoggerAdapter
from typing import (
    Any,
    AsyncGenerator,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Sequence,
    Tuple,
    Union,
)

import aiosqlite

from async_liteorm.base.condition import ConditionDocument, compile_condition
from async_liteorm.base.events import DB_EVENTS, EventEmitter, PreFindEvent, SqlEvent
from async_liteorm.base.exceptions import ObjectNotFoundException
from async_liteorm.base.identifiers import escape_identifier, quote_identifier
from async_liteorm.base.options import FindOptions, Join, TableSet
from async_liteorm.base.params import SQLParams
from async_liteorm.base.table import Column, Table
from async_liteorm.base.types import RawSQL, sql
from async_liteorm.config import DbSettings

Source = Union[Table, Sequence[Union[Table, Join]]]
Select = Union[str, Mapping[str, Union[Column, RawSQL, str]], Sequence[Union[Column, str]]]

base_logger = logging.getLogger(__name__)


class IdSelect(NamedTuple):
    """Key sub-select (or ``VALUES`` list of resolved keys) of one table, with its binder."""

    table: Table
    stmt: str
    params: SQLParams


class _SelectEntry(NamedTuple):
    sql: str
    column: Optional[Column]


class _CompiledFind(NamedTuple):
    stmt: str
    params: SQLParams
    entries: Dict[str, _SelectEntry]


class Db(EventEmitter):
    """
    Query orchestrator over one aiosqlite connection.

    `Db.connect()` opens and owns a connection. `Db(connection)` wraps an
    externally managed one; commit/rollback then stay with the caller, and its
    `row_factory` is left as it is.

    Query methods take a `source`, either a single `Table` or a sequence
    ``[table, Join(...) | table, ...]``, and a condition given as a document,
    a parsed condition node or the compact text syntax.
    """

    def __init__(
        self,
        connection: aiosqlite.Connection,
        settings: Optional[DbSettings] = None,
        logger: Optional[Union[logging.Logger, LoggerAdapter]] = None,
    ):
        if not isinstance(connection, aiosqlite.Connection):
            raise TypeError("connection must be an instance of aiosqlite.Connection")
        super().__init__(DB_EVENTS, owner="Db")

        self.conn = connection
        self.settings = settings or DbSettings()
        self.tables: Dict[str, Table] = {}
        self._owns_connection = False
        self._logger = logger or logging.getLogger(
            f"{__name__}.{self.__class__.__name__}[{self.settings.filename}]"
        )

    # --- Connection lifecycle ---
    @classmethod
    async def connect(
        cls,
        target: Union[str, DbSettings] = ":memory:",
        logger: Optional[Union[logging.Logger, LoggerAdapter]] = None,
    ) -> "Db":
        """Open a connection configured from `target` (a filename or settings)."""
        settings = target if isinstance(target, DbSettings) else DbSettings(filename=str(target))
        kwargs: Dict[str, Any] = {}
        if settings.autocommit:
            kwargs["isolation_level"] = None
        try:
            conn = await aiosqlite.connect(settings.filename, **kwargs)
        except Exception as e:
            base_logger.error(
                f"Failed to open SQLite database {settings.filename}: {e}", exc_info=True
            )
            raise

        try:
            if settings.foreign_keys:
                await conn.execute("PRAGMA foreign_keys = ON")
            if settings.journal_mode:
                await conn.execute(f"PRAGMA journal_mode = {settings.journal_mode}")
        except Exception as e:
            base_logger.error(
                f"Failed to configure SQLite connection to {settings.filename}: {e}",
                exc_info=True,
            )
            await conn.close()
            raise

        db = cls(conn, settings=settings, logger=logger)
        db._owns_connection = True
        db._logger.info(f"Connected to SQLite database '{settings.filename}'.")
        return db

    async def close(self) -> None:
        """Close the connection if this Db opened it."""
        if self._owns_connection:
            await self.conn.close()
            self._owns_connection = False
            self._logger.info(f"Closed SQLite database '{self.settings.filename}'.")
        else:
            self._logger.debug("Connection is externally managed; not closing it.")

    async def __aenter__(self) -> "Db":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @asynccontextmanager
    async def _session(self, action: str) -> AsyncGenerator[aiosqlite.Connection, None]:
        try:
            yield self.conn
        except Exception as e:
            self._logger.error(f"Error while {action}: {e}", exc_info=True)
            raise

    def _new_params(self) -> SQLParams:
        return SQLParams(self.settings.max_params)

    # --- Schema ---
    async def init(self, tables: Sequence[Table]) -> None:
        """
        Create tables one by one, in the given order, so that tables referenced
        by foreign keys can be listed first.
        """
        for table in tables:
            await table.init(self.conn)
            self.tables[table.name] = table
        self._logger.info(f"Initialized {len(tables)} table(s).")

    # --- Create ---
    async def create(
        self,
        table: Table,
        entry: Any,
        postfix: Optional[str] = None,
        ignore_errors: bool = False,
    ) -> int:
        """Insert `entry` into `table`; returns the new ROWID."""
        return await table.create(
            self.conn,
            entry,
            postfix=postfix,
            ignore_errors=ignore_errors,
            params=self._new_params(),
        )

    # --- Query building ---
    @staticmethod
    def _normalize_source(source: Source) -> Tuple[Table, List[Join]]:
        if isinstance(source, Table):
            return source, []
        items = list(source)
        if not items or not isinstance(items[0], Table):
            raise TypeError("A query source must start with a Table")
        joins = []
        for item in items[1:]:
            if isinstance(item, Table):
                joins.append(Join(to=item))
            elif isinstance(item, Join):
                joins.append(item)
            else:
                raise TypeError(f"Expected a Table or a Join, got {type(item).__name__}")
        return items[0], joins

    @staticmethod
    def _select_entries(select: Select, table0: Table, multi: bool) -> Dict[str, _SelectEntry]:
        if isinstance(select, str) and select == "*":
            return {alias: _SelectEntry(col.sql(), col) for alias, col in table0.c.items()}

        entries: Dict[str, _SelectEntry] = {}
        if isinstance(select, Mapping):
            for alias, target in select.items():
                if isinstance(target, Column):
                    entries[alias] = _SelectEntry(target.sql(), target)
                elif isinstance(target, RawSQL):
                    entries[alias] = _SelectEntry(target.content, None)
                else:
                    entries[alias] = _SelectEntry(escape_identifier(target), None)
            return entries

        if isinstance(select, str):
            select = [select]
        for target in select:
            if isinstance(target, Column):
                alias = target.alias if multi else target.name
                entries[alias] = _SelectEntry(target.sql(), target)
            else:
                entries[target] = _SelectEntry(escape_identifier(target), None)
        return entries

    @staticmethod
    def _join_sql(join: Join) -> str:
        to_table = join.table
        name = escape_identifier(to_table.name)
        if join.from_ is not None:
            target = (
                join.to.sql()
                if isinstance(join.to, Column)
                else escape_identifier(f"{to_table.name}.{to_table.primary_key}")
            )
            return f"{join.type or 'INNER'} JOIN {name} ON {join.from_.sql()} = {target}"
        if join.on:
            return f"{join.type or 'INNER'} JOIN {name} ON ({join.on})"
        return f"{join.type or 'NATURAL'} JOIN {name}"

    def _order_and_page(self, options: FindOptions, params: SQLParams) -> List[str]:
        parts: List[str] = []
        if options.random_order:
            parts.append("ORDER BY RANDOM()")
        elif options.sort_by is not None:
            key = (
                options.sort_by.sql()
                if isinstance(options.sort_by, Column)
                else escape_identifier(options.sort_by)
            )
            parts.append(f"ORDER BY {key} {'DESC' if options.sort_desc else 'ASC'}")

        if options.limit is not None:
            parts.append(f"LIMIT {params.add(options.limit)}")
        elif options.offset:
            self._logger.warning(
                "OFFSET given without LIMIT; emitting LIMIT -1 (no limit)."
            )
            parts.append("LIMIT -1")
        if options.offset:
            parts.append(f"OFFSET {params.add(options.offset)}")
        return parts

    async def _compile_find(
        self,
        source: Source,
        cond: Optional[ConditionDocument],
        select: Select,
        options: Optional[FindOptions],
        params: Optional[SQLParams] = None,
    ) -> _CompiledFind:
        table0, joins = self._normalize_source(source)
        options = options or FindOptions()
        params = params if params is not None else self._new_params()

        await self.emit(
            "pre-find",
            PreFindEvent(cond=cond, select=select, tables=[table0, *joins], options=options),
        )

        entries = self._select_entries(select, table0, multi=bool(joins))
        if not entries:
            raise ValueError("Nothing to select")
        select_sql = ", ".join(
            entry.sql
            if entry.sql == escape_identifier(alias)
            else f"{entry.sql} AS {quote_identifier(alias)}"
            for alias, entry in entries.items()
        )

        tables: Dict[str, Table] = {table0.name: table0}
        for join in joins:
            tables[join.table.name] = join.table

        where = compile_condition(cond if cond is not None else {}, tables, params)

        parts = [
            f"SELECT {select_sql}",
            f"FROM {escape_identifier(table0.name)}",
            *(self._join_sql(j) for j in joins),
            f"WHERE {where}",
        ]
        if options.postfix:
            parts.append(options.postfix)
        parts.extend(self._order_and_page(options, params))

        stmt = " ".join(parts)
        await self.emit("find-sql", SqlEvent(stmt, params))
        self._logger.debug(f"Find SQL: {stmt} | params: {params.values}")
        return _CompiledFind(stmt, params, entries)

    @staticmethod
    def _column_names(cursor: aiosqlite.Cursor) -> List[str]:
        return [d[0] for d in cursor.description or ()]

    @staticmethod
    def _parse_row(
        row: Sequence[Any], names: List[str], entries: Dict[str, _SelectEntry]
    ) -> Dict[str, Any]:
        # positional access only, so any row_factory of the caller's connection works
        result = dict(zip(names, row))
        for alias, value in result.items():
            entry = entries.get(alias)
            if entry is not None and entry.column is not None:
                col = entry.column
                result[alias] = col.table.transform(col.name, "get")(value)
        return result

    # --- Read ---
    async def all(
        self,
        source: Source,
        cond: Optional[ConditionDocument] = None,
        select: Select = "*",
        options: Optional[FindOptions] = None,
    ) -> List[Dict[str, Any]]:
        """Every matching row, with get-transforms applied per selected column."""
        compiled = await self._compile_find(source, cond, select, options)
        async with self._session("finding rows"):
            cursor = await self.conn.execute(compiled.stmt, compiled.params.values)
            names = self._column_names(cursor)
            rows = await cursor.fetchall()
            await cursor.close()
        return [self._parse_row(r, names, compiled.entries) for r in rows]

    async def iterate(
        self,
        source: Source,
        cond: Optional[ConditionDocument] = None,
        select: Select = "*",
        options: Optional[FindOptions] = None,
    ) -> AsyncGenerator[Dict[str, Any], None]:
        """Stream matching rows without loading them all."""
        compiled = await self._compile_find(source, cond, select, options)
        async with self._session("iterating rows"):
            async with self.conn.execute(compiled.stmt, compiled.params.values) as cursor:
                names = self._column_names(cursor)
                async for row in cursor:
                    yield self._parse_row(row, names, compiled.entries)

    async def each(
        self,
        source: Source,
        cond: Optional[ConditionDocument],
        callback: Callable[[Dict[str, Any]], Union[None, Awaitable[None]]],
        select: Select = "*",
        options: Optional[FindOptions] = None,
    ) -> int:
        """Call `callback` for each matching row in order; returns the row count."""
        count = 0
        async for row in self.iterate(source, cond, select, options):
            result = callback(row)
            if inspect.isawaitable(result):
                await result
            count += 1
        return count

    async def first(
        self,
        source: Source,
        cond: Optional[ConditionDocument] = None,
        select: Select = "*",
        options: Optional[FindOptions] = None,
    ) -> Optional[Dict[str, Any]]:
        options = dataclasses.replace(options or FindOptions(), limit=1)
        rows = await self.all(source, cond, select, options)
        return rows[0] if rows else None

    async def count(
        self,
        source: Source,
        cond: Optional[ConditionDocument] = None,
    ) -> int:
        row = await self.first(source, cond, {"count": sql("COUNT (*)")})
        return (row or {}).get("count") or 0

    async def get(
        self,
        table: Table,
        key: Any,
        select: Select = "*",
    ) -> Dict[str, Any]:
        """Row whose primary key equals `key`; raises ObjectNotFoundException."""
        if len(table.key_columns) != 1:
            raise TypeError(f"Table '{table.name}' has no single-column key to look up")
        row = await self.first(table, {table.key_columns[0]: key}, select)
        if row is None:
            raise ObjectNotFoundException(
                f"No row in '{table.name}' with {table.key_columns[0]} = {key!r}"
            )
        return row

    # --- Update / delete ---
    async def find_ids(
        self,
        source: Source,
        cond: Optional[ConditionDocument] = None,
        options: Optional[FindOptions] = None,
        tables: Optional[Sequence[Table]] = None,
    ) -> List[IdSelect]:
        """
        Compile one key sub-select per target table (default: every table of
        the source), each with its own binder, for `update_by_sql`/`delete_by_sql`.
        """
        table0, joins = self._normalize_source(source)
        in_source = [table0, *(j.table for j in joins)]
        targets = list(tables) if tables is not None else in_source
        for t in targets:
            if t not in in_source:
                raise ValueError(f"Table '{t.name}' is not part of the query source")

        result: List[IdSelect] = []
        for t in targets:
            select = {
                (f"{t.name}__id" if k == t.primary_key else f"{t.name}__{k}"): Column(k, t)
                for k in t.key_columns
            }
            compiled = await self._compile_find(source, cond, select, options)
            result.append(IdSelect(t, compiled.stmt, compiled.params))
        return result

    async def update(
        self,
        source: Source,
        cond: Optional[ConditionDocument],
        set_: Union[Mapping[str, Any], Sequence[TableSet], Any],
        options: Optional[FindOptions] = None,
    ) -> int:
        """
        Update matching rows; returns the number of rows changed.

        A plain mapping (or entity object) updates the first table of the
        source. A list of `TableSet` updates each listed table with its own
        values. With several targets, the keys of every target are read
        before the first write, so an earlier write cannot change the rows a
        later one touches.
        """
        table0, _ = self._normalize_source(source)
        if isinstance(set_, (list, tuple)) and all(isinstance(s, TableSet) for s in set_):
            plan = [(s.table, s.set) for s in set_]
        else:
            plan = [(table0, set_)]

        selects = await self.find_ids(source, cond, options, tables=[t for t, _ in plan])
        if len(plan) == 1:
            (ids,) = selects
            return await ids.table.update_by_sql(self.conn, ids.stmt, ids.params, plan[0][1])

        # all key sets are read before the first write can change what cond matches
        resolved = [await self._resolve_keys(ids) for ids in selects]
        total = 0
        for (table, values), keys in zip(plan, resolved):
            for batch in self._key_batches(table, keys):
                total += await table.update_by_sql(self.conn, batch.stmt, batch.params, values)
        return total

    async def delete(
        self,
        source: Source,
        cond: Optional[ConditionDocument] = None,
        options: Optional[FindOptions] = None,
        tables: Optional[Sequence[Table]] = None,
    ) -> int:
        """
        Delete matching rows from the first table of the source, or from each
        of `tables` in order. Returns the number of rows deleted. Keys of
        every target are resolved before the first row is deleted.
        """
        table0, _ = self._normalize_source(source)
        selects = await self.find_ids(source, cond, options, tables=tables or [table0])
        if len(selects) == 1:
            (ids,) = selects
            return await ids.table.delete_by_sql(self.conn, ids.stmt, ids.params)

        resolved = [await self._resolve_keys(ids) for ids in selects]
        total = 0
        for ids, keys in zip(selects, resolved):
            for batch in self._key_batches(ids.table, keys):
                total += await ids.table.delete_by_sql(self.conn, batch.stmt, batch.params)
        return total

    async def _resolve_keys(self, ids: IdSelect) -> List[Tuple[Any, ...]]:
        """Run a key sub-select and return the key of every matched row."""
        async with self._session(f"resolving keys of '{ids.table.name}'"):
            cursor = await self.conn.execute(ids.stmt, ids.params.values)
            rows = await cursor.fetchall()
            await cursor.close()
        # a join can repeat a key
        return list(dict.fromkeys(tuple(row) for row in rows))

    def _key_batches(self, table: Table, keys: List[Tuple[Any, ...]]) -> Iterator[IdSelect]:
        """Bound ``VALUES`` lists of resolved keys, each small enough for one statement."""
        width = len(table.key_columns)
        # leave room for a SET value on every column
        size = max(1, (self.settings.max_params - len(table.c) - 1) // width)
        for start in range(0, len(keys), size):
            params = self._new_params()
            rows = [
                "(" + ", ".join(params.add(v) for v in key) + ")"
                for key in keys[start:start + size]
            ]
            yield IdSelect(table, "VALUES " + ", ".join(rows), params)
