# tests/database_implementations/test_initialization.py
import sqlite3
from logging import LoggerAdapter

import aiosqlite
import pytest

from async_liteorm import Db, DbSettings, Table, sql
from async_liteorm.base.metadata import EntityMeta


async def table_names(db: Db):
    cursor = await db.conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row[0] for row in await cursor.fetchall()}


async def index_names(db: Db):
    cursor = await db.conn.execute("SELECT name FROM sqlite_master WHERE type = 'index'")
    return {row[0] for row in await cursor.fetchall()}


@pytest.mark.asyncio
async def test_init_is_idempotent(db: Db, card_table: Table, note_table: Table, logger: LoggerAdapter):
    await db.init([card_table, note_table])
    await db.init([card_table, note_table])
    assert {"card", "note"} <= await table_names(db)
    assert "next_review_idx" in await index_names(db)
    logger.info("Schema created twice without errors.")


def test_schema_sql(card_table: Table, note_table: Table):
    create, *indexes = card_table.schema_sql()
    assert create.startswith("CREATE TABLE IF NOT EXISTS card (")
    assert "_id TEXT PRIMARY KEY" in create
    assert "front TEXT NOT NULL" in create
    assert "back TEXT," in create
    assert '"order" INTEGER' in create
    assert "next_review INTEGER" in create
    assert "created_at INTEGER" in create
    assert indexes == [
        "CREATE INDEX IF NOT EXISTS next_review_idx ON card (next_review)"
    ]

    (create,) = note_table.schema_sql()
    assert "id INTEGER PRIMARY KEY AUTOINCREMENT" in create
    assert "body TEXT NOT NULL COLLATE NOCASE" in create
    assert "pinned INTEGER NOT NULL DEFAULT 0" in create
    assert "REFERENCES card(_id)" in create


def test_without_rowid_schema(deck_card_table: Table):
    (create,) = deck_card_table.schema_sql()
    assert "PRIMARY KEY (deck, position)" in create
    assert create.endswith(") WITHOUT ROWID")
    assert "ROWID" not in deck_card_table.c


@pytest.mark.asyncio
async def test_build_sql_event(db: Db, card_table: Table):
    seen = []
    card_table.on("build-sql", lambda event: seen.append(event.stmt))
    await db.init([card_table])
    assert seen == card_table.schema_sql()
    assert all(isinstance(s, str) for s in seen)


@pytest.mark.asyncio
async def test_unique_constraints_and_raw_defaults(db: Db):
    meta = EntityMeta(
        name="account",
        primary={"name": "id", "type": "INTEGER"},
        prop={
            "email": {"name": "email", "type": "TEXT", "unique": "email_unique_idx"},
            "joined": {"name": "joined", "type": "TEXT", "default": sql("CURRENT_TIMESTAMP")},
            "tier": {"name": "tier", "type": "TEXT", "default": "it's free"},
        },
        unique=[{"name": "email_tier_idx", "keys": ["email", "tier"]}],
    )
    table = Table(meta)
    (create,) = table.schema_sql()
    assert "CONSTRAINT email_tier_idx UNIQUE (email, tier)" in create
    assert "CONSTRAINT email_unique_idx UNIQUE (email)" in create
    assert "DEFAULT CURRENT_TIMESTAMP" in create
    assert "DEFAULT 'it''s free'" in create

    await db.init([table])
    await db.create(table, {"email": "a@example.com"})
    row = await db.first(table, {"email": "a@example.com"})
    assert row["tier"] == "it's free"
    assert row["joined"]

    with pytest.raises(sqlite3.IntegrityError):
        await db.create(table, {"email": "a@example.com"})


@pytest.mark.asyncio
async def test_connect_applies_pragmas():
    async with await Db.connect(DbSettings(journal_mode="MEMORY")) as db:
        cursor = await db.conn.execute("PRAGMA foreign_keys")
        assert (await cursor.fetchone())[0] == 1
        cursor = await db.conn.execute("PRAGMA journal_mode")
        assert (await cursor.fetchone())[0] == "memory"


@pytest.mark.asyncio
async def test_external_connection_is_not_closed():
    conn = await aiosqlite.connect(":memory:")
    try:
        db = Db(conn)
        await db.close()
        cursor = await conn.execute("SELECT 1")
        assert (await cursor.fetchone())[0] == 1
    finally:
        await conn.close()


@pytest.mark.asyncio
async def test_external_row_factory_is_left_alone(card_table: Table):
    conn = await aiosqlite.connect(":memory:")
    try:
        db = Db(conn)
        await db.init([card_table])
        await db.create(card_table, {"_id": "x", "front": "kept"})
        assert (await db.get(card_table, "x"))["front"] == "kept"
        assert conn.row_factory is None
    finally:
        await conn.close()


def test_db_requires_an_aiosqlite_connection():
    with pytest.raises(TypeError):
        Db(object())
