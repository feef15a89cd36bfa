# tests/conftest.py
import logging
import uuid
from datetime import datetime, timezone
from logging import LoggerAdapter
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from async_liteorm import Db, DbSettings, Table, entity, primary, prop


# --- Entities ---
@entity(name="card", timestamp=True)
class Card:
    """Flash card, the main fixture entity."""

    id: str = primary(name="_id", default=lambda: uuid.uuid4().hex)
    front: str = prop()
    back: Optional[str] = prop()
    next_review: Optional[datetime] = prop(index=True)
    tags: Optional[List[str]] = prop()
    stats: Optional[Dict[str, Any]] = prop()
    # reserved word as a column name
    order: Optional[int] = prop()


@entity(name="note")
class Note:
    id: int = primary(autoincrement=True)
    card_id: str = prop(references="card(_id)")
    body: str = prop(collate="NOCASE")
    pinned: bool = prop(default=False)


@entity(name="deck_card", primary=["deck", "position"], without_rowid=True)
class DeckCard:
    deck: str
    position: int
    card_id: str


CARD_ROWS = [
    {
        "_id": "c1",
        "front": "Lorem ipsum",
        "back": "first",
        "next_review": datetime(2025, 1, 1, tzinfo=timezone.utc),
        "tags": ["a", "b"],
        "order": 1,
    },
    {
        "_id": "c2",
        "front": "dolor",
        "next_review": datetime(2031, 1, 1, tzinfo=timezone.utc),
        "tags": ["c"],
        "order": 2,
    },
]


# --- Database fixtures ---
@pytest_asyncio.fixture(scope="function")
async def db():
    """Provides a Db over a fresh in-memory SQLite database."""
    database = await Db.connect(DbSettings(filename=":memory:"))
    try:
        yield database
    finally:
        await database.close()


@pytest.fixture(scope="function")
def card_table() -> Table:
    return Table(Card)


@pytest.fixture(scope="function")
def note_table() -> Table:
    return Table(Note)


@pytest.fixture(scope="function")
def deck_card_table() -> Table:
    return Table(DeckCard)


@pytest_asyncio.fixture(scope="function")
async def cards(db: Db, card_table: Table) -> Table:
    """Card table created and filled with CARD_ROWS."""
    await db.init([card_table])
    for row in CARD_ROWS:
        await db.create(card_table, row)
    return card_table


@pytest_asyncio.fixture(scope="function")
async def notes(db: Db, cards: Table, note_table: Table) -> Table:
    """Note table with two notes on c1 and one on c2."""
    await db.init([note_table])
    await db.create(note_table, {"card_id": "c1", "body": "Remember the Latin"})
    await db.create(note_table, {"card_id": "c1", "body": "second note", "pinned": True})
    await db.create(note_table, {"card_id": "c2", "body": "Other card"})
    return note_table


# --- Logger Fixture ---
@pytest.fixture
def logger():
    """Create a test logger."""
    _logger = logging.getLogger("test_liteorm_logger")
    if not _logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        handler.setLevel(logging.DEBUG)
        _logger.addHandler(handler)
        _logger.setLevel(logging.DEBUG)
        _logger.propagate = False
    return LoggerAdapter(_logger, {})
