# tests/database_implementations/test_injection.py
import pytest

from async_liteorm import Db, FindOptions, Table

PAYLOADS = [
    "x'; DROP TABLE card; --",
    "' OR '1'='1",
    '" OR ""="',
    "Robert'); DELETE FROM card WHERE ('1'='1",
    "%",
    "_",
    "\\",
]


@pytest.mark.parametrize("payload", PAYLOADS)
@pytest.mark.asyncio
async def test_literals_only_match_themselves(db: Db, cards: Table, payload: str):
    await db.create(cards, {"_id": "evil", "front": payload, "tags": [payload]})

    assert [r["_id"] for r in await db.all(cards, {"front": payload})] == ["evil"]
    assert [r["_id"] for r in await db.all(cards, {"front": {"$substr": payload}})] == ["evil"]
    assert [r["_id"] for r in await db.all(cards, {"tags": payload})] == ["evil"]
    assert [r["_id"] for r in await db.all(cards, {"back": {"$in": [payload, "x"]}})] == []

    # nothing else was touched
    assert await db.count(cards) == 3
    assert (await db.get(cards, "evil"))["front"] == payload


@pytest.mark.parametrize("payload", PAYLOADS)
@pytest.mark.asyncio
async def test_update_and_delete_are_scoped(db: Db, cards: Table, payload: str):
    assert await db.update(cards, {"front": payload}, {"back": payload}) == 0
    assert await db.delete(cards, {"front": {"$substr": payload}}) == 0
    assert await db.count(cards) == 2


@pytest.mark.asyncio
async def test_statements_carry_no_literals(db: Db, cards: Table):
    statements = []
    db.on("find-sql", lambda event: statements.append(event.stmt))
    payload = "x'; DROP TABLE card; --"
    await db.all(
        cards,
        {"$or": [{"front": payload}, {"tags": {"$in": [payload]}}]},
        options=FindOptions(limit=5, offset=1),
    )
    (stmt,) = statements
    assert "DROP" not in stmt
    assert "LIMIT 5" not in stmt and "OFFSET 1" not in stmt


@pytest.mark.asyncio
async def test_reserved_word_column(db: Db, cards: Table):
    rows = await db.all(cards, {"order": {"$gte": 1}}, select=["order"], options=FindOptions(sort_by="order"))
    assert rows == [{"order": 1}, {"order": 2}]
