# tests/database_implementations/test_table_events.py
import uuid
from typing import List

import pytest

from async_liteorm import Db, Table, entity, primary, prop
from async_liteorm.base.events import PreCreateEvent, PreFindEvent, SqlEvent


@pytest.mark.asyncio
async def test_create_events(db: Db, card_table: Table):
    await db.init([card_table])
    seen = []

    def stamp(event: PreCreateEvent):
        event.entry.setdefault("back", "filled by listener")

    card_table.on("pre-create", stamp)
    card_table.on("create-sql", lambda event: seen.append(event))
    await db.create(card_table, {"_id": "e1", "front": "events"})

    (event,) = seen
    assert isinstance(event, SqlEvent)
    assert event.stmt.startswith("INSERT INTO card (")
    assert "events" in event.params.data.values()
    assert (await db.get(card_table, "e1"))["back"] == "filled by listener"


@pytest.mark.asyncio
async def test_update_and_delete_events(db: Db, cards: Table):
    seen = []
    cards.on("pre-update", lambda event: seen.append(("pre-update", dict(event.set))))
    cards.on("update-sql", lambda event: seen.append(("update-sql", event.stmt)))
    cards.on("pre-delete", lambda event: seen.append(("pre-delete", event.stmt)))
    cards.on("delete-sql", lambda event: seen.append(("delete-sql", event.stmt)))

    await db.update(cards, {"_id": "c1"}, {"back": "b"})
    await db.delete(cards, {"_id": "c1"})

    kinds = [kind for kind, _ in seen]
    assert kinds == ["pre-update", "update-sql", "pre-delete", "delete-sql"]
    # the updated_at hook is registered first, so listeners already see its value
    assert seen[0][1]["back"] == "b"
    assert "updated_at" in seen[0][1]
    assert seen[1][1].startswith("UPDATE card SET back = $")
    assert "updated_at = $" in seen[1][1]
    assert seen[3][1].startswith("DELETE FROM card WHERE _id IN (SELECT card._id")


@pytest.mark.asyncio
async def test_find_events(db: Db, cards: Table):
    seen = []

    async def on_pre_find(event: PreFindEvent):
        seen.append(("pre-find", event.cond))

    db.on("pre-find", on_pre_find)
    unsubscribe = db.on("find-sql", lambda event: seen.append(("find-sql", event.stmt)))
    await db.all(cards, {"front": "dolor"})

    assert seen[0] == ("pre-find", {"front": "dolor"})
    assert seen[1][0] == "find-sql"
    assert seen[1][1].startswith("SELECT card._id AS \"_id\"")

    unsubscribe()
    await db.count(cards)
    assert [kind for kind, _ in seen].count("find-sql") == 1


@pytest.mark.asyncio
async def test_default_providers(db: Db):
    async def next_code():
        return f"tag-{uuid.uuid4().hex[:8]}"

    def derive_label(entry):
        return entry["name"].upper()

    @entity(name="tag")
    class Tag:
        code: str = primary(default=next_code)
        name: str
        label: str = prop(default=derive_label)

    table = Table(Tag)
    await db.init([table])
    await db.create(table, {"name": "latin"})
    await db.create(table, {"code": "fixed", "name": "greek", "label": "Greek"})

    row = await db.first(table, {"name": "latin"})
    assert row["code"].startswith("tag-")
    assert row["label"] == "LATIN"
    assert (await db.get(table, "fixed"))["label"] == "Greek"


@pytest.mark.asyncio
async def test_mutable_defaults_are_not_shared(db: Db):
    @entity(name="deck")
    class Deck:
        id: int = primary(autoincrement=True)
        name: str
        labels: List[str] = prop(default=[])

    table = Table(Deck)
    await db.init([table])
    table.on("pre-create", lambda event: event.entry["labels"].append("seen"))
    await db.create(table, {"name": "first"})
    await db.create(table, {"name": "second"})

    rows = await db.all(table, {}, select=["name", "labels"])
    assert [r["labels"] for r in rows] == [["seen"], ["seen"]]
