# tests/base/test_events.py
import pytest

from async_liteorm.base.events import BuildSqlEvent, EventEmitter, TABLE_EVENTS


@pytest.mark.asyncio
async def test_listeners_run_in_registration_order():
    emitter = EventEmitter(TABLE_EVENTS)
    calls = []

    async def second(event):
        calls.append(("second", event.stmt))

    emitter.on("build-sql", lambda event: calls.append(("first", event.stmt)))
    emitter.on("build-sql", second)
    await emitter.emit("build-sql", BuildSqlEvent("CREATE TABLE x (a)"))

    assert calls == [("first", "CREATE TABLE x (a)"), ("second", "CREATE TABLE x (a)")]


@pytest.mark.asyncio
async def test_unsubscribe():
    emitter = EventEmitter(TABLE_EVENTS)
    calls = []
    unsubscribe = emitter.on("build-sql", calls.append)
    assert emitter.listener_count("build-sql") == 1

    unsubscribe()
    await emitter.emit("build-sql", BuildSqlEvent("x"))
    assert calls == []

    emitter.on("build-sql", calls.append)
    emitter.on("build-sql", print)
    emitter.off("build-sql")
    assert emitter.listener_count("build-sql") == 0


@pytest.mark.asyncio
async def test_listener_errors_propagate():
    emitter = EventEmitter(TABLE_EVENTS)

    def boom(event):
        raise RuntimeError("listener failed")

    emitter.on("build-sql", boom)
    with pytest.raises(RuntimeError):
        await emitter.emit("build-sql", BuildSqlEvent("x"))


def test_unknown_event_is_rejected():
    emitter = EventEmitter(TABLE_EVENTS)
    with pytest.raises(ValueError):
        emitter.on("post-create", print)
