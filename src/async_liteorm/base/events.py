# src/async_liteorm/base/events.py
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Union

from .params import SQLParams

Listener = Callable[[Any], Union[None, Awaitable[None]]]

# --- Payloads ---


@dataclass
class BuildSqlEvent:
    """DDL statement about to run."""

    stmt: str


@dataclass
class SqlEvent:
    """Compiled statement and its bound parameters, right before execution."""

    stmt: str
    params: SQLParams


@dataclass
class PreCreateEvent:
    """`entry` and `postfix` may be mutated by listeners."""

    entry: Dict[str, Any]
    postfix: List[str] = field(default_factory=list)


@dataclass
class PreUpdateEvent:
    """`set` may be mutated by listeners."""

    stmt: str
    params: SQLParams
    set: Dict[str, Any]


@dataclass
class PreDeleteEvent:
    stmt: str
    params: SQLParams


@dataclass
class PreFindEvent:
    cond: Any
    select: Any
    tables: List[Any]
    options: Any


TABLE_EVENTS = frozenset(
    {
        "build-sql",
        "pre-create",
        "create-sql",
        "pre-update",
        "update-sql",
        "pre-delete",
        "delete-sql",
    }
)
DB_EVENTS = frozenset({"pre-find", "find-sql"})


class EventEmitter:
    """
    Ordered per-instance listener registry.

    Listeners run one after another in registration order; coroutine
    listeners are awaited before the next one starts. Exceptions propagate
    to the caller and abort the operation that emitted the event.
    """

    def __init__(self, events: FrozenSet[str], owner: Optional[str] = None):
        self._events = events
        self._owner = owner or self.__class__.__name__
        self._listeners: Dict[str, List[Listener]] = {e: [] for e in events}

    def _check(self, event: str) -> None:
        if event not in self._events:
            raise ValueError(
                f"Unknown event '{event}' for {self._owner}; "
                f"expected one of {sorted(self._events)}"
            )

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        """Register `listener`; returns a callable that unregisters it."""
        self._check(event)
        self._listeners[event].append(listener)
        return lambda: self.off(event, listener)

    def off(self, event: str, listener: Optional[Listener] = None) -> None:
        """Remove one listener, or every listener of `event` when none is given."""
        self._check(event)
        if listener is None:
            self._listeners[event].clear()
            return
        if listener in self._listeners[event]:
            self._listeners[event].remove(listener)

    def listener_count(self, event: str) -> int:
        self._check(event)
        return len(self._listeners[event])

    async def emit(self, event: str, payload: Any) -> None:
        self._check(event)
        for listener in list(self._listeners[event]):
            result = listener(payload)
            if inspect.isawaitable(result):
                await result
