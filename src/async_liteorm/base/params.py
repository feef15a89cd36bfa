# src/async_liteorm/base/params.py

import random
from typing import Any, Dict, List

from .exceptions import ParameterCapacityExceededException

# SQLITE_LIMIT_VARIABLE_NUMBER for SQLite builds before 3.32.0
DEFAULT_MAX_PARAMS = 999

PARAM_PREFIX = "$"


class SafeIds:
    """
    A pre-shuffled pool of unique random identifiers.

    The pool is generated up front, so two ids popped from the same pool can
    never collide. Once every id is used, `pop` raises
    ParameterCapacityExceededException instead of handing out a duplicate.
    """

    def __init__(self, size: int = DEFAULT_MAX_PARAMS, width: int = 5):
        population = 16**width
        if size < 0 or size > population:
            raise ValueError(
                f"SafeIds size must be between 0 and {population}, got {size}"
            )
        self.size = size
        self._ids: List[str] = [
            f"p{n:0{width}x}" for n in random.sample(range(population), size)
        ]

    def pop(self) -> str:
        if not self._ids:
            raise ParameterCapacityExceededException(
                f"SQLITE_LIMIT_VARIABLE_NUMBER exceeded. (limit: {self.size})"
            )
        return self._ids.pop()

    def __len__(self) -> int:
        return len(self._ids)


class SQLParams:
    """
    Named-parameter binder for a single statement.

    Every literal of a compiled statement goes through `add`, which returns
    the placeholder (``$p1a2b3``) to interpolate into the SQL text and records
    the value behind it. Construct one binder per statement (or per
    find -> update/delete chain sharing a sub-select), never share one
    between unrelated statements.
    """

    def __init__(self, capacity: int = DEFAULT_MAX_PARAMS):
        self.capacity = capacity
        self._ids = SafeIds(capacity)
        self.data: Dict[str, Any] = {}

    def pop(self) -> str:
        """Reserve a placeholder whose value is assigned later."""
        return PARAM_PREFIX + self._ids.pop()

    def add(self, value: Any) -> str:
        token = self.pop()
        self.data[token] = value
        return token

    def assign(self, token: str, value: Any) -> None:
        if not token.startswith(PARAM_PREFIX):
            raise ValueError(f"Not a parameter placeholder: {token!r}")
        self.data[token] = value

    @property
    def values(self) -> Dict[str, Any]:
        """Bound values keyed the way sqlite3 named binding expects (no prefix)."""
        return {k[len(PARAM_PREFIX):]: v for k, v in self.data.items()}

    def __len__(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        return f"SQLParams({self.data!r})"
