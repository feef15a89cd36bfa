# src/async_liteorm/base/options.py
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

if TYPE_CHECKING:
    from .table import Column, Table

JOIN_TYPES = ("INNER", "LEFT", "LEFT OUTER", "CROSS", "NATURAL")


@dataclass
class FindOptions:
    """Sorting, pagination and trailing SQL for a find."""

    sort_by: Optional[Union[str, "Column"]] = None
    sort_desc: bool = False
    limit: Optional[int] = None
    offset: Optional[int] = None
    random_order: bool = False
    # Trusted SQL appended after the WHERE clause, before ORDER BY
    postfix: Optional[str] = None

    def __post_init__(self):
        for name in ("limit", "offset"):
            value = getattr(self, name)
            if value is not None and (
                not isinstance(value, int) or isinstance(value, bool) or value < 0
            ):
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")

    def __repr__(self) -> str:
        parts = []
        if self.sort_by is not None:
            parts.append(f"sort_by={self.sort_by!r}")
            parts.append(f"sort_desc={self.sort_desc!r}")
        if self.random_order:
            parts.append("random_order=True")
        if self.limit is not None:
            parts.append(f"limit={self.limit!r}")
        if self.offset is not None:
            parts.append(f"offset={self.offset!r}")
        if self.postfix:
            parts.append(f"postfix={self.postfix!r}")
        return f"FindOptions({', '.join(parts)})"


@dataclass
class Join:
    """
    One joined table of a multi-table query.

    - With `from_` (a column of an earlier table) the join condition is
      ``from_ = to``, where `to` is a Column or a Table (its primary key).
    - `on` is a trusted SQL join condition used when `from_` is not given.
    - With neither, the join is ``NATURAL`` unless `type` says otherwise.
    """

    to: Union["Table", "Column"]
    from_: Optional["Column"] = None
    on: Optional[str] = None
    type: Optional[str] = None

    def __post_init__(self):
        if self.type is not None:
            self.type = self.type.upper()
            if self.type not in JOIN_TYPES:
                raise ValueError(
                    f"Unsupported join type {self.type!r}; expected one of {JOIN_TYPES}"
                )

    @property
    def table(self) -> "Table":
        from .table import Table

        return self.to if isinstance(self.to, Table) else self.to.table


@dataclass
class TableSet:
    """SET values for one table of a multi-table update."""

    table: "Table"
    set: Dict[str, Any] = field(default_factory=dict)
