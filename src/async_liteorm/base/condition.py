# src/async_liteorm/base/condition.py
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional, Set, Union

from .exceptions import InvalidConditionException
from .identifiers import escape_identifier
from .params import SQLParams
from .transforms import STRING_ARRAY_SEPARATOR, TRANSFORMERS, to_epoch_millis
from .types import StorageType

log = logging.getLogger(__name__)

LIKE_ESCAPE = "\\"

_COLLATION_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
# Identifier tokens, dots for JSON paths and already-quoted segments
_FIELD_PATH = re.compile(r'^[\w$:."]+$')


class ConditionOperator(Enum):
    """Operators of the condition language, keyed by their document spelling."""

    # Bare value or bare list, no operator object
    MATCH = "$match"
    # Comparison
    EQ = "$eq"
    NE = "$ne"
    GT = "$gt"
    GTE = "$gte"
    LT = "$lt"
    LTE = "$lte"
    # Pattern
    LIKE = "$like"
    NLIKE = "$nlike"
    SUBSTR = "$substr"
    NSUBSTR = "$nsubstr"
    # Existence
    EXISTS = "$exists"
    # Membership
    IN = "$in"
    NIN = "$nin"


COLLATE_KEY = "$collate"

_OPERATOR_KEYS = {
    op.value: op for op in ConditionOperator if op is not ConditionOperator.MATCH
}

_COMPARISON_SQL = {
    ConditionOperator.EQ: "=",
    ConditionOperator.NE: "!=",
    ConditionOperator.GT: ">",
    ConditionOperator.GTE: ">=",
    ConditionOperator.LT: "<",
    ConditionOperator.LTE: "<=",
}


@dataclass
class ConditionExpression:
    """Base class for parsed condition nodes."""

    pass


@dataclass
class ConditionFilter(ConditionExpression):
    """``field_path <operator> value``, optionally compared under a collation."""

    field_path: str
    operator: ConditionOperator
    value: Any
    collate: Optional[str] = None


@dataclass
class ConditionLogical(ConditionExpression):
    """AND/OR over child expressions. No children compiles to ``TRUE``."""

    operator: Literal["and", "or"]
    conditions: List[ConditionExpression] = field(default_factory=list)


ConditionDocument = Union[str, Mapping[str, Any], ConditionExpression]


# --- Parsing ---


def parse_condition(doc: ConditionDocument) -> ConditionExpression:
    """
    Turn a condition document into a tree of condition nodes.

    Accepts an already parsed node, a mapping (``{"$or": [...]}``,
    ``{"$and": [...]}`` or ``{field: value | {"$op": value} | [values]}``), or
    the compact text syntax understood by `parse_query_string`.
    """
    if isinstance(doc, ConditionExpression):
        return doc
    if isinstance(doc, str):
        from .query_string import parse_query_string

        doc = parse_query_string(doc)
    if doc is None:
        return ConditionLogical("and", [])
    if not isinstance(doc, Mapping):
        raise InvalidConditionException(
            f"Condition must be a mapping, got {type(doc).__name__}"
        )

    if "$or" in doc and "$and" in doc:
        raise InvalidConditionException(
            "$or and $and cannot be combined at the same level; nest them instead"
        )

    conditions: List[ConditionExpression] = []
    for key, value in doc.items():
        if key in ("$or", "$and"):
            if not isinstance(value, (list, tuple)):
                raise InvalidConditionException(
                    f"{key} expects a list of conditions, got {type(value).__name__}"
                )
            conditions.append(
                ConditionLogical(key[1:], [parse_condition(el) for el in value])
            )
        else:
            conditions.extend(_parse_field(key, value))

    if len(conditions) == 1 and isinstance(conditions[0], ConditionLogical):
        return conditions[0]
    return ConditionLogical("and", conditions)


def _is_operator_object(value: Any) -> bool:
    return (
        isinstance(value, Mapping)
        and len(value) > 0
        and all(isinstance(k, str) and k.startswith("$") for k in value)
    )


def _parse_field(key: str, value: Any) -> List[ConditionFilter]:
    if not isinstance(key, str) or not _FIELD_PATH.match(key):
        raise InvalidConditionException(f"Invalid field path in condition: {key!r}")

    if _is_operator_object(value):
        ops = dict(value)
        collate = ops.pop(COLLATE_KEY, None)
        if collate is not None and (
            not isinstance(collate, str) or not _COLLATION_NAME.match(collate)
        ):
            raise InvalidConditionException(f"Invalid collation name: {collate!r}")
        if not ops:
            raise InvalidConditionException(
                f"{COLLATE_KEY} on '{key}' needs an operator to apply to"
            )

        unknown = [k for k in ops if k not in _OPERATOR_KEYS]
        if unknown:
            # Lenient fallback: compare against the whole object as JSON
            log.warning(
                f"Unknown operator(s) {unknown} on '{key}'; "
                f"falling back to equality with the JSON-encoded object"
            )
            return [
                ConditionFilter(
                    key,
                    ConditionOperator.MATCH,
                    json.dumps(dict(value), default=str),
                )
            ]

        filters = []
        for op_key, operand in ops.items():
            op = _OPERATOR_KEYS[op_key]
            _validate_operand(key, op, operand)
            filters.append(ConditionFilter(key, op, operand, collate))
        return filters

    if isinstance(value, Mapping):
        log.warning(
            f"Object value on '{key}' is not an operator object; "
            f"comparing against its JSON encoding"
        )
        return [
            ConditionFilter(
                key, ConditionOperator.MATCH, json.dumps(dict(value), default=str)
            )
        ]

    if isinstance(value, (set, frozenset, tuple)):
        value = list(value)
    return [ConditionFilter(key, ConditionOperator.MATCH, value)]


def _validate_operand(key: str, op: ConditionOperator, operand: Any) -> None:
    if op is ConditionOperator.EXISTS and not isinstance(operand, bool):
        raise InvalidConditionException(
            f"$exists on '{key}' expects true or false, got {operand!r}"
        )
    if op in (ConditionOperator.IN, ConditionOperator.NIN) and not isinstance(
        operand, (list, tuple, set, frozenset)
    ):
        raise InvalidConditionException(
            f"{op.value} on '{key}' expects a list, got {type(operand).__name__}"
        )


# --- Compiling ---


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so `value` only matches literally (use with ``ESCAPE '\\'``)."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def _bindable(value: Any) -> Any:
    """Coerce a right-hand side value to something sqlite3 can bind."""
    if isinstance(value, date):
        return to_epoch_millis(value)
    if isinstance(value, (dict, list, tuple, set, frozenset)):
        if isinstance(value, (set, frozenset)):
            value = sorted(value, key=str)
        return json.dumps(value, default=str)
    return value


def string_array_columns(tables: Mapping[str, Any]) -> Set[str]:
    """
    Escaped names under which a StringArray column may appear in a condition.

    Both the bare column name and the ``<table>__<column>`` select alias are
    recognized, for every table of the query.
    """
    names: Set[str] = set()
    for table in tables.values():
        meta = getattr(table, "meta", table)
        for col_name, row in meta.prop.items():
            if row.type is StorageType.STRING_ARRAY:
                names.add(escape_identifier(col_name))
                names.add(escape_identifier(f"{meta.name}__{col_name}"))
    return names


def qualified_columns(tables: Mapping[str, Any]) -> Dict[str, str]:
    """``{"<table>__<column>": "<table>.<column>"}`` for every column of every table."""
    columns: Dict[str, str] = {}
    for table in tables.values():
        meta = getattr(table, "meta", table)
        names = list(meta.prop)
        if meta.primary is not None:
            names.extend(meta.primary.names)
        for col_name in names:
            columns[f"{meta.name}__{col_name}"] = escape_identifier(
                f"{meta.name}.{col_name}"
            )
    return columns


class ConditionCompiler:
    """
    Compiles condition nodes into a boolean SQL expression.

    Every literal is added to `params`; the returned text only ever contains
    escaped identifiers, operator keywords and placeholders. Keys of the form
    ``<table>__<column>`` refer to that table's column directly, so they work
    in joined queries whether or not the column is selected.
    """

    def __init__(self, tables: Mapping[str, Any], params: SQLParams):
        self.params = params
        self._str_array_cols = string_array_columns(tables)
        self._qualified = qualified_columns(tables)

    def compile(self, node: ConditionExpression) -> str:
        if isinstance(node, ConditionLogical):
            return self._compile_logical(node)
        if isinstance(node, ConditionFilter):
            return self._compile_filter(node) or "TRUE"
        raise TypeError(f"Unknown condition node: {type(node).__name__}")

    def _compile_logical(self, node: ConditionLogical) -> str:
        parts = []
        for child in node.conditions:
            if isinstance(child, ConditionLogical):
                parts.append(self._compile_logical(child))
            else:
                clause = self._compile_filter(child)
                if clause is not None:
                    parts.append(clause)
        if not parts:
            return "TRUE"
        if len(parts) == 1:
            return f"({parts[0]})"
        joiner = " OR " if node.operator == "or" else " AND "
        return "(" + joiner.join(f"({p})" for p in parts) + ")"

    def _column(self, field_path: str) -> str:
        if field_path in self._qualified:
            return self._qualified[field_path]
        if "." in field_path:
            first, rest = field_path.split(".", 1)
            return (
                f"json_extract({escape_identifier(first)}, "
                f"'$.{escape_identifier(rest)}')"
            )
        return escape_identifier(field_path)

    def _contains(self, col: str, item: Any, negate: bool = False) -> str:
        pattern = (
            "%"
            + STRING_ARRAY_SEPARATOR
            + escape_like(str(item))
            + STRING_ARRAY_SEPARATOR
            + "%"
        )
        keyword = "NOT LIKE" if negate else "LIKE"
        return f"{col} {keyword} {self.params.add(pattern)} ESCAPE '{LIKE_ESCAPE}'"

    def _equals(self, col: str, value: Any, negate: bool = False) -> str:
        return f"{col} {'!=' if negate else '='} {self.params.add(_bindable(value))}"

    def _members(self, col: str, values: List[Any], negate: bool = False) -> str:
        tokens = ",".join(self.params.add(_bindable(v)) for v in values)
        return f"{col} {'NOT IN' if negate else 'IN'} ({tokens})"

    def _compile_filter(self, node: ConditionFilter) -> Optional[str]:
        col = self._column(node.field_path)
        is_str_array = escape_identifier(node.field_path) in self._str_array_cols
        if node.collate:
            col = f"{col} COLLATE {node.collate}"
        op = node.operator
        value = node.value

        if op is ConditionOperator.MATCH:
            if isinstance(value, list):
                if not value:
                    return None
                if is_str_array:
                    # every listed item must be present
                    return " AND ".join(self._contains(col, v) for v in value)
                if len(value) == 1:
                    return self._equals(col, value[0])
                return self._members(col, value)
            if is_str_array:
                return self._contains(col, value)
            return self._equals(col, value)

        if op is ConditionOperator.IN:
            values = list(value)
            if not values:
                return "0"
            if is_str_array:
                clauses = [self._contains(col, v) for v in values]
                return clauses[0] if len(clauses) == 1 else "(" + " OR ".join(clauses) + ")"
            if len(values) == 1:
                return self._equals(col, values[0])
            return self._members(col, values)

        if op is ConditionOperator.NIN:
            values = list(value)
            if not values:
                return None
            if is_str_array:
                return " AND ".join(self._contains(col, v, negate=True) for v in values)
            if len(values) == 1:
                return self._equals(col, values[0], negate=True)
            return self._members(col, values, negate=True)

        if op is ConditionOperator.EXISTS:
            return f"{col} IS {'NOT NULL' if value else 'NULL'}"

        if op in (ConditionOperator.SUBSTR, ConditionOperator.NSUBSTR):
            if not isinstance(value, str):
                value = _bindable(value)
            pattern = "%" + escape_like(str(value)) + "%"
            keyword = "NOT LIKE" if op is ConditionOperator.NSUBSTR else "LIKE"
            return f"{col} {keyword} {self.params.add(pattern)} ESCAPE '{LIKE_ESCAPE}'"

        if op in (ConditionOperator.LIKE, ConditionOperator.NLIKE):
            keyword = "NOT LIKE" if op is ConditionOperator.NLIKE else "LIKE"
            return f"{col} {keyword} {self.params.add(_bindable(value))}"

        if is_str_array and op in (ConditionOperator.EQ, ConditionOperator.NE):
            # whole-array comparison against the stored encoding
            items = value if isinstance(value, (list, tuple)) else [value]
            encoded = TRANSFORMERS[StorageType.STRING_ARRAY].set(
                [str(v) for v in items]
            )
            return f"{col} {_COMPARISON_SQL[op]} {self.params.add(encoded)}"

        return f"{col} {_COMPARISON_SQL[op]} {self.params.add(_bindable(value))}"


def compile_condition(
    doc: ConditionDocument,
    tables: Mapping[str, Any],
    params: SQLParams,
) -> str:
    """
    Compile `doc` against the tables of a query, binding literals into `params`.

    `tables` maps table names to `Table` objects (or bare `EntityMeta`); it is
    consulted to recognize StringArray columns.
    """
    return ConditionCompiler(tables, params).compile(parse_condition(doc))
