# src/async_liteorm/base/query_string.py
"""
Compact text syntax for condition documents.

``front:lorem -tags=c next_review<+3d`` is a conjunction of terms, each
``[-]key OP value``:

    =  equality          !=  inequality
    >, >=, <, <=         comparison
    ~  LIKE pattern      :   substring

A leading ``-`` negates the term. On string-array columns ``=`` tests
membership, so ``!=`` (or ``-key=``) tests that the value is absent.
`` OR `` (outside quotes) splits the string into alternatives. Values are
double-quoted strings, numbers, ``NULL`` (existence check), ISO-8601 dates,
relative durations such as ``+1d`` or ``-2h`` (now plus/minus the
duration), or bare words.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import InvalidConditionException

log = logging.getLogger(__name__)

_TERM = re.compile(r'(-)?([\w.]+)(!=|>=|<=|=|>|<|~|:)("[^"]*"|\S+)')
_OR_SPLIT = re.compile(r' OR (?=(?:[^"]*"[^"]*")*[^"]*$)')
_NUMBER = re.compile(r"^[+-]?\d+(?:\.\d+)?$")
_DURATION = re.compile(r"^([+-]\d+(?:\.\d+)?)([A-Za-z]+)$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")

_DURATION_UNITS: Dict[str, timedelta] = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "sec": timedelta(seconds=1),
    "second": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "min": timedelta(minutes=1),
    "minute": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "hour": timedelta(hours=1),
    "d": timedelta(days=1),
    "day": timedelta(days=1),
    "w": timedelta(weeks=1),
    "week": timedelta(weeks=1),
    "M": timedelta(days=30),
    "mo": timedelta(days=30),
    "month": timedelta(days=30),
    "y": timedelta(days=365),
    "year": timedelta(days=365),
}

_NEGATED = {
    "=": "!=",
    "!=": "=",
    ">": "<=",
    ">=": "<",
    "<": ">=",
    "<=": ">",
    "~": "!~",
    ":": "!:",
}

_OPERATOR_DOCS = {
    ">": "$gt",
    ">=": "$gte",
    "<": "$lt",
    "<=": "$lte",
    "~": "$like",
    "!~": "$nlike",
    ":": "$substr",
    "!:": "$nsubstr",
}


def _parse_duration(text: str, now: datetime) -> Optional[datetime]:
    m = _DURATION.match(text)
    if not m:
        return None
    amount, unit = m.groups()
    step = _DURATION_UNITS.get(unit)
    if step is None:
        step = _DURATION_UNITS.get(unit.lower().rstrip("s"))
    if step is None:
        return None
    return now + step * float(amount)


def _parse_iso(text: str) -> Optional[datetime]:
    if not _ISO_DATE.match(text):
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_value(text: str, now: Optional[datetime] = None) -> Any:
    """Convert one unquoted value token to a Python value."""
    if _NUMBER.match(text):
        return float(text) if "." in text else int(text)
    when = _parse_duration(text, now or datetime.now(timezone.utc))
    if when is not None:
        return when
    when = _parse_iso(text)
    if when is not None:
        return when
    return text


def _term_to_condition(neg: bool, op: str, raw: str, now: datetime) -> Any:
    if len(raw) >= 2 and raw[0] == '"' and raw[-1] == '"':
        value: Any = raw[1:-1]
    elif raw == "NULL":
        # key=NULL matches missing values; != and negation flip it
        exists = op != "="
        return {"$exists": not exists if neg else exists}
    else:
        value = parse_value(raw, now)

    if neg:
        op = _NEGATED[op]
        if op == "!:" and not isinstance(value, str):
            op = "!="

    if op == "=":
        return value
    if op == "!=":
        # $nin keeps string-array membership semantics
        return {"$nin": [value]}
    return {_OPERATOR_DOCS[op]: value}


def _parse_conjunction(text: str, now: datetime) -> Dict[str, Any]:
    terms: List[Tuple[str, Any]] = []
    pos = 0
    for m in _TERM.finditer(text):
        gap = text[pos : m.start()]
        if gap.strip():
            raise InvalidConditionException(f"Cannot parse query near {gap.strip()!r}")
        neg, key, op, raw = m.groups()
        terms.append((key, _term_to_condition(bool(neg), op, raw, now)))
        pos = m.end()
    rest = text[pos:]
    if rest.strip():
        raise InvalidConditionException(f"Cannot parse query near {rest.strip()!r}")

    keys = [k for k, _ in terms]
    if len(set(keys)) == len(keys):
        return dict(terms)
    return {"$and": [{k: v} for k, v in terms]}


def parse_query_string(q: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Parse the compact text syntax into a condition document.

    An empty string matches everything.

    ```python
    parse_query_string('front:lorem -tags=c')
    # {'front': {'$substr': 'lorem'}, 'tags': {'$ne': 'c'}}
    ```
    """
    now = now or datetime.now(timezone.utc)
    alternatives = [part for part in _OR_SPLIT.split(q.strip()) if part.strip()]
    if len(alternatives) > 1:
        return {"$or": [_parse_conjunction(part, now) for part in alternatives]}
    if not alternatives:
        return {}
    cond = _parse_conjunction(alternatives[0], now)
    log.debug(f"Parsed query string {q!r} -> {cond!r}")
    return cond
