# src/async_liteorm/base/identifiers.py

import re

# https://www.sqlite.org/lang_keywords.html
SQLITE_KEYWORDS = frozenset(
    """
    ABORT ACTION ADD AFTER ALL ALTER ALWAYS ANALYZE AND AS ASC ATTACH
    AUTOINCREMENT BEFORE BEGIN BETWEEN BY CASCADE CASE CAST CHECK COLLATE
    COLUMN COMMIT CONFLICT CONSTRAINT CREATE CROSS CURRENT CURRENT_DATE
    CURRENT_TIME CURRENT_TIMESTAMP DATABASE DEFAULT DEFERRABLE DEFERRED DELETE
    DESC DETACH DISTINCT DO DROP EACH ELSE END ESCAPE EXCEPT EXCLUDE EXCLUSIVE
    EXISTS EXPLAIN FAIL FILTER FIRST FOLLOWING FOR FOREIGN FROM FULL GENERATED
    GLOB GROUP GROUPS HAVING IF IGNORE IMMEDIATE IN INDEX INDEXED INITIALLY
    INNER INSERT INSTEAD INTERSECT INTO IS ISNULL JOIN KEY LAST LEFT LIKE
    LIMIT MATCH MATERIALIZED NATURAL NO NOT NOTHING NOTNULL NULL NULLS OF
    OFFSET ON OR ORDER OTHERS OUTER OVER PARTITION PLAN PRAGMA PRECEDING
    PRIMARY QUERY RAISE RANGE RECURSIVE REFERENCES REGEXP REINDEX RELEASE
    RENAME REPLACE RESTRICT RETURNING RIGHT ROLLBACK ROW ROWS SAVEPOINT SELECT
    SET TABLE TEMP TEMPORARY THEN TIES TO TRANSACTION TRIGGER UNBOUNDED UNION
    UNIQUE UPDATE USING VACUUM VALUES VIEW VIRTUAL WHEN WHERE WINDOW WITH
    WITHOUT
    """.split()
)

# Characters that may continue an unquoted identifier token.
# https://stackoverflow.com/questions/31788990/sqlite-what-are-the-restricted-characters-for-identifiers
_ID_TOKEN = r"A-Za-z0-9_$:"

# Longest keywords first so alternation never stops at a shorter prefix.
_KEYWORD_RE = re.compile(
    rf'(?<![{_ID_TOKEN})"])('
    + "|".join(sorted(SQLITE_KEYWORDS, key=len, reverse=True))
    + rf')(?![{_ID_TOKEN}("])',
    re.IGNORECASE,
)


def quote_identifier(identifier: str) -> str:
    """Quote an identifier for SQLite (SQLite uses double quotes for identifiers)."""
    safe_identifier = identifier.replace('"', '""')
    return f'"{safe_identifier}"'


def escape_identifier(name: str) -> str:
    """
    Quote every reserved SQLite keyword appearing as a whole token in `name`.

    Tokens are delimited by anything outside ``A-Z0-9_$:``, so each segment of
    a dotted path is checked on its own (``card.order`` -> ``card."order"``).
    Tokens that are already quoted are left untouched, which makes the
    function idempotent.
    """
    return _KEYWORD_RE.sub(lambda m: quote_identifier(m.group(1)), name)
