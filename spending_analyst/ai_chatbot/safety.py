"""Query safety gate for model-authored SQL.

Three independent layers keep display results at or under the row cap:
the generation prompt asks for ``ORDER BY ... LIMIT n``, :func:`wrap_with_row_cap`
re-wraps every display query before it leaves the process, and the
``execute_analytics_query`` stored function clamps again server side.

Everything in this module that asks "does this query already end in a LIMIT"
goes through :func:`find_limit`.
"""
from __future__ import annotations

import re
from typing import Iterable, NamedTuple, Optional

import sqlparse
from sqlparse import tokens as T

from .config import chatbot_config


class SQLSafetyError(ValueError):
    """Raised when SQL is not a single read-only SELECT statement."""


_TRAILING_SEMICOLONS = re.compile(r"[\s;]+$")

# Depth-0 shape of a statement produced by wrap_with_row_cap.
_WRAPPER_SHAPE = ("SELECT", "*", "FROM", "(", ")", "AS", "Q", "LIMIT")


class LimitClause(NamedTuple):
    """A LIMIT found at the very end of a statement.

    ``value`` is ``None`` for ``LIMIT ALL``; ``start`` indexes the statement
    after surrounding whitespace and trailing semicolons are removed.
    """

    value: Optional[int]
    offset: Optional[int]
    start: int


class _Token(NamedTuple):
    value: str
    start: int
    depth: int


def _significant_tokens(sql: str) -> list[_Token]:
    """Lex ``sql`` with sqlparse, dropping whitespace and comments.

    Each token keeps its offset in ``sql`` and its parenthesis depth; a
    bracket shares the depth of the text around it. Literals and quoted
    identifiers are single tokens, so brackets inside them never count.
    """
    found: list[_Token] = []
    offset = depth = 0
    for statement in sqlparse.parse(sql):
        for token in statement.flatten():
            start = offset
            offset += len(token.value)
            if token.is_whitespace or token.ttype in T.Comment:
                continue
            if token.match(T.Punctuation, ")"):
                depth -= 1
            found.append(_Token(token.value, start, depth))
            if token.match(T.Punctuation, "("):
                depth += 1
    return found


def _is_row_count(value: str) -> bool:
    return value.isdigit() or value.upper() == "ALL"


def strip_trailing_semicolons(sql: str) -> str:
    return _TRAILING_SEMICOLONS.sub("", sql.strip())


def validate_select_only(sql: str, blocked_keywords: Optional[Iterable[str]] = None) -> str:
    """Check the statement rules and return the SQL without trailing semicolons.

    Rules: the statement starts with SELECT, contains none of the blocked
    keywords as a bare word, and is a single statement.
    """
    if not sql or not sql.strip():
        raise SQLSafetyError("Empty SQL query")

    cleaned = strip_trailing_semicolons(sql)
    if not cleaned.upper().startswith("SELECT"):
        raise SQLSafetyError("Only SELECT queries are allowed")

    keywords = list(blocked_keywords or chatbot_config.blocked_sql_keywords)
    pattern = re.compile(r"\b(" + "|".join(map(re.escape, keywords)) + r")\b", re.IGNORECASE)
    match = pattern.search(cleaned)
    if match:
        raise SQLSafetyError(f"Forbidden SQL keyword detected: {match.group(1).upper()}")

    statements = [statement for statement in sqlparse.split(cleaned) if statement.strip()]
    if len(statements) > 1:
        raise SQLSafetyError("Only a single SQL statement is allowed")

    return cleaned


def _clause(limit: str, offset: Optional[str], start: int) -> LimitClause:
    return LimitClause(
        value=None if limit.upper() == "ALL" else int(limit),
        offset=int(offset) if offset is not None else None,
        start=start,
    )


def _limit_from_tokens(tokens: list[_Token]) -> Optional[LimitClause]:
    last = tokens[-4:]
    if len(last) == 4 and all(token.depth == 0 for token in last):
        words = [token.value.upper() for token in last]
        # LIMIT n OFFSET m
        if words[0] == "LIMIT" and _is_row_count(words[1]) and words[2] == "OFFSET" and words[3].isdigit():
            return _clause(words[1], words[3], last[0].start)
        # OFFSET m LIMIT n
        if words[0] == "OFFSET" and words[1].isdigit() and words[2] == "LIMIT" and _is_row_count(words[3]):
            return _clause(words[3], words[1], last[0].start)

    last = tokens[-2:]
    if len(last) == 2 and all(token.depth == 0 for token in last):
        if last[0].value.upper() == "LIMIT" and _is_row_count(last[1].value):
            return _clause(last[1].value, None, last[0].start)
    return None


def find_limit(sql: str) -> Optional[LimitClause]:
    """Return the LIMIT clause ending ``sql``, if any.

    Limits inside sub-queries, string literals or comments are ignored; only a
    clause at the end of the outermost statement counts.
    """
    return _limit_from_tokens(_significant_tokens(strip_trailing_semicolons(sql)))


def _unwrap_row_cap(sql: str) -> tuple[str, Optional[int]]:
    """Split an existing ``SELECT * FROM (<q>) AS q LIMIT n`` into ``(q, n)``."""
    tokens = _significant_tokens(sql)
    limit = _limit_from_tokens(tokens)
    if limit is None or limit.value is None or limit.offset is not None:
        return sql, None

    outer = [token for token in tokens if token.depth == 0]
    if tuple(token.value.upper() for token in outer[:-1]) != _WRAPPER_SHAPE:
        return sql, None

    opening, closing = outer[3], outer[4]
    return sql[opening.start + 1 : closing.start].strip(), limit.value


def wrap_with_row_cap(sql: str, cap: int, requested: Optional[int] = None) -> str:
    """Wrap ``sql`` so at most ``min(requested, cap)`` rows come back.

    Already-wrapped input is unwrapped first and the smaller limit kept, so
    applying this twice gives the same statement as applying it once.
    """
    effective = cap if requested is None else max(0, min(requested, cap))
    inner = strip_trailing_semicolons(sql)

    while True:
        unwrapped, existing = _unwrap_row_cap(inner)
        if existing is None:
            break
        effective = min(effective, existing)
        inner = strip_trailing_semicolons(unwrapped)

    # Own lines so a trailing -- comment in the inner query cannot eat the wrapper.
    return f"SELECT * FROM (\n{inner}\n) AS q LIMIT {effective}"
