"""Remote procedure calls against the hosted Postgres stored functions.

The assistant never runs model-authored SQL directly. It hands the text to one
of two stored functions that re-check it server side:

- ``execute_analytics_query(query_text)``: display path, clamps to 25 rows.
- ``execute_bulk_analytics_query(query_text, max_rows)``: CSV export path,
  ``max_rows => NULL`` means unlimited, ten minute statement timeout.

Entity lookups go through the ``search_*_case_insensitive`` trigram functions.
"""
from __future__ import annotations

import json
import re
from typing import Any, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from spending_analyst.core.logger import get_logger

LOGGER = get_logger(__name__)

DISPLAY_QUERY_FUNCTION = "execute_analytics_query"
BULK_QUERY_FUNCTION = "execute_bulk_analytics_query"

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")
_QUERY_CANCELED = "57014"


class RPCError(RuntimeError):
    """A stored function call failed."""


class RPCTimeoutError(RPCError):
    """The stored function hit its statement timeout."""


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def _is_timeout(exc: DBAPIError) -> bool:
    if _sqlstate(exc) == _QUERY_CANCELED:
        return True
    return "statement timeout" in str(exc).lower()


class DatabaseRPC:
    """Call Postgres functions by name with named arguments."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            from .session import get_sessionmaker

            self._session_factory = get_sessionmaker()
        return self._session_factory

    def call_json(
        self,
        function: str,
        params: Mapping[str, Any],
        *,
        timeout_seconds: Optional[float] = None,
    ) -> Any:
        """Call a function returning a single ``json`` value and decode it."""

        statement = f"SELECT {self._invocation(function, params)} AS payload"
        rows = self._run(function, statement, params, timeout_seconds)
        payload = rows[0]["payload"] if rows else None
        if isinstance(payload, (str, bytes)):
            payload = json.loads(payload)
        return payload

    def call_table(
        self,
        function: str,
        params: Mapping[str, Any],
        *,
        timeout_seconds: Optional[float] = None,
    ) -> list[dict[str, Any]]:
        """Call a set-returning function and return its rows as dicts."""

        statement = f"SELECT * FROM {self._invocation(function, params)}"
        return self._run(function, statement, params, timeout_seconds)

    @staticmethod
    def _invocation(function: str, params: Mapping[str, Any]) -> str:
        if not _IDENTIFIER.match(function):
            raise ValueError(f"Invalid function name: {function!r}")
        for name in params:
            if not _IDENTIFIER.match(name):
                raise ValueError(f"Invalid argument name: {name!r}")
        arguments = ", ".join(f"{name} => :{name}" for name in params)
        return f"{function}({arguments})"

    def _run(
        self,
        function: str,
        statement: str,
        params: Mapping[str, Any],
        timeout_seconds: Optional[float],
    ) -> list[dict[str, Any]]:
        LOGGER.debug("RPC %s params=%s timeout=%s", function, list(params), timeout_seconds)
        try:
            with self.session_factory() as session, session.begin():
                if timeout_seconds:
                    session.execute(
                        text("SELECT set_config('statement_timeout', :timeout, true)"),
                        {"timeout": f"{int(timeout_seconds * 1000)}ms"},
                    )
                result = session.execute(text(statement), dict(params))
                return [dict(row) for row in result.mappings().all()]
        except DBAPIError as exc:
            if _is_timeout(exc):
                LOGGER.warning("RPC %s timed out after %ss", function, timeout_seconds)
                raise RPCTimeoutError(f"{function} exceeded its statement timeout") from exc
            LOGGER.error("RPC %s failed: %s", function, exc.orig or exc)
            raise RPCError(str(exc.orig or exc)) from exc
        except SQLAlchemyError as exc:
            LOGGER.error("RPC %s failed: %s", function, exc)
            raise RPCError(str(exc)) from exc
