"""Display-path query execution and result normalization."""
from __future__ import annotations

from typing import Any, Mapping, Optional

from spending_analyst.core.formatting import (
    cents_to_dollars,
    is_currency_field,
    is_date_field,
    to_iso_date,
)
from spending_analyst.core.logger import get_logger, timeit
from spending_analyst.db.rpc import DISPLAY_QUERY_FUNCTION, DatabaseRPC, RPCError, RPCTimeoutError

from .config import ChatbotConfig, chatbot_config
from .safety import SQLSafetyError, validate_select_only, wrap_with_row_cap
from .schemas import QueryResultSet

logger = get_logger(__name__)

TIMEOUT_MESSAGE = (
    "The query took too long to run. Try narrowing it with a shorter date range,"
    " a specific agency or category, or fewer columns."
)


def normalize_row(row: Mapping[str, Any]) -> dict[str, Any]:
    """Convert cent columns to dollars and date columns to ``YYYY-MM-DD``."""
    normalized: dict[str, Any] = {}
    for key, value in row.items():
        if is_currency_field(key):
            normalized[key] = cents_to_dollars(value)
        elif is_date_field(key):
            normalized[key] = to_iso_date(value)
        else:
            normalized[key] = value
    return normalized


class QueryExecutor:
    """Run model-authored SELECTs through the capped display function.

    ``execute`` never raises; every failure comes back as a
    :class:`QueryResultSet` with ``error`` set and no rows.
    """

    def __init__(self, rpc: DatabaseRPC, config: Optional[ChatbotConfig] = None):
        self.rpc = rpc
        self.config = config or chatbot_config

    @property
    def row_cap(self) -> int:
        return self.config.display_row_cap

    def effective_cap(self, max_rows: Optional[int] = None) -> int:
        """The configured cap, lowered to ``max_rows`` when a caller asks for fewer."""
        if max_rows is None:
            return self.row_cap
        return max(0, min(max_rows, self.row_cap))

    def execute(self, sql: str, max_rows: Optional[int] = None) -> QueryResultSet:
        """
        Execute ``sql`` and return at most the effective row cap.

        Args:
            sql: A SELECT statement, usually ``GeneratedQuery.sql_query``
            max_rows: Caller-requested cap; never raises the configured cap
        """
        try:
            cleaned = validate_select_only(sql, self.config.blocked_sql_keywords)
        except SQLSafetyError as exc:
            logger.warning("Rejected query before execution: %s", exc)
            return QueryResultSet.failed(str(exc), sql_query=sql)

        cap = self.effective_cap(max_rows)
        wrapped = wrap_with_row_cap(cleaned, self.row_cap, requested=cap)

        try:
            with timeit("Display query", logger=logger) as timer:
                payload = self.rpc.call_json(
                    DISPLAY_QUERY_FUNCTION,
                    {"query_text": wrapped},
                    timeout_seconds=self.config.display_timeout_seconds,
                )
                rows = payload if isinstance(payload, list) else []
                timer.set_total(len(rows))
        except RPCTimeoutError:
            return QueryResultSet.failed(TIMEOUT_MESSAGE, sql_query=wrapped)
        except RPCError as exc:
            return QueryResultSet.failed(f"Database query failed: {exc}", sql_query=wrapped)

        # Never more than the cap, whatever the server returned.
        rows = [normalize_row(row) for row in rows[:cap]]
        return QueryResultSet(
            rows=rows,
            row_count=len(rows),
            has_more_results=cap > 0 and len(rows) >= cap,
            sql_query=wrapped,
        )
