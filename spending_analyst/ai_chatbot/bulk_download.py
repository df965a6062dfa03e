"""Two-phase CSV bulk download.

Phase 1 (:class:`BulkDownloadPreparer`) asks the generator for an uncapped
export query and hands back a :class:`BulkDownloadTicket` without running it.
Phase 2 (:class:`BulkExporter`) runs a ticket's query through the bulk stored
function and serializes the rows to CSV. It is triggered by the user, outside
the chat tool loop, either through ``POST /api/download-csv`` or the terminal
client.

:class:`DownloadTracker` keeps per-ticket download state for a client.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from spending_analyst.core.logger import get_logger, log_context, timeit
from spending_analyst.db.rpc import BULK_QUERY_FUNCTION, DatabaseRPC, RPCError, RPCTimeoutError

from .config import ChatbotConfig, chatbot_config
from .csv_export import (
    convert_to_csv,
    ensure_csv_extension,
    format_estimated_size,
    format_export_row,
    generate_filename,
)
from .safety import SQLSafetyError, find_limit, validate_select_only
from .schemas import BulkDownloadTicket, PrepareResult, ResolvedEntitySet
from .sql_generator import SQLGenerator

logger = get_logger(__name__)


class BulkDownloadError(RuntimeError):
    """Phase 2 failed; ``status_code`` is the HTTP status to report."""

    status_code = 500


class InvalidBulkQueryError(BulkDownloadError):
    status_code = 400


class EmptyBulkResultError(BulkDownloadError):
    status_code = 404


class BulkQueryTimeoutError(BulkDownloadError):
    status_code = 504


PREPARE_SUGGESTION = (
    "Try rephrasing the request with the data you want in the file, for example"
    " 'export all Texas Department of Transportation payments in March 2022'."
)


class BulkDownloadPreparer:
    """Phase 1: generate the export query and a download ticket, never execute."""

    def __init__(self, sql_generator: SQLGenerator):
        self.sql_generator = sql_generator

    async def prepare(
        self,
        question: str,
        entities: Optional[ResolvedEntitySet] = None,
    ) -> PrepareResult:
        query = await self.sql_generator.generate_bulk(question, entities)
        if not query.is_valid:
            logger.warning("Bulk download preparation failed: %s", query.error)
            return PrepareResult(
                success=False,
                error=query.error or "Failed to generate the export query",
                suggestion=PREPARE_SUGGESTION,
            )

        estimated_rows = query.estimated_rows
        limit = find_limit(query.sql_query)
        if limit is not None and limit.value is not None:
            logger.info("Export query keeps the requested LIMIT %d", limit.value)
            estimated_rows = min(estimated_rows, limit.value) if estimated_rows else limit.value

        csv_columns = list(query.csv_columns or [])
        ticket = BulkDownloadTicket(
            sql_query=query.sql_query,
            filename=generate_filename(question, query.entity_context or None),
            estimated_rows=estimated_rows,
            csv_columns=csv_columns,
            explanation=query.explanation,
            entity_context=query.entity_context,
        )
        logger.info("Prepared bulk download %s (~%d rows)", ticket.filename, estimated_rows)
        return PrepareResult(
            success=True,
            prepared=True,
            ticket=ticket,
            estimated_size=format_estimated_size(estimated_rows, len(csv_columns) or 10),
        )


@dataclass(frozen=True)
class CSVExport:
    filename: str
    content: str
    row_count: int


class BulkExporter:
    """Phase 2: run an export query uncapped and build the CSV file."""

    def __init__(self, rpc: DatabaseRPC, config: Optional[ChatbotConfig] = None):
        self.rpc = rpc
        self.config = config or chatbot_config

    def export(self, sql_query: str, filename: str) -> CSVExport:
        """
        Execute ``sql_query`` through the bulk function and serialize the rows.

        Raises:
            InvalidBulkQueryError: not a single read-only SELECT
            BulkQueryTimeoutError: the bulk statement timeout was hit
            EmptyBulkResultError: the query returned no rows
            BulkDownloadError: any other database failure
        """
        try:
            cleaned = validate_select_only(sql_query or "", self.config.blocked_sql_keywords)
        except SQLSafetyError as exc:
            raise InvalidBulkQueryError(f"Invalid SQL query provided: {exc}") from exc

        name = ensure_csv_extension(filename)
        with log_context.bound(export=name):
            try:
                with timeit("Bulk export", logger=logger) as timer:
                    payload = self.rpc.call_json(
                        BULK_QUERY_FUNCTION,
                        {"query_text": cleaned, "max_rows": None},
                        timeout_seconds=self.config.bulk_timeout_seconds,
                    )
                    rows = payload if isinstance(payload, list) else []
                    timer.set_total(len(rows))
            except RPCTimeoutError as exc:
                raise BulkQueryTimeoutError(
                    f"The export took longer than {self.config.bulk_timeout_seconds} seconds."
                    " Narrow the date range or add filters and try again."
                ) from exc
            except RPCError as exc:
                raise BulkDownloadError(f"Database query failed: {exc}") from exc

            if not rows:
                raise EmptyBulkResultError("No data returned from query")

            content = convert_to_csv([format_export_row(row) for row in rows])
            logger.info("Built %s with %d rows (%d bytes)", name, len(rows), len(content))
            return CSVExport(filename=name, content=content, row_count=len(rows))


class DownloadState(str, enum.Enum):
    READY = "ready"
    DOWNLOADING = "downloading"
    COMPLETE = "complete"
    FAILED = "failed"


_TRANSITIONS = {
    DownloadState.READY: {DownloadState.DOWNLOADING},
    DownloadState.DOWNLOADING: {DownloadState.COMPLETE, DownloadState.FAILED, DownloadState.READY},
    DownloadState.COMPLETE: {DownloadState.DOWNLOADING},
    DownloadState.FAILED: {DownloadState.DOWNLOADING},
}


class DownloadStateError(RuntimeError):
    """A ticket was moved along a transition its current state does not allow."""


@dataclass
class TrackedDownload:
    tool_call_id: str
    ticket: BulkDownloadTicket
    state: DownloadState = DownloadState.READY
    error: Optional[str] = None
    row_count: Optional[int] = None


class DownloadTracker:
    """Download state per prepared ticket, keyed by the tool call that made it.

    Each ticket moves independently; a failed ticket keeps its query so the
    download can be retried without generating it again.
    """

    def __init__(self) -> None:
        self._downloads: Dict[str, TrackedDownload] = {}

    def register(self, tool_call_id: str, ticket: BulkDownloadTicket) -> TrackedDownload:
        tracked = TrackedDownload(tool_call_id=tool_call_id, ticket=ticket)
        self._downloads[tool_call_id] = tracked
        return tracked

    def get(self, tool_call_id: str) -> TrackedDownload:
        try:
            return self._downloads[tool_call_id]
        except KeyError:
            raise KeyError(f"No prepared download for tool call {tool_call_id}") from None

    def tickets(self) -> List[TrackedDownload]:
        return list(self._downloads.values())

    def is_downloading(self, tool_call_id: str) -> bool:
        tracked = self._downloads.get(tool_call_id)
        return tracked is not None and tracked.state is DownloadState.DOWNLOADING

    def _move(self, tool_call_id: str, target: DownloadState) -> TrackedDownload:
        tracked = self.get(tool_call_id)
        if target not in _TRANSITIONS[tracked.state]:
            raise DownloadStateError(
                f"Cannot move download {tool_call_id} from {tracked.state.value} to {target.value}"
            )
        tracked.state = target
        return tracked

    def start(self, tool_call_id: str) -> TrackedDownload:
        tracked = self._move(tool_call_id, DownloadState.DOWNLOADING)
        tracked.error = None
        return tracked

    def complete(self, tool_call_id: str, row_count: int) -> TrackedDownload:
        tracked = self._move(tool_call_id, DownloadState.COMPLETE)
        tracked.row_count = row_count
        return tracked

    def fail(self, tool_call_id: str, error: str) -> TrackedDownload:
        tracked = self._move(tool_call_id, DownloadState.FAILED)
        tracked.error = error
        return tracked

    def abandon(self, tool_call_id: str) -> TrackedDownload:
        """Stop waiting on an in-flight download; the server side times out on its own."""
        return self._move(tool_call_id, DownloadState.READY)

    def download(
        self,
        tool_call_id: str,
        export: Callable[[str, str], CSVExport],
    ) -> Optional[CSVExport]:
        """Run ``export(sql_query, filename)`` for a ticket and record the outcome.

        Returns the export, or ``None`` when it failed (the error is kept on
        the tracked ticket). Anything else raised by ``export``, including
        ``KeyboardInterrupt``, returns the ticket to ready and propagates.
        """
        tracked = self.start(tool_call_id)
        try:
            result = export(tracked.ticket.sql_query, tracked.ticket.filename)
        except BulkDownloadError as exc:
            logger.warning("Download %s failed: %s", tool_call_id, exc)
            self.fail(tool_call_id, str(exc))
            return None
        except BaseException:
            # Interrupted or crashed mid-export: back to ready so it can be started again.
            self.abandon(tool_call_id)
            raise
        self.complete(tool_call_id, result.row_count)
        return result
