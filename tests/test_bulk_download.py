import asyncio

import pytest

from spending_analyst.ai_chatbot.bulk_download import (
    PREPARE_SUGGESTION,
    BulkDownloadError,
    BulkDownloadPreparer,
    BulkExporter,
    BulkQueryTimeoutError,
    CSVExport,
    DownloadState,
    DownloadStateError,
    DownloadTracker,
    EmptyBulkResultError,
    InvalidBulkQueryError,
)
from spending_analyst.ai_chatbot.schemas import BulkDownloadTicket, ResolvedEntitySet
from spending_analyst.ai_chatbot.sql_generator import SQLGenerator
from spending_analyst.db.rpc import BULK_QUERY_FUNCTION, RPCError, RPCTimeoutError

from conftest import ScriptedProvider, StubRPC

EXPORT_SQL = (
    'SELECT p."date" AS payment_date, a."Agency_Name" AS agency_name,'
    ' p."Amount" / 100.0 AS amount_dollars FROM "payments" p'
    ' JOIN "agencies" a ON a."Agency_CD" = p."Agency_CD" WHERE p."Agency_CD" = 601'
)


def _draft(sql=EXPORT_SQL, estimated_rows=120000):
    return {
        "sqlQuery": sql,
        "explanation": "Every TxDOT payment in 2022",
        "estimatedRows": estimated_rows,
        "chartSuitable": False,
        "csvColumns": ["payment_date", "agency_name", "amount_dollars"],
    }


def test_prepare_returns_ticket_without_touching_database():
    provider = ScriptedProvider(_draft())
    entities = ResolvedEntitySet(agency_ids=[{"name": "Texas Department of Transportation", "code": 601}])
    result = asyncio.run(
        BulkDownloadPreparer(SQLGenerator(provider=provider)).prepare("Export all TxDOT payments", entities)
    )

    assert result.success and result.prepared
    assert result.ticket.sql_query == EXPORT_SQL
    assert result.ticket.filename.startswith("texas_doge_export_all_txdot_payments_agencies_texas_depar_")
    assert result.ticket.csv_columns == ["payment_date", "agency_name", "amount_dollars"]
    assert result.estimated_size == "~6.9 MB"

    payload = result.to_payload()
    assert payload["sqlQuery"] == EXPORT_SQL
    assert payload["prepared"] is True
    assert "ticket" not in payload
    assert "CSV EXPORT RULES" in provider.prompts[0]["system_prompt"]
    assert "RESOLVED ENTITIES" in provider.prompts[0]["user_prompt"]


def test_prepare_keeps_explicit_limit_and_caps_estimate():
    provider = ScriptedProvider(_draft(sql=f"{EXPORT_SQL} ORDER BY 1 LIMIT 500"))
    result = asyncio.run(BulkDownloadPreparer(SQLGenerator(provider=provider)).prepare("First 500 TxDOT payments"))

    assert result.ticket.sql_query.endswith("LIMIT 500")
    assert result.ticket.estimated_rows == 500


def test_prepare_failure_carries_suggestion():
    provider = ScriptedProvider(_draft(sql='DELETE FROM "payments"'))
    result = asyncio.run(BulkDownloadPreparer(SQLGenerator(provider=provider)).prepare("wipe it"))

    assert result.success is False
    assert result.prepared is False
    assert result.suggestion == PREPARE_SUGGESTION
    assert result.ticket is None


def test_export_runs_uncapped_bulk_function():
    rpc = StubRPC(
        payload=[
            {"payment_date": "2022-03-04T00:00:00.000Z", "agency_name": "TxDOT", "amount_dollars": 2109.1},
            {"payment_date": "2022-03-05T00:00:00.000Z", "agency_name": "TxDOT", "amount_dollars": 10},
        ]
    )
    export = BulkExporter(rpc).export(EXPORT_SQL + ";", "txdot")

    function, params, timeout = rpc.calls[0]
    assert function == BULK_QUERY_FUNCTION
    assert params == {"query_text": EXPORT_SQL, "max_rows": None}
    assert timeout == 600
    assert export.filename == "txdot.csv"
    assert export.row_count == 2
    assert export.content.splitlines()[1] == '"2022-03-04","TxDOT",2109.1'


@pytest.mark.parametrize(
    "rpc, sql, error_type, status",
    [
        (StubRPC(payload=[]), 'UPDATE "payments" SET x = 1', InvalidBulkQueryError, 400),
        (StubRPC(payload=[]), EXPORT_SQL, EmptyBulkResultError, 404),
        (StubRPC(error=RPCTimeoutError("timeout")), EXPORT_SQL, BulkQueryTimeoutError, 504),
        (StubRPC(error=RPCError("boom")), EXPORT_SQL, BulkDownloadError, 500),
    ],
)
def test_export_errors_map_to_status_codes(rpc, sql, error_type, status):
    with pytest.raises(error_type) as excinfo:
        BulkExporter(rpc).export(sql, "file")

    assert excinfo.value.status_code == status


def _ticket():
    return BulkDownloadTicket(sql_query=EXPORT_SQL, filename="txdot", estimated_rows=10)


def test_tracker_happy_path():
    tracker = DownloadTracker()
    tracker.register("call_1", _ticket())

    export = tracker.download("call_1", lambda sql, name: CSVExport(f"{name}.csv", "x", 7))

    tracked = tracker.get("call_1")
    assert export.row_count == 7
    assert tracked.state is DownloadState.COMPLETE
    assert tracked.row_count == 7


def test_tracker_failure_keeps_ticket_for_retry():
    tracker = DownloadTracker()
    tracker.register("call_1", _ticket())

    def failing(sql, name):
        raise EmptyBulkResultError("No data returned from query")

    assert tracker.download("call_1", failing) is None
    assert tracker.get("call_1").state is DownloadState.FAILED
    assert tracker.get("call_1").error == "No data returned from query"

    tracker.download("call_1", lambda sql, name: CSVExport("txdot.csv", "x", 1))
    assert tracker.get("call_1").state is DownloadState.COMPLETE
    assert tracker.get("call_1").error is None


def test_tracker_tickets_are_independent():
    tracker = DownloadTracker()
    tracker.register("a", _ticket())
    tracker.register("b", _ticket())
    tracker.start("a")

    assert tracker.is_downloading("a")
    assert not tracker.is_downloading("b")
    assert tracker.get("b").state is DownloadState.READY


def test_tracker_rejects_invalid_transition():
    tracker = DownloadTracker()
    tracker.register("a", _ticket())

    with pytest.raises(DownloadStateError):
        tracker.complete("a", 3)
    with pytest.raises(KeyError):
        tracker.get("missing")


def test_tracker_abandon_returns_to_ready():
    tracker = DownloadTracker()
    tracker.register("a", _ticket())
    tracker.start("a")

    assert tracker.abandon("a").state is DownloadState.READY


def test_interrupted_download_returns_ticket_to_ready_for_retry():
    tracker = DownloadTracker()
    tracker.register("call_1", _ticket())

    def interrupted(sql, name):
        raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        tracker.download("call_1", interrupted)
    assert tracker.get("call_1").state is DownloadState.READY

    export = tracker.download("call_1", lambda sql, name: CSVExport("txdot.csv", "x", 2))
    assert export.row_count == 2
    assert tracker.get("call_1").state is DownloadState.COMPLETE


def test_unexpected_export_error_does_not_strand_ticket():
    tracker = DownloadTracker()
    tracker.register("call_1", _ticket())

    def broken(sql, name):
        raise OSError("disk full")

    with pytest.raises(OSError):
        tracker.download("call_1", broken)
    assert not tracker.is_downloading("call_1")
