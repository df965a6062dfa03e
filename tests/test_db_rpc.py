import pytest
from sqlalchemy.exc import OperationalError

from spending_analyst.db.rpc import DatabaseRPC, RPCError, RPCTimeoutError


class _Orig(Exception):
    def __init__(self, message, sqlstate=None):
        super().__init__(message)
        self.sqlstate = sqlstate


class _FailingSession:
    def __init__(self, exc):
        self.exc = exc

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def begin(self):
        return self

    def execute(self, *args, **kwargs):
        raise self.exc


def _rpc_raising(exc):
    return DatabaseRPC(session_factory=lambda: _FailingSession(exc))


def test_invocation_uses_named_arguments():
    sql = DatabaseRPC._invocation("execute_bulk_analytics_query", {"query_text": "x", "max_rows": None})

    assert sql == "execute_bulk_analytics_query(query_text => :query_text, max_rows => :max_rows)"


def test_invocation_rejects_unsafe_names():
    with pytest.raises(ValueError):
        DatabaseRPC._invocation("evil(); drop", {})
    with pytest.raises(ValueError):
        DatabaseRPC._invocation("fn", {"bad name": 1})


def test_query_canceled_maps_to_timeout():
    exc = OperationalError("SELECT", {}, _Orig("canceling statement", sqlstate="57014"))

    with pytest.raises(RPCTimeoutError):
        _rpc_raising(exc).call_json("execute_analytics_query", {"query_text": "SELECT 1"}, timeout_seconds=90)


def test_other_database_errors_map_to_rpc_error():
    exc = OperationalError("SELECT", {}, _Orig("relation does not exist", sqlstate="42P01"))

    with pytest.raises(RPCError) as excinfo:
        _rpc_raising(exc).call_table("search_agencies_case_insensitive", {"search_term": "x"})

    assert not isinstance(excinfo.value, RPCTimeoutError)
    assert "relation does not exist" in str(excinfo.value)
