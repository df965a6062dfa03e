import pytest
from fastapi.testclient import TestClient

from spending_analyst.ai_chatbot.router import configure_dependencies
from spending_analyst.db.rpc import RPCTimeoutError
from spending_analyst.main import create_app

from conftest import ScriptedProvider, StubRPC


@pytest.fixture()
def rpc():
    return StubRPC(payload=[{"payee_name": 'O"Brien', "amount_dollars": 12.5, "payment_date": "2022-01-03"}])


@pytest.fixture()
def client(rpc):
    provider = ScriptedProvider({"reply": "Hello from the analyst.", "tool_calls": []})
    app = create_app()
    configure_dependencies(get_rpc=lambda: rpc, provider_factory=lambda name: provider)
    return TestClient(app)


def test_health_reports_configuration(client):
    response = client.get("/chatbot/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "chatbot_initialized": True,
        "dependencies_configured": True,
    }


def test_query_returns_reply_and_invocations(client):
    response = client.post(
        "/chatbot/query",
        json={"question": "hi", "conversationHistory": [{"role": "user", "content": "earlier"}]},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["reply"] == "Hello from the analyst."
    assert body["toolInvocations"] == []


def test_download_returns_csv_attachment(client, rpc):
    response = client.post(
        "/api/download-csv",
        json={"sqlQuery": 'SELECT * FROM "payments"', "filename": "payees"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "text/csv"
    assert response.headers["content-disposition"] == 'attachment; filename="payees.csv"'
    assert response.text == '"payee_name","amount_dollars","payment_date"\n"O""Brien",12.5,"2022-01-03"'
    assert rpc.calls[0][1]["max_rows"] is None


def test_download_requires_sql(client):
    response = client.post("/api/download-csv", json={"filename": "x"})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid SQL query provided"}


def test_download_rejects_non_select(client, rpc):
    response = client.post("/api/download-csv", json={"sqlQuery": 'DELETE FROM "payments"'})

    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid SQL query provided")
    assert rpc.calls == []


def test_download_empty_result_is_404(client, rpc):
    rpc.payload = []
    response = client.post("/api/download-csv", json={"sqlQuery": "SELECT 1"})

    assert response.status_code == 404
    assert response.json() == {"error": "No data returned from query"}


def test_download_timeout_is_504(client, rpc):
    rpc.error = RPCTimeoutError("timeout")
    response = client.post("/api/download-csv", json={"sqlQuery": "SELECT 1"})

    assert response.status_code == 504


def test_download_unexpected_failure_is_500(client, rpc):
    rpc.error = KeyError("surprise")
    response = client.post("/api/download-csv", json={"sqlQuery": "SELECT 1"})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error during CSV generation"}
