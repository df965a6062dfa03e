import asyncio

import httpx

from spending_analyst.ai_chatbot import llm_providers
from spending_analyst.ai_chatbot.chatbot_core import SpendingAnalystChatbot, ToolRegistry
from spending_analyst.ai_chatbot.config import ChatbotConfig
from spending_analyst.ai_chatbot.llm_providers import LLMProviderError
from spending_analyst.ai_chatbot.tools import TurnContext, build_tool_specs
from spending_analyst.ai_chatbot.tools.types import LookupInput, ToolSpec

from conftest import ScriptedProvider, StubRPC

TOP_FIVE_SQL = (
    'SELECT a."Agency_Name" AS agency_name, SUM(p."Amount") AS total_amount'
    ' FROM "payments" p JOIN "agencies" a ON a."Agency_CD" = p."Agency_CD"'
    " GROUP BY 1 ORDER BY total_amount DESC NULLS LAST LIMIT 5"
)


def _call(tool, **arguments):
    return {"tool": tool, "arguments": arguments}


def _plan(*calls, reply=""):
    return {"reply": reply, "tool_calls": list(calls)}


def _chatbot(provider, rpc=None, **config):
    return SpendingAnalystChatbot(
        rpc or StubRPC(),
        provider_factory=lambda name: provider,
        config=ChatbotConfig(**config),
    )


def test_catalogue_lists_every_tool():
    names = ToolRegistry().names

    assert names == [
        "getAgencyCode",
        "getApplicationFundCode",
        "getAppropriationCode",
        "getCategoryCode",
        "getFundCode",
        "getPayeeCode",
        "getComptrollerCode",
        "generateAnalyticsQuery",
        "executeQuery",
        "explainQuery",
        "generateChart",
        "prepareBulkDownload",
    ]
    assert len(build_tool_specs()) == len(names)


def test_lookup_turn_returns_tool_result_and_reply():
    rpc = StubRPC(
        tables={
            "search_agencies_case_insensitive": [
                {"agency_name": "Texas Department of Transportation", "agency_cd": 601, "similarity": 0.9}
            ]
        }
    )
    provider = ScriptedProvider(
        _plan(_call("getAgencyCode", searchTerm="transportation")),
        _plan(reply="The agency code for Texas Department of Transportation is 601."),
    )
    result = asyncio.run(_chatbot(provider, rpc).process_query("What is TxDOT's agency code?"))

    assert result.reply == "The agency code for Texas Department of Transportation is 601."
    assert result.steps == 2
    [invocation] = result.tool_invocations
    assert invocation.state == "result"
    assert invocation.result["status"] == "resolved"
    assert "getAgencyCode" in provider.prompts[1]["user_prompt"]


def test_analysis_turn_runs_generate_execute_chart():
    rpc = StubRPC(
        payload=[
            {"agency_name": f"Agency {i}", "total_amount": 210910 * (5 - i)} for i in range(5)
        ]
    )
    provider = ScriptedProvider(
        _plan(_call("generateAnalyticsQuery", naturalLanguageQuery="Top 5 agencies by spending")),
        {"sqlQuery": TOP_FIVE_SQL, "explanation": "Top five", "estimatedRows": 5, "queryType": "topN"},
        _plan(_call("executeQuery")),
        _plan(_call("generateChart")),
        {"type": "bar", "title": "Top agencies", "xKey": "agency_name", "yKeys": ["total_amount"]},
        _plan(reply="Agency 0 spent the most."),
    )
    result = asyncio.run(_chatbot(provider, rpc).process_query("Top 5 agencies by spending"))

    names = [invocation.tool_name for invocation in result.tool_invocations]
    assert names == ["generateAnalyticsQuery", "executeQuery", "generateChart"]
    assert all(invocation.state == "result" for invocation in result.tool_invocations)

    executed = result.tool_invocations[1].result
    assert executed["rowCount"] == 5
    assert executed["hasMoreResults"] is False
    assert executed["rows"][0]["total_amount"] == 10545.5
    assert rpc.calls[0][1]["query_text"].endswith(") AS q LIMIT 25")

    chart = result.tool_invocations[2].result
    assert chart["chartConfig"]["colors"] == {"total_amount": "#2563eb"}
    assert len(chart["data"]) == 5
    assert result.reply == "Agency 0 spent the most."


def test_bulk_turn_prepares_without_running_query():
    rpc = StubRPC()
    provider = ScriptedProvider(
        _plan(_call("prepareBulkDownload", naturalLanguageQuery="Export all payments in March 2022")),
        {
            "sqlQuery": 'SELECT p."date" AS payment_date, p."Amount" / 100.0 AS amount_dollars FROM "payments" p',
            "explanation": "All March payments",
            "estimatedRows": 90000,
            "chartSuitable": False,
            "csvColumns": ["payment_date", "amount_dollars"],
        },
        _plan(reply="Your CSV is ready to download."),
    )
    result = asyncio.run(_chatbot(provider, rpc).process_query("Export all payments in March 2022"))

    prepared = result.tool_invocations[0].result
    assert prepared["success"] is True
    assert prepared["prepared"] is True
    assert prepared["filename"].startswith("texas_doge_export_all_payments_in_march_2022_")
    assert all(call[0] != "execute_bulk_analytics_query" for call in rpc.calls)


def test_unknown_tool_and_bad_arguments_become_error_invocations():
    provider = ScriptedProvider(
        _plan(_call("dropEverything"), _call("getPayeeCode")),
        _plan(reply="Sorry, I could not look that up."),
    )
    result = asyncio.run(_chatbot(provider).process_query("who?"))

    unknown, invalid = result.tool_invocations
    assert unknown.state == "error"
    assert unknown.result == {"error": "Unknown tool: dropEverything"}
    assert invalid.state == "error"
    assert invalid.result["error"].startswith("Invalid arguments for getPayeeCode")
    assert result.reply == "Sorry, I could not look that up."


def test_handler_exception_is_contained():
    async def broken(ctx, args):
        raise RuntimeError("kaboom")

    registry = ToolRegistry([ToolSpec("broken", "", LookupInput, broken)])
    ctx = TurnContext(question="q", services=None)

    invocation = asyncio.run(registry.invoke(ctx, "broken", {"searchTerm": "x"}, "call_1"))

    assert invocation.tool_call_id == "call_1"
    assert invocation.state == "error"
    assert invocation.result == {"error": "broken failed: kaboom"}


def test_step_limit_stops_the_loop():
    provider = ScriptedProvider(*[_plan(_call("getFundCode", searchTerm="general")) for _ in range(2)])
    result = asyncio.run(_chatbot(provider, max_tool_steps=2).process_query("loop forever"))

    assert result.steps == 2
    assert len(result.tool_invocations) == 2
    assert result.error == "max_tool_steps reached"


def test_provider_error_becomes_error_reply():
    provider = ScriptedProvider(LLMProviderError("Claude API error: 529"))
    result = asyncio.run(_chatbot(provider).process_query("anything"))

    assert result.error == "Claude API error: 529"
    assert result.reply.startswith("Sorry, I encountered an error")


def test_non_json_reply_is_returned_as_text():
    result = asyncio.run(_chatbot(ScriptedProvider("Hello there")).process_query("hi"))

    assert result.reply == "Hello there"
    assert result.tool_invocations == []


def test_history_is_trimmed_and_user_turns_feed_context():
    history = [
        {"role": "user" if i % 2 == 0 else "assistant", "content": f"message {i}"} for i in range(10)
    ]
    provider = ScriptedProvider(_plan(reply="ok"))
    asyncio.run(_chatbot(provider, max_conversation_history=6).process_query("next", conversation_history=history))

    assert provider.prompts[0]["conversation_history"] == history[-6:]


def test_missing_provider_configuration_is_reported():
    def factory(name):
        raise ValueError("OpenAI API key not configured. Set OPENAI_API_KEY environment variable.")

    chatbot = SpendingAnalystChatbot(StubRPC(), provider_factory=factory)
    result = asyncio.run(chatbot.process_query("hi", provider_name="gpt-4o"))

    assert "OPENAI_API_KEY" in result.error
    assert result.tool_invocations == []


def test_gateway_page_from_provider_becomes_error_reply(monkeypatch):
    monkeypatch.setattr(llm_providers.llm_config, "claude_api_key", "ck-test")
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>"))
    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        llm_providers.httpx, "AsyncClient", lambda **kwargs: real_client(transport=transport, **kwargs)
    )

    result = asyncio.run(_chatbot(llm_providers.ClaudeProvider()).process_query("Top agencies"))

    assert result.error == "claude API returned a non-JSON response"
    assert result.reply.startswith("Sorry, I encountered an error")
