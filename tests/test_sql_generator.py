import asyncio

import pytest

from spending_analyst.ai_chatbot.llm_providers import LLMProviderError
from spending_analyst.ai_chatbot.schemas import ResolvedEntitySet
from spending_analyst.ai_chatbot.sql_generator import SQLGenerator

from conftest import ScriptedProvider

TOP_AGENCIES = (
    'SELECT a."Agency_Name" AS agency_name, SUM(p."Amount") AS total_amount'
    ' FROM "payments" p JOIN "agencies" a ON a."Agency_CD" = p."Agency_CD"'
    ' GROUP BY 1 ORDER BY total_amount DESC NULLS LAST LIMIT 5;'
)


@pytest.fixture()
def entities():
    return ResolvedEntitySet(agency_ids=[{"name": "Health and Human Services Commission", "code": 529}])


def test_system_prompt_display_rules_quote_row_cap():
    prompt = SQLGenerator(provider=ScriptedProvider(), row_cap=25).build_system_prompt()

    assert "DESC NULLS LAST LIMIT 25" in prompt
    assert "Keep money in CENTS" in prompt
    assert "CSV EXPORT RULES" not in prompt


def test_system_prompt_bulk_rules():
    prompt = SQLGenerator(provider=ScriptedProvider()).build_system_prompt(bulk=True)

    assert "_dollars" in prompt
    assert "Do NOT add a LIMIT clause" in prompt


def test_user_prompt_includes_entities_and_context(entities):
    prompt = SQLGenerator(provider=ScriptedProvider()).build_user_prompt(
        "Monthly spending", entities, ["Top agencies in 2022"]
    )

    assert "RESOLVED ENTITIES:\nAgencies: Health and Human Services Commission (529)" in prompt
    assert "Previous queries: Top agencies in 2022" in prompt


def test_generate_returns_validated_query(entities):
    provider = ScriptedProvider(
        {"sqlQuery": TOP_AGENCIES, "explanation": "Top five agencies", "estimatedRows": 5, "queryType": "topN"}
    )
    query = asyncio.run(SQLGenerator(provider=provider).generate("Top 5 agencies", entities))

    assert query.is_valid
    assert query.sql_query == TOP_AGENCIES.rstrip(";")
    assert query.query_type == "topN"
    assert query.entity_context == "Agencies: Health and Human Services Commission (529)"
    assert query.to_payload()["isValid"] is True


@pytest.mark.parametrize(
    "reply",
    [
        {"sqlQuery": 'DROP TABLE "payments"', "explanation": "bad"},
        "I cannot help with that.",
        LLMProviderError("upstream 500"),
    ],
)
def test_generate_failure_is_an_invalid_query(reply):
    query = asyncio.run(SQLGenerator(provider=ScriptedProvider(reply)).generate("anything"))

    assert query.is_valid is False
    assert query.sql_query == ""
    assert query.chart_suitable is False
    assert query.error


def test_explain_returns_sections():
    provider = ScriptedProvider(
        {
            "summary": "Totals spending per agency.",
            "sections": [{"sqlSection": "GROUP BY 1", "explanation": "One row per agency."}],
        }
    )
    explanation = asyncio.run(SQLGenerator(provider=provider).explain(TOP_AGENCIES, "Top agencies"))

    assert explanation.summary == "Totals spending per agency."
    assert explanation.sections[0].sql_section == "GROUP BY 1"
    assert "ORIGINAL QUESTION: Top agencies" in provider.prompts[0]["user_prompt"]


def test_explain_failure_does_not_raise():
    explanation = asyncio.run(SQLGenerator(provider=ScriptedProvider("nope")).explain("SELECT 1"))

    assert explanation.summary == "Unable to explain this query."
    assert explanation.error
