"""SQL analytics tools: generate, execute, explain, chart and bulk export."""
from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

from spending_analyst.core.logger import get_logger

from ..config import chatbot_config
from ..entity_resolver import resolve_entities_workflow
from ..schemas import ResolvedEntitySet
from .types import (
    ExecuteQueryInput,
    ExplainQueryInput,
    GenerateChartInput,
    GenerateQueryInput,
    PrepareBulkDownloadInput,
    ToolSpec,
    TurnContext,
)

logger = get_logger(__name__)


async def _entities_for(
    ctx: TurnContext, question: str, provided: Optional[ResolvedEntitySet]
) -> ResolvedEntitySet:
    """Entities passed by the model win, then lookups made this turn, then keyword resolution."""
    if provided is not None and not provided.is_empty():
        return provided
    if not ctx.entities.is_empty():
        return ctx.entities
    resolved = await resolve_entities_workflow(question, ctx.services.resolver)
    ctx.entities = resolved
    return resolved


def _last_sql(ctx: TurnContext) -> Optional[str]:
    if ctx.last_query is not None and ctx.last_query.is_valid:
        return ctx.last_query.sql_query
    return None


async def generate_analytics_query(ctx: TurnContext, args: GenerateQueryInput) -> Dict[str, Any]:
    entities = await _entities_for(ctx, args.natural_language_query, args.resolved_entities)
    history = args.conversation_context or ctx.conversation_context
    query = await ctx.services.sql_generator.generate(
        args.natural_language_query, entities, history
    )
    ctx.last_query = query
    return query.to_payload()


async def execute_query(ctx: TurnContext, args: ExecuteQueryInput) -> Dict[str, Any]:
    sql = args.sql_query or _last_sql(ctx)
    if not sql:
        return {"error": "No valid SQL query to execute. Generate one first.", "rows": [], "rowCount": 0}
    result = await asyncio.to_thread(ctx.services.executor.execute, sql, args.max_rows)
    if result.ok:
        ctx.last_result = result
    return result.to_payload()


async def explain_query(ctx: TurnContext, args: ExplainQueryInput) -> Dict[str, Any]:
    sql = args.sql_query or _last_sql(ctx)
    if not sql:
        return {"summary": "There is no query to explain yet.", "sections": [], "error": "No SQL query"}
    explanation = await ctx.services.sql_generator.explain(
        sql, args.original_question or ctx.question
    )
    return explanation.to_payload()


def _rows_from_json(raw: str) -> List[Dict[str, Any]]:
    parsed = json.loads(raw)
    if isinstance(parsed, dict) and isinstance(parsed.get("rows"), list):
        parsed = parsed["rows"]
    if not isinstance(parsed, list) or not all(isinstance(row, dict) for row in parsed):
        raise ValueError("queryResultsJson must be a JSON array of row objects")
    return parsed


async def generate_chart(ctx: TurnContext, args: GenerateChartInput) -> Dict[str, Any]:
    sql_query = args.sql_query
    if args.query_results_json:
        try:
            rows = _rows_from_json(args.query_results_json)
        except ValueError as exc:
            logger.warning("generateChart received unreadable results: %s", exc)
            return {"error": f"Could not read query results: {exc}", "data": []}
    elif ctx.last_result is not None:
        rows = ctx.last_result.rows
        sql_query = sql_query or ctx.last_result.sql_query
    else:
        return {"error": "No query results to chart. Execute a query first.", "data": []}

    chart = await ctx.services.chart_generator.generate(
        rows, args.original_question or ctx.question, sql_query
    )
    return chart.to_payload()


async def prepare_bulk_download(ctx: TurnContext, args: PrepareBulkDownloadInput) -> Dict[str, Any]:
    entities = await _entities_for(ctx, args.natural_language_query, args.resolved_entities)
    result = await ctx.services.bulk_preparer.prepare(args.natural_language_query, entities)
    return result.to_payload()


def analytics_tool_specs() -> List[ToolSpec]:
    return [
        ToolSpec(
            name="generateAnalyticsQuery",
            description=(
                "Generate a PostgreSQL SELECT for a spending question. Uses entity codes resolved"
                " earlier in the turn. Does not run the query."
            ),
            input_model=GenerateQueryInput,
            handler=generate_analytics_query,
        ),
        ToolSpec(
            name="executeQuery",
            description=(
                f"Run a generated SELECT and return up to {chatbot_config.display_row_cap} rows"
                " with dollars and ISO dates."
            ),
            input_model=ExecuteQueryInput,
            handler=execute_query,
        ),
        ToolSpec(
            name="explainQuery",
            description="Explain a SQL query clause by clause in plain English.",
            input_model=ExplainQueryInput,
            handler=explain_query,
        ),
        ToolSpec(
            name="generateChart",
            description="Build a chart configuration (type, axes, colors, insights) for query results.",
            input_model=GenerateChartInput,
            handler=generate_chart,
        ),
        ToolSpec(
            name="prepareBulkDownload",
            description=(
                "Prepare a CSV download of ALL matching rows for export/download requests."
                " Returns a ticket the user downloads themselves; the query is not run here."
            ),
            input_model=PrepareBulkDownloadInput,
            handler=prepare_bulk_download,
        ),
    ]
