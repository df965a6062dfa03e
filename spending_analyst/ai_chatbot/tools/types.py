"""Typed helpers shared across the assistant's tools."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, Field

from ..bulk_download import BulkDownloadPreparer
from ..chart_generator import ChartGenerator
from ..entity_resolver import EntityResolver
from ..executor import QueryExecutor
from ..schemas import CamelModel, GeneratedQuery, QueryResultSet, ResolvedEntitySet
from ..sql_generator import SQLGenerator


@dataclass(frozen=True)
class ToolServices:
    """Components a tool handler may call during a turn."""

    resolver: EntityResolver
    sql_generator: SQLGenerator
    executor: QueryExecutor
    chart_generator: ChartGenerator
    bulk_preparer: BulkDownloadPreparer


@dataclass
class TurnContext:
    """State for one chat turn; discarded when the turn ends."""

    question: str
    services: ToolServices
    entities: ResolvedEntitySet = field(default_factory=ResolvedEntitySet)
    conversation_context: List[str] = field(default_factory=list)
    last_query: Optional[GeneratedQuery] = None
    last_result: Optional[QueryResultSet] = None


ToolHandler = Callable[[TurnContext, Any], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class ToolSpec:
    """Registry entry describing a callable tool and its input model."""

    name: str
    description: str
    input_model: Type[BaseModel]
    handler: ToolHandler

    def describe(self) -> str:
        schema = self.input_model.model_json_schema(by_alias=True)
        arguments = {
            name: prop.get("description") or prop.get("type", "any")
            for name, prop in schema.get("properties", {}).items()
        }
        return f"- {self.name}: {self.description}\n  arguments: {json.dumps(arguments)}"


class LookupInput(CamelModel):
    search_term: str = Field(description="The name to search for")


class GenerateQueryInput(CamelModel):
    natural_language_query: str = Field(
        description="The question about Texas government spending data"
    )
    resolved_entities: Optional[ResolvedEntitySet] = Field(
        default=None, description="Entity codes already resolved with the lookup tools"
    )
    conversation_context: Optional[List[str]] = Field(
        default=None, description="Previous questions in this conversation"
    )


class ExecuteQueryInput(CamelModel):
    sql_query: Optional[str] = Field(
        default=None, description="SELECT to run; defaults to the last generated query"
    )
    max_rows: Optional[int] = Field(
        default=None, description="Maximum rows to return (never above the display cap)"
    )


class ExplainQueryInput(CamelModel):
    sql_query: Optional[str] = Field(
        default=None, description="SQL to explain; defaults to the last generated query"
    )
    original_question: Optional[str] = Field(default=None, description="Question the SQL answers")


class GenerateChartInput(CamelModel):
    query_results_json: Optional[str] = Field(
        default=None, description="JSON array of result rows; defaults to the last executed query"
    )
    original_question: Optional[str] = Field(default=None, description="Question the rows answer")
    sql_query: Optional[str] = Field(default=None, description="SQL that produced the rows")


class PrepareBulkDownloadInput(CamelModel):
    natural_language_query: str = Field(description="What the user wants in the CSV file")
    resolved_entities: Optional[ResolvedEntitySet] = Field(
        default=None, description="Entity codes already resolved with the lookup tools"
    )


__all__ = [
    "ExecuteQueryInput",
    "ExplainQueryInput",
    "GenerateChartInput",
    "GenerateQueryInput",
    "LookupInput",
    "PrepareBulkDownloadInput",
    "ToolHandler",
    "ToolServices",
    "ToolSpec",
    "TurnContext",
]
