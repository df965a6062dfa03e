"""Pydantic models exchanged between the assistant's tools, the LLM and the UI.

Every model serializes with camelCase aliases (``sqlQuery``, ``rowCount``,
``xKey`` ...) because that is the shape the chat UI and the model prompts use;
Python code reads and writes the snake_case attribute names.
"""
from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ChartType = Literal["bar", "line", "area", "pie"]
Granularity = Literal["daily", "weekly", "monthly", "quarterly", "yearly"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict using the camelCase wire names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class EntityCandidate(CamelModel):
    """One fuzzy-match result for an entity lookup."""

    name: str
    code: Union[int, str]
    similarity: Optional[float] = None


class LookupResult(CamelModel):
    """Outcome of an entity-code lookup tool.

    ``result`` is the sentence shown to the user; ``status`` lets callers
    branch without parsing it.
    """

    result: str
    status: Literal["resolved", "ambiguous", "not_found", "error"]
    entity_type: str
    search_term: str
    candidates: list[EntityCandidate] = Field(default_factory=list)


class DateRange(CamelModel):
    start: str
    end: str
    granularity: Optional[Granularity] = None


ENTITY_SET_LABELS = (
    ("agency_ids", "Agencies"),
    ("category_ids", "Categories"),
    ("payee_ids", "Payees"),
    ("fund_ids", "Funds"),
    ("application_fund_ids", "Application Funds"),
    ("appropriation_ids", "Appropriations"),
    ("comptroller_ids", "Comptroller Codes"),
)


class ResolvedEntitySet(CamelModel):
    """Entity codes resolved before SQL generation for one conversation turn.

    Each list accepts full candidates or bare codes.
    """

    agency_ids: Optional[list[EntityCandidate]] = None
    category_ids: Optional[list[EntityCandidate]] = None
    fund_ids: Optional[list[EntityCandidate]] = None
    payee_ids: Optional[list[EntityCandidate]] = None
    appropriation_ids: Optional[list[EntityCandidate]] = None
    comptroller_ids: Optional[list[EntityCandidate]] = None
    application_fund_ids: Optional[list[EntityCandidate]] = None
    date_range: Optional[DateRange] = None

    @field_validator(
        "agency_ids",
        "category_ids",
        "fund_ids",
        "payee_ids",
        "appropriation_ids",
        "comptroller_ids",
        "application_fund_ids",
        mode="before",
    )
    @classmethod
    def accept_bare_codes(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [
            {"name": str(item), "code": item} if isinstance(item, (int, str)) else item
            for item in value
        ]

    def add(self, field_name: str, candidate: EntityCandidate) -> None:
        current = getattr(self, field_name) or []
        if all(existing.code != candidate.code for existing in current):
            current.append(candidate)
        setattr(self, field_name, current)

    def is_empty(self) -> bool:
        return (
            not any(getattr(self, name) for name, _ in ENTITY_SET_LABELS)
            and self.date_range is None
        )

    def describe(self) -> str:
        """One-line summary used as prompt context and as ``entityContext``."""
        parts = []
        for field_name, label in ENTITY_SET_LABELS:
            candidates = getattr(self, field_name)
            if candidates:
                parts.append(
                    f"{label}: " + ", ".join(f"{c.name} ({c.code})" for c in candidates)
                )
        if self.date_range:
            text = f"Date Range: {self.date_range.start} to {self.date_range.end}"
            if self.date_range.granularity:
                text += f" ({self.date_range.granularity})"
            parts.append(text)
        return "; ".join(parts)


class SQLDraft(CamelModel):
    """Shape the generation service fills in for a SQL request."""

    sql_query: str = Field(description="PostgreSQL SELECT statement with quoted identifiers")
    explanation: str = Field(description="Plain English explanation of what the query does")
    estimated_rows: int = Field(default=0, description="Estimated number of rows returned")
    chart_suitable: bool = True
    temporal_analysis: bool = False
    complexity: Literal["Simple", "Moderate", "Complex"] = "Simple"
    query_type: Literal["topN", "trends", "comparison", "breakdown", "detailed"] = "detailed"
    suggested_chart_type: ChartType = "bar"


class BulkSQLDraft(SQLDraft):
    """SQL draft for a CSV export; the column list becomes the file header."""

    csv_columns: list[str] = Field(
        default_factory=list, description="Output column names in SELECT order"
    )


class GeneratedQuery(SQLDraft):
    """SQL generator output. Invalid queries carry an empty ``sqlQuery``."""

    is_valid: bool
    entity_context: str = ""
    csv_columns: Optional[list[str]] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str, entity_context: str = "") -> "GeneratedQuery":
        return cls(
            sql_query="",
            explanation="Failed to generate SQL query due to an error",
            is_valid=False,
            estimated_rows=0,
            chart_suitable=False,
            entity_context=entity_context,
            error=error,
        )


class QueryResultSet(CamelModel):
    """Normalized display-path rows: cents already in dollars, dates ISO."""

    rows: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    has_more_results: bool = False
    sql_query: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, error: str, sql_query: Optional[str] = None) -> "QueryResultSet":
        return cls(rows=[], row_count=0, has_more_results=False, sql_query=sql_query, error=error)


class ExplanationSection(CamelModel):
    sql_section: str
    explanation: str


class QueryExplanation(CamelModel):
    summary: str
    sections: list[ExplanationSection] = Field(default_factory=list)
    error: Optional[str] = None


class TrendAnalysis(CamelModel):
    direction: Literal["increasing", "decreasing", "stable", "volatile"]
    change_percent: Optional[float] = None
    seasonality: Optional[str] = None


class AlternativeChart(CamelModel):
    type: ChartType
    reason: str = ""
    suitability: float = 0
    title: str = ""
    analytical_perspective: str = ""


class DataQuality(CamelModel):
    completeness: float = 100
    time_range: str = ""
    sample_size: Union[int, str] = ""


class ChartConfig(CamelModel):
    """Declarative chart description consumed by the renderer.

    Instances are frozen; switching to an alternative view builds a copy.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: ChartType
    title: str = ""
    description: str = ""
    x_key: str
    y_keys: list[str]
    colors: dict[str, str] = Field(default_factory=dict)
    legend: bool = True
    business_insights: list[str] = Field(default_factory=list)
    takeaway: str = ""
    is_time_series: bool = False
    trend_analysis: Optional[TrendAnalysis] = None
    alternative_charts: list[AlternativeChart] = Field(default_factory=list)
    data_quality: DataQuality = Field(default_factory=DataQuality)

    def with_type(self, chart_type: ChartType) -> "ChartConfig":
        """Return the view for ``chart_type`` without touching this config."""
        if chart_type == self.type:
            return self
        alternative = next(
            (alt for alt in self.alternative_charts if alt.type == chart_type), None
        )
        if alternative is None:
            raise ValueError(f"No alternative '{chart_type}' view for this chart")
        description = self.description
        if alternative.analytical_perspective:
            description = f"{description} - {alternative.analytical_perspective}"
        return self.model_copy(
            update={
                "type": chart_type,
                "title": alternative.title or self.title,
                "description": description,
            }
        )


class ChartResult(CamelModel):
    chart_config: Optional[ChartConfig] = None
    data: list[dict[str, Any]] = Field(default_factory=list)
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.chart_config is not None and self.error is None


class BulkDownloadTicket(CamelModel):
    """Everything Phase 2 needs; the query has not been run yet."""

    sql_query: str
    filename: str
    estimated_rows: int = 0
    csv_columns: list[str] = Field(default_factory=list)
    explanation: str = ""
    entity_context: str = ""


class PrepareResult(CamelModel):
    success: bool
    prepared: bool = False
    ticket: Optional[BulkDownloadTicket] = None
    estimated_size: Optional[str] = None
    error: Optional[str] = None
    suggestion: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        """Flat tool result: ticket fields sit beside ``success``/``prepared``."""
        payload = super().to_payload()
        payload.update(payload.pop("ticket", {}))
        return payload


class ToolInvocation(CamelModel):
    """One tool call made during a chat turn, in emission order."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)
    state: Literal["result", "error"] = "result"
    result: dict[str, Any] = Field(default_factory=dict)


class ChatTurnResult(CamelModel):
    """Reply for one user message plus every tool call made to produce it."""

    reply: str
    tool_invocations: list[ToolInvocation] = Field(default_factory=list)
    steps: int = 0
    provider: Optional[str] = None
    error: Optional[str] = None
