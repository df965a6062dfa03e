"""
SQL Query Generation Module
Converts natural language to PostgreSQL SELECT statements using LLMs with safety validation
"""
from typing import Optional, Sequence

from spending_analyst.core.logger import get_logger

from .config import chatbot_config
from .llm_providers import (
    LLMProvider,
    LLMProviderError,
    LLMProviderFactory,
    generate_structured,
)
from .safety import validate_select_only
from .schema_context import BUSINESS_CONTEXT, DATABASE_SCHEMA_CONTEXT
from .schemas import (
    BulkSQLDraft,
    ExplanationSection,
    GeneratedQuery,
    QueryExplanation,
    ResolvedEntitySet,
    SQLDraft,
)

logger = get_logger(__name__)


class SQLGenerator:
    """Generates and validates SQL queries from natural language"""

    def __init__(
        self,
        provider: Optional[LLMProvider] = None,
        provider_name: Optional[str] = None,
        database_schema: Optional[str] = None,
        row_cap: Optional[int] = None,
    ):
        """
        Initialize SQL Generator

        Args:
            provider: Ready LLM provider (created lazily from ``provider_name`` if None)
            provider_name: Model identifier or alias understood by LLMProviderFactory
            database_schema: Custom database schema description (uses default if None)
            row_cap: Display row cap quoted in the prompt (uses config default if None)
        """
        self._provider = provider
        self.provider_name = provider_name or chatbot_config.default_provider
        self.database_schema = database_schema or DATABASE_SCHEMA_CONTEXT
        self.row_cap = row_cap or chatbot_config.display_row_cap

    @property
    def provider(self) -> LLMProvider:
        if self._provider is None:
            self._provider = LLMProviderFactory.create(self.provider_name)
        return self._provider

    def build_system_prompt(self, bulk: bool = False) -> str:
        """
        Build system prompt for LLM with schema and row-cap context

        Args:
            bulk: Build the CSV export variant (no row cap, dollars converted in SQL)

        Returns:
            System prompt string
        """
        if bulk:
            guidance = """CSV EXPORT RULES:
1. This query feeds a file download, not a chart. Return EVERY matching row.
2. Do NOT add a LIMIT clause unless the user explicitly asks for a number of rows
3. Convert cents to dollars in SQL: p."Amount" / 100.0 AS amount_dollars, SUM(p."Amount") / 100.0 AS total_dollars
4. Name every converted money column with a _dollars suffix; never alias a column amount or *_amount
5. Use descriptive snake_case column aliases, they become the CSV header
6. Include readable names next to codes (agency_name with agency_code, payee_name with payee_id)
7. ORDER BY date or by the main metric so the file reads naturally
8. List the output column names, in SELECT order, in csvColumns"""
        else:
            guidance = f"""DISPLAY QUERY RULES:
1. Results are shown in chat and charted; at most {self.row_cap} rows are ever displayed
2. For rankings use ORDER BY <primary metric> DESC NULLS LAST LIMIT {self.row_cap} (or the smaller N the user asks for)
3. Keep money in CENTS: SUM(p."Amount") AS total_amount. The application converts columns named amount, *_amount or *_spending to dollars. Do NOT divide by 100
4. Temporal trends: DATE_TRUNC('month', p."date") AS month, GROUP BY and ORDER BY the bucket
5. Use chart-friendly aliases: one label column followed by numeric metric columns
6. Pick suggestedChartType: line/area for time series, pie for shares of a whole with few slices, bar otherwise"""

        return f"""You are a PostgreSQL query generator for the Texas government spending database.

{self.database_schema}

{BUSINESS_CONTEXT}

CRITICAL Rules:
1. Generate ONLY a single SELECT statement
2. Never use DROP, DELETE, UPDATE, INSERT, ALTER or TRUNCATE, not even inside identifiers or comments
3. Double quote every table and column identifier
4. When resolved entity codes are given, filter with exact matches: p."Agency_CD" IN (529, 537). Never fuzzy match names that are already resolved
5. Restrict dates to 2022 with literal bounds

{guidance}"""

    def build_user_prompt(
        self,
        question: str,
        entities: Optional[ResolvedEntitySet] = None,
        conversation_context: Optional[Sequence[str]] = None,
        bulk: bool = False,
    ) -> str:
        """Build the user prompt with the request, resolved entities and prior queries."""
        sections = [
            f"Generate {'a CSV export' if bulk else 'an optimized'} PostgreSQL query for this request:",
            f"NATURAL LANGUAGE QUERY: {question}",
        ]
        if entities is not None and not entities.is_empty():
            sections.append(f"RESOLVED ENTITIES:\n{entities.describe()}")
        if conversation_context:
            recent = list(conversation_context)[-chatbot_config.max_conversation_history:]
            sections.append(f"CONVERSATION CONTEXT:\nPrevious queries: {'; '.join(recent)}")
        return "\n\n".join(sections)

    async def generate(
        self,
        question: str,
        entities: Optional[ResolvedEntitySet] = None,
        conversation_context: Optional[Sequence[str]] = None,
    ) -> GeneratedQuery:
        """
        Generate a display-path SQL query from a natural language question

        Args:
            question: User's natural language question
            entities: Entity codes resolved before generation
            conversation_context: Previous questions in this conversation

        Returns:
            GeneratedQuery; ``isValid`` is False with an empty query on any failure
        """
        return await self._generate(
            question, entities, conversation_context, bulk=False, stage="sql_generation"
        )

    async def generate_bulk(
        self,
        question: str,
        entities: Optional[ResolvedEntitySet] = None,
    ) -> GeneratedQuery:
        """Generate an uncapped CSV export query. The query is not executed."""
        return await self._generate(question, entities, None, bulk=True, stage="bulk_sql_generation")

    async def _generate(
        self,
        question: str,
        entities: Optional[ResolvedEntitySet],
        conversation_context: Optional[Sequence[str]],
        *,
        bulk: bool,
        stage: str,
    ) -> GeneratedQuery:
        entity_context = entities.describe() if entities is not None else ""
        try:
            draft = await generate_structured(
                self.provider,
                BulkSQLDraft if bulk else SQLDraft,
                system_prompt=self.build_system_prompt(bulk=bulk),
                user_prompt=self.build_user_prompt(question, entities, conversation_context, bulk),
                stage=stage,
            )
            cleaned = validate_select_only(draft.sql_query)
        except (LLMProviderError, ValueError) as exc:
            # ValueError covers SQLSafetyError, StructuredOutputError and missing API keys
            logger.error("SQL generation failed (%s): %s", stage, exc)
            return GeneratedQuery.failed(str(exc), entity_context=entity_context)

        fields = draft.model_dump()
        fields["sql_query"] = cleaned
        logger.info("Generated %s query (%s, ~%d rows)", stage, draft.query_type, draft.estimated_rows)
        return GeneratedQuery(is_valid=True, entity_context=entity_context, **fields)

    async def explain(self, sql_query: str, question: Optional[str] = None) -> QueryExplanation:
        """
        Explain a SQL query section by section in plain English

        Args:
            sql_query: Query to explain
            question: Original question, if known

        Returns:
            QueryExplanation; failures carry ``error`` instead of raising
        """
        system_prompt = (
            "You explain PostgreSQL queries over the Texas government spending database to"
            " non-technical readers. Split the query into its meaningful clauses (SELECT list,"
            " joins, filters, grouping, ordering, limit) and explain each in one or two sentences."
            " Amounts are stored in cents.\n\n"
            f"{self.database_schema}"
        )
        user_prompt = f"SQL QUERY:\n{sql_query}"
        if question:
            user_prompt = f"ORIGINAL QUESTION: {question}\n\n{user_prompt}"

        try:
            return await generate_structured(
                self.provider,
                QueryExplanation,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                stage="query_explanation",
            )
        except (LLMProviderError, ValueError) as exc:
            logger.error("Query explanation failed: %s", exc)
            return QueryExplanation(
                summary="Unable to explain this query.",
                sections=[ExplanationSection(sql_section=sql_query, explanation="")],
                error=str(exc),
            )
