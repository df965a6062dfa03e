"""
Chart Configuration Generator
Creates declarative chart configurations from capped query results
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

from spending_analyst.core.formatting import is_date_field
from spending_analyst.core.logger import get_logger

from .config import chatbot_config
from .llm_providers import LLMProvider, LLMProviderError, LLMProviderFactory, generate_structured
from .schemas import ChartConfig, ChartResult

logger = get_logger(__name__)


class ChartGenerator:
    """Generates chart configurations from data via structured generation"""

    def __init__(
        self,
        provider: Optional[LLMProvider] = None,
        provider_name: Optional[str] = None,
        color_palette: Optional[List[str]] = None,
        row_cap: Optional[int] = None,
    ):
        """
        Initialize chart generator

        Args:
            provider: Ready LLM provider (created lazily from ``provider_name`` if None)
            provider_name: Model identifier or alias understood by LLMProviderFactory
            color_palette: Custom color palette (uses config default if None)
            row_cap: Maximum rows sent to the model and plotted (uses config default if None)
        """
        self._provider = provider
        self.provider_name = provider_name or chatbot_config.default_provider
        self.colors = color_palette or chatbot_config.chart_color_palette
        self.row_cap = row_cap or chatbot_config.display_row_cap

    @property
    def provider(self) -> LLMProvider:
        if self._provider is None:
            self._provider = LLMProviderFactory.create(self.provider_name)
        return self._provider

    async def generate(
        self,
        rows: Sequence[Dict[str, Any]],
        question: str,
        sql_query: Optional[str] = None,
    ) -> ChartResult:
        """
        Generate a chart configuration for query results

        Args:
            rows: Normalized result rows (dollars, ISO dates)
            question: The question the rows answer
            sql_query: SQL that produced the rows, for context

        Returns:
            ChartResult with ``chartConfig`` and the plotted ``data``; failures set ``error``
        """
        data = [dict(row) for row in rows[: self.row_cap]]
        if not data:
            return ChartResult(message="No data available to chart.")

        try:
            config = await generate_structured(
                self.provider,
                ChartConfig,
                system_prompt=self._system_prompt(),
                user_prompt=self._user_prompt(data, question, sql_query),
                stage="chart_generation",
            )
        except (LLMProviderError, ValueError) as exc:
            logger.error("Chart generation failed: %s", exc)
            return ChartResult(data=data, error=f"Chart generation failed: {exc}")

        return ChartResult(chart_config=self.finalize(config, data), data=data)

    def finalize(self, config: ChartConfig, data: Sequence[Dict[str, Any]]) -> ChartConfig:
        """Repair axis keys that are missing from the data and fill in colors."""
        sample = data[0]
        x_key = config.x_key
        y_keys = [key for key in config.y_keys if key in sample and key != x_key]

        if x_key not in sample or not y_keys:
            detected_x, detected_y = self._detect_fields(sample)
            if x_key not in sample:
                logger.warning("Chart xKey %r not in data; using %r", x_key, detected_x)
                x_key = detected_x
            if not y_keys:
                logger.warning("Chart yKeys %s not in data; using %r", config.y_keys, detected_y)
                y_keys = [detected_y]

        return config.model_copy(
            update={
                "x_key": x_key,
                "y_keys": y_keys,
                "colors": self.assign_colors(y_keys, config.colors),
                "is_time_series": config.is_time_series or is_date_field(x_key),
            }
        )

    def assign_colors(
        self, y_keys: Sequence[str], provided: Optional[Dict[str, str]] = None
    ) -> Dict[str, str]:
        """Keep model-supplied colors, give every other series a stable one by index."""
        provided = provided or {}
        colors: Dict[str, str] = {}
        for index, key in enumerate(y_keys):
            if provided.get(key):
                colors[key] = provided[key]
            elif index < len(self.colors):
                colors[key] = self.colors[index]
            else:
                colors[key] = f"hsl({(index * 137.5) % 360:g}, 70%, 50%)"
        return colors

    def _detect_fields(self, row: Dict[str, Any]) -> tuple[str, str]:
        """Auto-detect x and y fields from data structure"""
        keys = list(row.keys())

        # Look for common label fields
        label_candidates = [
            "month", "date", "quarter", "week", "agency_name", "category",
            "payee_name", "fund_description", "name",
        ]
        x_field = next((k for k in keys if k.lower() in label_candidates), None)
        if x_field is None:
            x_field = next((k for k in keys if isinstance(row[k], str)), keys[0])

        numeric = [
            k for k in keys
            if k != x_field and isinstance(row[k], (int, float)) and not isinstance(row[k], bool)
        ]
        value_candidates = ["total_amount", "amount", "total_spending", "total", "count"]
        y_field = next(
            (k for k in numeric if k.lower() in value_candidates),
            numeric[0] if numeric else keys[-1],
        )

        return x_field, y_field

    def _system_prompt(self) -> str:
        return (
            "You design charts for Texas government spending data. Given query results,"
            " choose the chart type that best answers the question: line or area for"
            " time series, bar for rankings and comparisons, pie only for a share of a"
            " whole with at most 7 slices.\n"
            "Rules:\n"
            "- xKey must be one of the column names in the data; yKeys must be numeric columns\n"
            "- Money values are already in dollars\n"
            "- Give 2-4 businessInsights grounded in the numbers and one takeaway sentence\n"
            "- Offer up to 2 alternativeCharts of other types, each with a title and analyticalPerspective\n"
            "- Fill dataQuality.sampleSize with the number of rows and dataQuality.timeRange when dates are present"
        )

    def _user_prompt(
        self,
        data: Sequence[Dict[str, Any]],
        question: str,
        sql_query: Optional[str],
    ) -> str:
        parts = [f"QUESTION: {question}"]
        if sql_query:
            parts.append(f"SQL USED:\n{sql_query}")
        parts.append(f"COLUMNS: {', '.join(data[0].keys())}")
        parts.append(f"DATA ({len(data)} rows):\n{json.dumps(data, default=str)}")
        return "\n\n".join(parts)
