"""
AI Assistant Configuration Module
Centralized configuration for LLM providers, row caps and timeouts
"""
import os
from pydantic import BaseModel, Field


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw.isdigit() else default


class LLMProviderConfig(BaseModel):
    """Configuration for LLM providers"""

    # OpenAI Configuration
    openai_api_key: str = Field(
        default_factory=lambda: os.getenv("OPENAI_API_KEY", "")
    )
    openai_model: str = "gpt-4o"
    openai_max_tokens: int = 4000

    # Claude Configuration
    claude_api_key: str = Field(
        default_factory=lambda: os.getenv("CLAUDE_API_KEY", "")
    )
    claude_model: str = "claude-haiku-4-5-20251001"
    claude_max_tokens: int = 4000

    request_timeout_seconds: float = 60.0


class ChatbotConfig(BaseModel):
    """General assistant configuration"""

    default_provider: str = Field(
        default_factory=lambda: os.getenv("LLM_PROVIDER", "gpt-4o")
    )

    # Conversation loop
    max_tool_steps: int = 12
    max_conversation_history: int = 6

    # Display path: execute_analytics_query clamps to the same cap server side
    display_row_cap: int = Field(
        default_factory=lambda: _env_int("DISPLAY_ROW_CAP", 25)
    )
    display_timeout_seconds: int = 90

    # Bulk path: execute_bulk_analytics_query, no row cap
    bulk_timeout_seconds: int = 600

    entity_candidate_limit: int = 10

    # Security settings
    blocked_sql_keywords: list[str] = [
        "DROP", "DELETE", "UPDATE", "INSERT", "ALTER", "TRUNCATE"
    ]

    # Chart settings
    chart_color_palette: list[str] = [
        "#2563eb",  # Blue
        "#dc2626",  # Red
        "#16a34a",  # Green
        "#d97706",  # Amber
        "#7c3aed",  # Violet
        "#0891b2",  # Cyan
        "#db2777",  # Pink
        "#4b5563",  # Slate
    ]

    # Dataset bounds (payments cover calendar 2022 only)
    dataset_start_date: str = "2022-01-01"
    dataset_end_date: str = "2022-12-31"


# Global config instances
llm_config = LLMProviderConfig()
chatbot_config = ChatbotConfig()
