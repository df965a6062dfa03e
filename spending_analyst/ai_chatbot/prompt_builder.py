"""Prompt assembly utilities for the spending assistant.

This module centralizes the long-form prompt construction for the tool
loop. The system prompt describes the dataset, the tool catalogue and the
JSON reply contract; the user prompt carries the question, and every tool
result gathered so far in the turn so the model can choose the next step.
"""
from __future__ import annotations

import json
from typing import Sequence

from .schemas import ToolInvocation

RESULT_CHAR_LIMIT = 4000


class PromptBuilder:
    """Construct structured prompts for tool-loop calls."""

    APP_HEADER = (
        "You are the Texas DOGE spending analyst. You answer questions about Texas"
        " state government payments made in 2022 (agencies, payees, categories,"
        " funds, appropriations and comptroller objects) by calling tools."
    )

    WORKFLOW = (
        "Workflow:\n"
        "1. When the user names a specific agency, payee, category, fund, application fund,"
        " appropriation or comptroller object, resolve it with the matching get*Code tool first.\n"
        "2. If a lookup returns several candidates that could all be meant, stop and ask the user"
        " to choose. If it returns one, continue without asking.\n"
        "3. For analysis: generateAnalyticsQuery, then executeQuery, then generateChart when"
        " the query is chartSuitable and returned rows.\n"
        "4. For download, export or CSV requests call prepareBulkDownload only. Never call"
        " executeQuery for an export; the user downloads the file themselves.\n"
        "5. Use explainQuery when the user asks what a query does.\n"
        "6. When a lookup tool answers the question, report its result directly.\n"
        "7. Amounts in tool results are dollars. If hasMoreResults is true, say the list was"
        " cut at the display limit and offer a CSV download."
    )

    RESPONSE_CONTRACT = """{
    "reply": "Text for the user. Empty while you still need tool results.",
    "tool_calls": [
        {"tool": "getAgencyCode", "arguments": {"searchTerm": "transportation"}}
    ]
}"""

    def __init__(self, tool_catalogue: str):
        self.tool_catalogue = tool_catalogue.strip()

    def build_system_prompt(self) -> str:
        """Build the system prompt with dataset, tools and reply contract."""

        return (
            f"{self.APP_HEADER}\n\n"
            f"Available tools:\n{self.tool_catalogue}\n\n"
            f"{self.WORKFLOW}\n\n"
            "Always respond with a single JSON object following this contract and never"
            " include prose outside of the JSON body. Tool calls run in the order listed."
            " Return an empty tool_calls list together with the final reply when you are done.\n"
            f"Response contract:\n{self.RESPONSE_CONTRACT}"
        )

    def build_user_prompt(self, question: str, invocations: Sequence[ToolInvocation]) -> str:
        """Build the user prompt with the question and the tool results so far."""

        return (
            f"User question: {question}\n\n"
            f"Tool results so far:{self._format_invocations(invocations)}\n\n"
            "Decide the next tool calls, or give the final reply."
        )

    def _format_invocations(self, invocations: Sequence[ToolInvocation]) -> str:
        if not invocations:
            return " (none yet)"

        formatted = []
        for invocation in invocations:
            result = json.dumps(invocation.result, default=str)
            if len(result) > RESULT_CHAR_LIMIT:
                result = result[:RESULT_CHAR_LIMIT] + "... (truncated)"
            formatted.append(
                f"- {invocation.tool_name}({json.dumps(invocation.args, default=str)})"
                f" [{invocation.state}] -> {result}"
            )
        return "\n" + "\n".join(formatted)
