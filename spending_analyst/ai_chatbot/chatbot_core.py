"""
Core Chatbot Orchestration Module
Runs the LLM tool loop for one chat turn
"""
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from spending_analyst.core.logger import get_logger, log_context
from spending_analyst.db.rpc import DatabaseRPC

from .bulk_download import BulkDownloadPreparer
from .chart_generator import ChartGenerator
from .config import ChatbotConfig, chatbot_config
from .entity_resolver import EntityResolver
from .executor import QueryExecutor
from .llm_providers import (
    LLMProvider,
    LLMProviderError,
    LLMProviderFactory,
    log_llm_exchange,
    parse_json_response,
)
from .prompt_builder import PromptBuilder
from .schemas import ChatTurnResult, ToolInvocation
from .sql_generator import SQLGenerator
from .tools import ToolServices, ToolSpec, TurnContext, build_tool_specs

logger = get_logger(__name__)


class ToolRegistry:
    """Central registry for the assistant's tool calls."""

    def __init__(self, specs: Optional[Sequence[ToolSpec]] = None) -> None:
        self._tools: Dict[str, ToolSpec] = {
            spec.name: spec for spec in (specs if specs is not None else build_tool_specs())
        }

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def describe_for_prompt(self) -> str:
        """Human-readable list of tools and their arguments."""
        return "\n".join(spec.describe() for spec in self._tools.values())

    async def invoke(
        self,
        ctx: TurnContext,
        name: str,
        raw_args: Dict[str, Any],
        tool_call_id: Optional[str] = None,
    ) -> ToolInvocation:
        """Run one tool call; failures become an ``error`` invocation, never an exception."""
        tool_call_id = tool_call_id or f"call_{uuid.uuid4().hex[:12]}"
        invocation = ToolInvocation(tool_call_id=tool_call_id, tool_name=name, args=raw_args)

        spec = self._tools.get(name)
        if spec is None:
            logger.warning("Unknown tool requested by model: %s", name)
            invocation.state = "error"
            invocation.result = {"error": f"Unknown tool: {name}"}
            return invocation

        with log_context.bound(tool=name, call_id=tool_call_id):
            try:
                args = spec.input_model.model_validate(raw_args)
            except ValidationError as exc:
                logger.warning("Tool %s rejected arguments: %s", name, exc)
                invocation.state = "error"
                invocation.result = {"error": f"Invalid arguments for {name}: {exc}"}
                return invocation

            try:
                logger.info("Executing tool=%s args=%s", name, raw_args)
                invocation.result = await spec.handler(ctx, args)
            except Exception as exc:
                logger.error("Tool %s failed: %s", name, exc, exc_info=True)
                invocation.state = "error"
                invocation.result = {"error": f"{name} failed: {exc}"}

        return invocation


class SpendingAnalystChatbot:
    """Main chatbot class for spending questions"""

    def __init__(
        self,
        rpc: DatabaseRPC,
        provider_factory: Callable[[str], LLMProvider] = LLMProviderFactory.create,
        registry: Optional[ToolRegistry] = None,
        config: Optional[ChatbotConfig] = None,
    ):
        """
        Initialize chatbot

        Args:
            rpc: Database RPC client shared by the lookup, display and bulk paths
            provider_factory: Builds an LLM provider from a model name
            registry: Tool catalogue (defaults to every built-in tool)
            config: Assistant configuration (uses the global config if None)
        """
        self.rpc = rpc
        self.provider_factory = provider_factory
        self.tool_registry = registry or ToolRegistry()
        self.config = config or chatbot_config
        self.prompt_builder = PromptBuilder(self.tool_registry.describe_for_prompt())

    def build_services(self, provider: LLMProvider) -> ToolServices:
        sql_generator = SQLGenerator(provider=provider, row_cap=self.config.display_row_cap)
        return ToolServices(
            resolver=EntityResolver(self.rpc, self.config.entity_candidate_limit),
            sql_generator=sql_generator,
            executor=QueryExecutor(self.rpc, self.config),
            chart_generator=ChartGenerator(provider=provider, row_cap=self.config.display_row_cap),
            bulk_preparer=BulkDownloadPreparer(sql_generator),
        )

    async def process_query(
        self,
        question: str,
        provider_name: Optional[str] = None,
        conversation_history: Optional[List[Dict[str, str]]] = None,
    ) -> ChatTurnResult:
        """
        Process a chat turn end-to-end

        Args:
            question: User's natural language question
            provider_name: LLM provider (e.g., 'gpt-4o', 'claude-haiku-4.5')
            conversation_history: Previous messages as ``{"role", "content"}`` dicts

        Returns:
            ChatTurnResult with the reply and the tool invocations in emission order
        """
        provider_name = provider_name or self.config.default_provider
        history = list(conversation_history or [])[-self.config.max_conversation_history:]
        turn_id = uuid.uuid4().hex[:8]

        with log_context.bound(turn=turn_id):
            try:
                provider = self.provider_factory(provider_name)
            except ValueError as exc:
                logger.error("Cannot create provider %s: %s", provider_name, exc)
                return ChatTurnResult(reply=f"Sorry, I encountered an error: {exc}", error=str(exc))

            ctx = TurnContext(
                question=question,
                services=self.build_services(provider),
                conversation_context=[
                    m.get("content", "") for m in history if m.get("role") == "user"
                ],
            )
            return await self._run_tool_loop(ctx, provider, history)

    async def _run_tool_loop(
        self,
        ctx: TurnContext,
        provider: LLMProvider,
        history: List[Dict[str, str]],
    ) -> ChatTurnResult:
        system_prompt = self.prompt_builder.build_system_prompt()
        invocations: List[ToolInvocation] = []

        for step in range(1, self.config.max_tool_steps + 1):
            user_prompt = self.prompt_builder.build_user_prompt(ctx.question, invocations)
            try:
                response = await provider.query(
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    conversation_history=history,
                    json_mode=True,
                )
            except LLMProviderError as exc:
                logger.error("Chatbot query failed at step %d: %s", step, exc)
                return ChatTurnResult(
                    reply=f"Sorry, I encountered an error: {exc}",
                    tool_invocations=invocations,
                    steps=step,
                    provider=provider.name,
                    error=str(exc),
                )

            content = response.get("content", "")
            log_llm_exchange(
                stage=f"tool_loop_step_{step}",
                provider_name=response.get("provider") or provider.name,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                response_content=content,
            )

            plan = parse_json_response(content)
            if plan is None:
                logger.warning("Tool loop reply was not JSON; returning it as text")
                return ChatTurnResult(
                    reply=content.strip() or "Sorry, I could not produce an answer.",
                    tool_invocations=invocations,
                    steps=step,
                    provider=provider.name,
                )

            calls = [call for call in plan.get("tool_calls") or [] if isinstance(call, dict)]
            if not calls:
                return ChatTurnResult(
                    reply=str(plan.get("reply") or "Here's what I found."),
                    tool_invocations=invocations,
                    steps=step,
                    provider=provider.name,
                )

            logger.info(
                "Step %d -> tools: %s", step, [call.get("tool") or call.get("name") for call in calls]
            )
            for call in calls:
                name = str(call.get("tool") or call.get("name") or "").strip()
                arguments = call.get("arguments") or call.get("args") or {}
                if not isinstance(arguments, dict):
                    arguments = {}
                invocations.append(
                    await self.tool_registry.invoke(ctx, name, arguments, call.get("id"))
                )

        logger.warning("Tool loop stopped after %d steps", self.config.max_tool_steps)
        return ChatTurnResult(
            reply=(
                "I ran out of steps before finishing. Here is what I gathered so far;"
                " try asking a narrower question."
            ),
            tool_invocations=invocations,
            steps=self.config.max_tool_steps,
            provider=provider.name,
            error="max_tool_steps reached",
        )
