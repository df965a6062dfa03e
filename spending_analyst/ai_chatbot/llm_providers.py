"""
LLM Provider Abstraction Layer
Supports OpenAI GPT and Anthropic Claude models, plus schema-bound JSON replies
"""
import json
import re
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from spending_analyst.core.logger import get_logger

from .config import llm_config

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class LLMProviderError(RuntimeError):
    """The generation service could not be reached or rejected the request."""


class StructuredOutputError(ValueError):
    """The model reply was not JSON or did not match the requested schema."""


JSON_ONLY_SUFFIX = "\n\nIMPORTANT: Respond with valid JSON only."


class LLMProvider(ABC):
    """Base class for LLM providers"""

    name: str = "llm"
    model: Optional[str] = None

    @abstractmethod
    async def query(
        self,
        system_prompt: str,
        user_prompt: str,
        conversation_history: Optional[list] = None,
        json_mode: bool = True
    ) -> Dict[str, Any]:
        """
        Send one prompt and return ``{"content", "model", "provider", "usage"}``

        Raises:
            LLMProviderError: the HTTP call failed or returned an error status
        """
        raise NotImplementedError

    @staticmethod
    def _chat_messages(
        user_prompt: str,
        conversation_history: Optional[list],
        json_mode: bool,
    ) -> List[Dict[str, Any]]:
        """Prior turns (role/content only) followed by the new user message."""
        messages = [
            {"role": msg["role"], "content": msg["content"]}
            for msg in conversation_history or []
            if msg.get("role") in ("user", "assistant") and msg.get("content")
        ]
        content = user_prompt + JSON_ONLY_SUFFIX if json_mode else user_prompt
        messages.append({"role": "user", "content": content})
        return messages

    async def _post(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: Dict[str, str],
        payload: Dict[str, Any],
    ) -> httpx.Response:
        response = await client.post(url, headers=headers, json=payload)
        if response.is_error:
            logger.error(
                "%s API returned %s: %s", self.name, response.status_code, response.text[:500]
            )
        return response

    def _decode(self, response: httpx.Response) -> Dict[str, Any]:
        """Body of a successful response; a gateway page or other non-object is an error."""
        try:
            data = response.json()
        except ValueError as e:
            logger.error("%s API returned a non-JSON body: %s", self.name, response.text[:200])
            raise LLMProviderError(f"{self.name} API returned a non-JSON response") from e
        if not isinstance(data, dict):
            raise LLMProviderError(f"{self.name} API returned an unexpected payload")
        return data

    def _result(self, content: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "content": content,
            "model": self.model,
            "provider": self.name,
            "usage": data.get("usage", {}),
        }


class ClaudeProvider(LLMProvider):
    """Anthropic Claude API provider"""

    name = "claude"
    endpoint = "https://api.anthropic.com/v1/messages"

    def __init__(self, model: Optional[str] = None):
        self.api_key = llm_config.claude_api_key
        self.model = model or llm_config.claude_model
        self.max_tokens = llm_config.claude_max_tokens

        if not self.api_key:
            raise ValueError("Claude API key not configured. Set CLAUDE_API_KEY environment variable.")

    async def query(
        self,
        system_prompt: str,
        user_prompt: str,
        conversation_history: Optional[list] = None,
        json_mode: bool = True
    ) -> Dict[str, Any]:
        """Query the Messages API; the system prompt travels outside the message list."""
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system_prompt,
            "messages": self._chat_messages(user_prompt, conversation_history, json_mode),
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=llm_config.request_timeout_seconds) as client:
                response = await self._post(client, self.endpoint, headers, payload)
                response.raise_for_status()
                data = self._decode(response)
        except httpx.HTTPStatusError as e:
            raise LLMProviderError(f"Claude API error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("Claude API request failed: %s", e)
            raise LLMProviderError(f"Claude API request failed: {e}") from e

        content = "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        )
        return self._result(content, data)


class ChatGPTProvider(LLMProvider):
    """OpenAI GPT API provider (Chat Completions, or Responses for newer models)"""

    name = "chatgpt"
    chat_endpoint = "https://api.openai.com/v1/chat/completions"
    responses_endpoint = "https://api.openai.com/v1/responses"

    def __init__(self, model: Optional[str] = None):
        self.api_key = llm_config.openai_api_key
        self.model = model or llm_config.openai_model
        self.max_tokens = llm_config.openai_max_tokens

        if not self.api_key:
            raise ValueError("OpenAI API key not configured. Set OPENAI_API_KEY environment variable.")

    @property
    def uses_responses_api(self) -> bool:
        lowered = (self.model or "").lower()
        return any(token in lowered for token in ("gpt-5", "gpt-4.1"))

    def _payload(self, messages: List[Dict[str, Any]], json_mode: bool) -> tuple[str, Dict[str, Any]]:
        if self.uses_responses_api:
            return self.responses_endpoint, {
                "model": self.model,
                "input": [
                    {"role": msg["role"], "content": [{"type": "input_text", "text": msg["content"]}]}
                    for msg in messages
                ],
                "max_output_tokens": self.max_tokens,
            }

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        return self.chat_endpoint, payload

    async def query(
        self,
        system_prompt: str,
        user_prompt: str,
        conversation_history: Optional[list] = None,
        json_mode: bool = True
    ) -> Dict[str, Any]:
        """Query OpenAI using the endpoint the model supports"""
        messages = self._chat_messages(user_prompt, conversation_history, json_mode)
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})
        endpoint, payload = self._payload(messages, json_mode)
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=llm_config.request_timeout_seconds) as client:
                response = await self._post(client, endpoint, headers, payload)
                if response.status_code == 400 and "response_format" in payload:
                    # Some chat models reject response_format; the prompt still asks for JSON.
                    payload.pop("response_format")
                    response = await self._post(client, endpoint, headers, payload)
                response.raise_for_status()
                data = self._decode(response)
        except httpx.HTTPStatusError as e:
            raise LLMProviderError(f"OpenAI API error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("OpenAI API request failed: %s", e)
            raise LLMProviderError(f"OpenAI API request failed: {e}") from e

        if self.uses_responses_api:
            content = self._responses_text(data)
        else:
            content = (data.get("choices") or [{}])[0].get("message", {}).get("content") or ""
        return self._result(content, data)

    @staticmethod
    def _responses_text(data: Dict[str, Any]) -> str:
        return "\n".join(
            part.get("text", "")
            for item in data.get("output", [])
            if item.get("type") == "message"
            for part in item.get("content", [])
            if part.get("type") in ("text", "output_text")
        ).strip()


class LLMProviderFactory:
    """Map the model names the client sends to a configured provider."""

    DEFAULT_MODEL = "gpt-4o"

    # alias -> (provider class name, configured model lookup)
    ALIASES: Dict[str, tuple[str, Callable[[], Optional[str]]]] = {
        "gpt-4o": ("chatgpt", lambda: llm_config.openai_model),
        "openai": ("chatgpt", lambda: llm_config.openai_model),
        "chatgpt": ("chatgpt", lambda: llm_config.openai_model),
        "claude-haiku-4.5": ("claude", lambda: llm_config.claude_model),
        "claude": ("claude", lambda: llm_config.claude_model),
        "anthropic": ("claude", lambda: llm_config.claude_model),
    }

    PROVIDERS: Dict[str, Type[LLMProvider]] = {
        "chatgpt": ChatGPTProvider,
        "claude": ClaudeProvider,
    }

    @classmethod
    def create(cls, provider_name: Optional[str] = None) -> LLMProvider:
        """
        Build a provider for a model name or alias

        Args:
            provider_name: alias such as ``gpt-4o`` / ``claude``, or a concrete
                model id (``claude-sonnet-4-5``, ``gpt-4.1-mini``, ``o3``)

        Raises:
            ValueError: unknown model family or missing API key
        """
        requested = (provider_name or "").strip()
        key = requested.lower() or cls.DEFAULT_MODEL

        if key in cls.ALIASES:
            provider_key, configured_model = cls.ALIASES[key]
            return cls.PROVIDERS[provider_key](model=configured_model())
        if key.startswith("claude"):
            return ClaudeProvider(model=requested)
        if key.startswith(("gpt", "o1", "o3", "o4")):
            return ChatGPTProvider(model=requested)

        raise ValueError(f"Unknown LLM provider: {provider_name}")


def parse_json_response(content: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Attempt to parse JSON content with common LLM formatting quirks handled.

    This trims code fences like ```json blocks and tries to extract the first
    balanced JSON object when extra prose slips into the response.
    """
    if not content:
        return None

    candidates: List[str] = []
    stripped = content.strip()
    fenced_match = re.search(r"```(?:json)?\s*(.*?)```", stripped, re.DOTALL | re.IGNORECASE)
    if fenced_match:
        candidates.append(fenced_match.group(1).strip())
    candidates.append(stripped)

    extracted_object = extract_first_json_object(stripped)
    if extracted_object:
        candidates.append(extracted_object)

    for candidate in candidates:
        if not candidate:
            continue
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    return None


def extract_first_json_object(text: str) -> Optional[str]:
    """Extract the first balanced JSON object from the text."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
            continue

        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]

    return None


def log_llm_exchange(
    *,
    stage: str,
    provider_name: str,
    system_prompt: str,
    user_prompt: str,
    response_content: str,
) -> None:
    """Log prompts and responses for observability/troubleshooting."""
    logger.info("LLM exchange stage=%s provider=%s", stage, provider_name)
    logger.debug("System prompt [%s]: %s", stage, system_prompt)
    logger.debug("User prompt [%s]: %s", stage, user_prompt)
    logger.debug("Response [%s]: %s", stage, response_content)


def describe_schema(schema: Type[BaseModel]) -> str:
    """JSON schema text appended to prompts so the reply has a fixed shape."""
    return json.dumps(schema.model_json_schema(by_alias=True), indent=2)


async def generate_structured(
    provider: LLMProvider,
    schema: Type[ModelT],
    *,
    system_prompt: str,
    user_prompt: str,
    stage: str,
    conversation_history: Optional[list] = None,
) -> ModelT:
    """Ask the provider for JSON matching ``schema`` and validate it.

    Raises:
        LLMProviderError: the HTTP call failed.
        StructuredOutputError: the reply was not JSON or failed validation.
    """
    prompt = (
        f"{user_prompt}\n\n"
        "Reply with a single JSON object that validates against this JSON schema:\n"
        f"{describe_schema(schema)}"
    )
    response = await provider.query(
        system_prompt=system_prompt,
        user_prompt=prompt,
        conversation_history=conversation_history,
        json_mode=True,
    )
    content = response.get("content", "")
    log_llm_exchange(
        stage=stage,
        provider_name=response.get("provider") or provider.name,
        system_prompt=system_prompt,
        user_prompt=prompt,
        response_content=content,
    )

    parsed = parse_json_response(content)
    if parsed is None:
        raise StructuredOutputError(f"{stage}: model reply was not valid JSON")
    try:
        return schema.model_validate(parsed)
    except ValidationError as exc:
        raise StructuredOutputError(f"{stage}: reply did not match schema: {exc}") from exc
