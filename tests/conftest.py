import json
import os
from typing import Any, Dict, List, Optional, Union

import pytest

# Keep test runs from writing daily log files into the working tree.
os.environ.setdefault("LOG_DIR", "")

from spending_analyst.ai_chatbot.llm_providers import LLMProvider  # noqa: E402


class StubRPC:
    """Stands in for DatabaseRPC; records every call."""

    def __init__(
        self,
        payload: Any = None,
        tables: Optional[Dict[str, List[dict]]] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.payload = payload
        self.tables = tables or {}
        self.error = error
        self.calls: List[tuple] = []

    def call_json(self, function: str, params, *, timeout_seconds=None):
        self.calls.append((function, dict(params), timeout_seconds))
        if self.error is not None:
            raise self.error
        return self.payload

    def call_table(self, function: str, params, *, timeout_seconds=None):
        self.calls.append((function, dict(params), timeout_seconds))
        if self.error is not None:
            raise self.error
        return list(self.tables.get(function, []))


class ScriptedProvider(LLMProvider):
    """Replies with queued responses in order; dicts are sent as JSON."""

    name = "scripted"

    def __init__(self, *replies: Union[str, dict, Exception]) -> None:
        self.replies = list(replies)
        self.prompts: List[Dict[str, Any]] = []

    async def query(self, system_prompt, user_prompt, conversation_history=None, json_mode=True):
        self.prompts.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "conversation_history": conversation_history,
            }
        )
        if not self.replies:
            raise AssertionError("ScriptedProvider ran out of replies")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        content = reply if isinstance(reply, str) else json.dumps(reply)
        return {"content": content, "provider": self.name}


@pytest.fixture
def stub_rpc():
    return StubRPC()
