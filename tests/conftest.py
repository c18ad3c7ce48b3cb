"""
Shared pytest fixtures for the intent service tests.

Provides:
- ScriptedCompletionClient, a deterministic completion backend
- In-memory session store and memory manager fixtures
- Request builders for the CDN scenario
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Union

import pytest

from intent_agent.application.bus.schema.messages import IntentRequest
from intent_agent.domain.memory.memory_manager import ConversationMemoryManager
from intent_agent.domain.memory.session_cache import SessionCache
from intent_agent.domain.memory.session_store import InMemorySessionStore
from intent_agent.infrastructure.llm.completion_client import (
    CompletionClient,
    CompletionParams,
    CompletionResult,
    Usage,
)
from intent_agent.infrastructure.observability.logging import metrics


ScriptStep = Union[str, Exception]


class ScriptedCompletionClient(CompletionClient):
    """Replays canned completions in order; exceptions in the script are raised"""

    def __init__(self, script: Optional[List[ScriptStep]] = None, delay: float = 0.0):
        self.script = list(script or [])
        self.delay = delay
        self.prompts: List[str] = []
        self.params: List[CompletionParams] = []
        self.cancelled = False
        self.closed = False

    def push(self, step: ScriptStep):
        self.script.append(step)

    async def complete(self, prompt: str, params: CompletionParams) -> CompletionResult:
        self.prompts.append(prompt)
        self.params.append(params)

        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled = True
                raise

        if not self.script:
            raise AssertionError("completion called more times than scripted")

        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return CompletionResult(text=step, usage=Usage(input_tokens=10, output_tokens=5), model=params.model)

    async def close(self) -> None:
        self.closed = True


def intent_json(action: Optional[str], status: str, parameters: Dict[str, Any], user_message: str) -> str:
    return json.dumps({
        "action": action,
        "status": status,
        "parameters": parameters,
        "user_message": user_message,
    })


CDN_ACTIONS = [
    {"action": "CREATE_SERVICE", "parameters": ["origin_url", "cdn_provider"]},
    {"action": "PURGE_CACHE", "parameters": ["service_id", "paths"]},
]


def make_request(session_id: str = "s1", user_message: str = "set up a CDN", **extra: Any) -> IntentRequest:
    payload: Dict[str, Any] = {
        "session_id": session_id,
        "user_message": user_message,
        "conversation_history": [],
        "available_actions": CDN_ACTIONS,
    }
    payload.update(extra)
    return IntentRequest.model_validate(payload)


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def store():
    return InMemorySessionStore(ttl=3600)


@pytest.fixture
def memory(store):
    return ConversationMemoryManager(store, SessionCache(capacity=100))


@pytest.fixture
def completion():
    return ScriptedCompletionClient()
