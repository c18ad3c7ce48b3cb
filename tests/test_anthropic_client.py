"""
Tests for the Anthropic completion binding.

The chat model is replaced through ``chat_factory`` so no network call is
made.
"""

import anthropic
import httpx
import pytest
from langchain_core.messages import AIMessage, HumanMessage

from intent_agent.infrastructure.llm.anthropic_client import AnthropicCompletionClient, _content_text
from intent_agent.infrastructure.llm.completion_client import (
    CompletionError,
    CompletionParams,
    CompletionTimeoutError,
)
from intent_agent.infrastructure.observability.logging import metrics

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


class FakeChat:
    def __init__(self, outcome, **kwargs):
        self.outcome = outcome
        self.kwargs = kwargs
        self.calls = []

    async def ainvoke(self, messages):
        self.calls.append(messages)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class FakeFactory:
    def __init__(self, outcome):
        self.outcome = outcome
        self.created = []

    def __call__(self, **kwargs):
        chat = FakeChat(self.outcome, **kwargs)
        self.created.append(chat)
        return chat


PARAMS = CompletionParams(model="claude-sonnet-4-20250514")


class TestComplete:
    """Successful completions"""

    @pytest.mark.asyncio
    async def test_returns_text_and_usage(self):
        factory = FakeFactory(AIMessage(
            content='{"status": "READY"}',
            usage_metadata={"input_tokens": 120, "output_tokens": 30, "total_tokens": 150},
            response_metadata={"model": "claude-sonnet-4-20250514", "stop_reason": "end_turn"},
        ))
        client = AnthropicCompletionClient(api_key="sk-test", timeout=12.0, chat_factory=factory)

        result = await client.complete("classify this", PARAMS)

        assert result.text == '{"status": "READY"}'
        assert result.usage.input_tokens == 120
        assert result.usage.output_tokens == 30
        assert result.stop_reason == "end_turn"
        assert metrics.counters["completion.input_tokens"] == 120

        chat = factory.created[0]
        assert chat.kwargs == {
            "model": "claude-sonnet-4-20250514",
            "api_key": "sk-test",
            "max_tokens": 1000,
            "temperature": 0.1,
            "timeout": 12.0,
            "max_retries": 0,
        }
        sent = chat.calls[0]
        assert len(sent) == 1
        assert isinstance(sent[0], HumanMessage)
        assert sent[0].content == "classify this"

    @pytest.mark.asyncio
    async def test_chat_model_is_reused_for_same_params(self):
        factory = FakeFactory(AIMessage(content="{}"))
        client = AnthropicCompletionClient(api_key="k", chat_factory=factory)

        await client.complete("a", PARAMS)
        await client.complete("b", PARAMS)
        await client.complete("c", CompletionParams(model="other"))

        assert len(factory.created) == 2

    def test_content_blocks_are_joined(self):
        content = [{"type": "text", "text": "{\"a\": "}, {"type": "tool_use", "id": "x"}, {"type": "text", "text": "1}"}]
        assert _content_text(content) == '{"a": 1}'


class TestErrorMapping:
    """Backend errors become CompletionError"""

    @pytest.mark.asyncio
    async def test_timeout(self):
        client = AnthropicCompletionClient(
            api_key="k", chat_factory=FakeFactory(anthropic.APITimeoutError(request=REQUEST)),
        )

        with pytest.raises(CompletionTimeoutError) as exc_info:
            await client.complete("p", PARAMS)

        assert exc_info.value.error_type == "timeout"

    @pytest.mark.asyncio
    async def test_status_error_carries_type_and_code(self):
        error = anthropic.APIStatusError(
            "Overloaded",
            response=httpx.Response(529, request=REQUEST),
            body={"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}},
        )
        client = AnthropicCompletionClient(api_key="k", chat_factory=FakeFactory(error))

        with pytest.raises(CompletionError) as exc_info:
            await client.complete("p", PARAMS)

        assert exc_info.value.error_type == "overloaded_error"
        assert exc_info.value.status_code == 529
        assert metrics.counters["completion.errors{error_type=overloaded_error}"] == 1

    @pytest.mark.asyncio
    async def test_status_error_without_body(self):
        error = anthropic.APIStatusError("Bad gateway", response=httpx.Response(502, request=REQUEST), body=None)
        client = AnthropicCompletionClient(api_key="k", chat_factory=FakeFactory(error))

        with pytest.raises(CompletionError) as exc_info:
            await client.complete("p", PARAMS)

        assert exc_info.value.error_type == "api_error"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        error = anthropic.APIConnectionError(message="Connection refused", request=REQUEST)
        client = AnthropicCompletionClient(api_key="k", chat_factory=FakeFactory(error))

        with pytest.raises(CompletionError) as exc_info:
            await client.complete("p", PARAMS)

        assert exc_info.value.error_type == "connection_error"
        assert not isinstance(exc_info.value, CompletionTimeoutError)
