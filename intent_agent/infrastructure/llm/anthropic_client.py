from typing import Dict, Any, Callable, Optional, Tuple
import asyncio
import time

import anthropic
from langchain_anthropic import ChatAnthropic
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage
import structlog

from intent_agent.infrastructure.observability.logging import metrics
from .completion_client import (
    CompletionClient,
    CompletionError,
    CompletionParams,
    CompletionResult,
    CompletionTimeoutError,
    Usage,
)

logger = structlog.get_logger(__name__)

ChatFactory = Callable[..., BaseChatModel]


def _error_type_from_body(body: Any) -> Optional[str]:
    # {"type": "error", "error": {"type": "overloaded_error", "message": "..."}}
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("type"), str):
            return error["type"]
        if isinstance(body.get("type"), str) and body["type"] != "error":
            return body["type"]
    return None


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class AnthropicCompletionClient(CompletionClient):
    """Completion binding for the hosted Anthropic Messages API"""

    def __init__(
        self,
        api_key: str,
        timeout: float = 30.0,
        chat_factory: Optional[ChatFactory] = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.chat_factory = chat_factory or ChatAnthropic
        self._models: Dict[Tuple[str, int, float], BaseChatModel] = {}

    def _chat_model(self, params: CompletionParams) -> BaseChatModel:
        key = (params.model, params.max_tokens, params.temperature)
        model = self._models.get(key)
        if model is None:
            model = self.chat_factory(
                model=params.model,
                api_key=self.api_key,
                max_tokens=params.max_tokens,
                temperature=params.temperature,
                timeout=self.timeout,
                max_retries=0,
            )
            self._models[key] = model
        return model

    async def complete(self, prompt: str, params: CompletionParams) -> CompletionResult:
        chat = self._chat_model(params)
        started = time.perf_counter()

        logger.info("Calling completion backend", model=params.model, prompt_chars=len(prompt))

        try:
            response = await chat.ainvoke([HumanMessage(content=prompt)])
        except (anthropic.APITimeoutError, asyncio.TimeoutError) as e:
            metrics.increment_counter("completion.errors", tags={"error_type": "timeout"})
            raise CompletionTimeoutError(str(e) or "completion request timed out") from e
        except anthropic.APIStatusError as e:
            error_type = _error_type_from_body(e.body) or "api_error"
            logger.warning("Completion backend returned an error", status_code=e.status_code, error_type=error_type)
            metrics.increment_counter("completion.errors", tags={"error_type": error_type})
            raise CompletionError(e.message, error_type=error_type, status_code=e.status_code) from e
        except anthropic.APIConnectionError as e:
            metrics.increment_counter("completion.errors", tags={"error_type": "connection_error"})
            raise CompletionError(str(e), error_type="connection_error") from e

        duration_ms = (time.perf_counter() - started) * 1000
        usage_metadata = getattr(response, "usage_metadata", None) or {}
        usage = Usage(
            input_tokens=int(usage_metadata.get("input_tokens") or 0),
            output_tokens=int(usage_metadata.get("output_tokens") or 0),
        )
        response_metadata = getattr(response, "response_metadata", None) or {}
        text = _content_text(response.content)

        metrics.record_latency("completion", duration_ms, tags={"model": params.model})
        metrics.increment_counter("completion.input_tokens", usage.input_tokens)
        metrics.increment_counter("completion.output_tokens", usage.output_tokens)

        logger.info(
            "Completion received",
            chars=len(text),
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=round(duration_ms, 1),
        )

        return CompletionResult(
            text=text,
            usage=usage,
            model=response_metadata.get("model") or params.model,
            stop_reason=response_metadata.get("stop_reason"),
        )
