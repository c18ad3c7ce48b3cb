from typing import Any, Optional
import asyncio
import json
import time
import uuid

from pydantic import ValidationError
import structlog

from intent_agent.domain.intent.pipeline import IntentPipeline
from intent_agent.infrastructure.observability.logging import (
    bind_request_context,
    clear_request_context,
    metrics,
)
from .schema.messages import ErrorCode, IntentRequest, IntentResult

logger = structlog.get_logger(__name__)

DISPATCH_ERROR_MESSAGE = "I'm sorry, I encountered an error processing your request. Please try again."


def _guess_session_id(data: bytes) -> str:
    """Best-effort session id from a payload that failed validation"""

    try:
        payload: Any = json.loads(data)
    except (ValueError, UnicodeDecodeError):
        return ""
    if isinstance(payload, dict) and isinstance(payload.get("session_id"), str):
        return payload["session_id"]
    return ""


class RequestDispatcher:
    """Turns one raw bus message into exactly one encoded reply"""

    def __init__(self, pipeline: IntentPipeline, request_timeout: Optional[float] = 30.0):
        self.pipeline = pipeline
        self.request_timeout = request_timeout

    async def handle(self, data: bytes) -> bytes:
        """Decode, run the pipeline under the deadline and encode the reply"""

        started = time.perf_counter()
        request_id = str(uuid.uuid4())
        bind_request_context(request_id)

        try:
            result = await self._dispatch(data, request_id)
            metrics.increment_counter("intent.replies", tags={"status": result.status.value})
            metrics.record_latency("intent.request", (time.perf_counter() - started) * 1000)
            return json.dumps(result.to_wire()).encode("utf-8")
        finally:
            clear_request_context()

    async def _dispatch(self, data: bytes, request_id: str) -> IntentResult:
        try:
            request = IntentRequest.model_validate_json(data)
        except ValidationError as e:
            session_id = _guess_session_id(data)
            logger.warning("Malformed request", session_id=session_id, error=str(e))
            return IntentResult.error(session_id, ErrorCode.PARSE_ERROR, "malformed_message", DISPATCH_ERROR_MESSAGE)

        bind_request_context(request_id, request.session_id)
        logger.info("Processing intent request", message_chars=len(request.user_message))

        try:
            return await asyncio.wait_for(self.pipeline.process(request), timeout=self.request_timeout)
        except asyncio.TimeoutError:
            logger.warning("Request deadline exceeded", timeout=self.request_timeout)
            return IntentResult.error(
                request.session_id, ErrorCode.LLM_API_TIMEOUT, "deadline_exceeded", DISPATCH_ERROR_MESSAGE
            )
        except Exception:
            logger.exception("Unexpected error while processing request")
            return IntentResult.error(
                request.session_id, ErrorCode.LLM_API_FAILED, "internal_error", DISPATCH_ERROR_MESSAGE
            )
