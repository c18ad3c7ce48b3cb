from typing import TypedDict, Dict, Any, Optional, Literal
import asyncio

from langgraph.graph import StateGraph, END
import structlog

from intent_agent.application.bus.schema.messages import ErrorCode, IntentRequest, IntentResult
from intent_agent.domain.memory.exceptions import MemoryStorageError
from intent_agent.domain.memory.memory_manager import NO_HISTORY, ConversationMemoryManager
from intent_agent.infrastructure.llm.completion_client import (
    CompletionClient,
    CompletionError,
    CompletionParams,
    CompletionResult,
    CompletionTimeoutError,
)
from .prompts import FALLBACK_MESSAGE, build_intent_prompt
from .response_parser import ResponseParseError, parse_intent_response

logger = structlog.get_logger(__name__)

DEFAULT_TEMPERATURE = 0.1
DEFAULT_MAX_TOKENS = 1000


class IntentState(TypedDict, total=False):
    """State carried through the intent graph"""
    request: IntentRequest
    user_id: str
    prompt: str
    completion: Optional[CompletionResult]
    result: Optional[IntentResult]
    from_model: bool


def user_id_for(session_id: str) -> str:
    # callers do not send a user id; one is derived per session
    return f"user_{session_id}"


class IntentPipeline:
    """Classifies one utterance into a validated intent outcome.

    ``process`` never raises for pipeline failures: every path ends in an
    IntentResult. Task cancellation is the one thing that propagates, so a
    caller-side deadline can abandon the in-flight completion call.
    """

    def __init__(
        self,
        memory: ConversationMemoryManager,
        client: CompletionClient,
        model: str,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        self.memory = memory
        self.client = client
        self.params = CompletionParams(model=model, max_tokens=max_tokens, temperature=temperature)
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        workflow = StateGraph(IntentState)

        workflow.add_node("validate", self.validate_node)
        workflow.add_node("persist_user_turn", self.persist_user_turn_node)
        workflow.add_node("build_prompt", self.build_prompt_node)
        workflow.add_node("invoke_model", self.invoke_model_node)
        workflow.add_node("parse_response", self.parse_response_node)
        workflow.add_node("persist_assistant_turn", self.persist_assistant_turn_node)

        workflow.set_entry_point("validate")

        workflow.add_conditional_edges(
            "validate",
            self.route_on_result,
            {"continue": "persist_user_turn", "done": END}
        )
        workflow.add_edge("persist_user_turn", "build_prompt")
        workflow.add_edge("build_prompt", "invoke_model")
        workflow.add_conditional_edges(
            "invoke_model",
            self.route_on_result,
            {"continue": "parse_response", "done": END}
        )
        workflow.add_conditional_edges(
            "parse_response",
            self.route_after_parse,
            {"persist": "persist_assistant_turn", "done": END}
        )
        workflow.add_edge("persist_assistant_turn", END)

        return workflow.compile()

    async def process(self, request: IntentRequest) -> IntentResult:
        """Run one request through the graph"""

        initial_state: IntentState = {
            "request": request,
            "user_id": user_id_for(request.session_id),
            "completion": None,
            "result": None,
            "from_model": False,
        }

        try:
            final_state = await self.workflow.ainvoke(initial_state)
            result = final_state.get("result")
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Intent pipeline failed", session_id=request.session_id)
            result = None

        if result is None:
            result = IntentResult.error(request.session_id, ErrorCode.LLM_API_FAILED, "internal_error", FALLBACK_MESSAGE)

        logger.info(
            "Intent processed",
            session_id=result.session_id,
            action=result.action,
            status=result.status.value,
            error_code=result.error_code.value if result.error_code else None,
        )
        return result

    # ----- nodes -----

    async def validate_node(self, state: IntentState) -> Dict[str, Any]:
        request = state["request"]

        if not request.session_id:
            return {"result": self._error(request, ErrorCode.PARSE_ERROR, "invalid_request", "session_id is required")}
        if not request.user_message:
            return {"result": self._error(request, ErrorCode.PARSE_ERROR, "invalid_request", "user_message is required")}

        return {}

    async def persist_user_turn_node(self, state: IntentState) -> Dict[str, Any]:
        request = state["request"]
        session_id = request.session_id

        seed = False
        try:
            conversation = await self.memory.load_or_create(session_id)
            seed = len(conversation) == 0
        except MemoryStorageError as e:
            logger.warning("Failed to load history from store", session_id=session_id, error=str(e))
            seed = True

        if seed and request.conversation_history:
            await self.memory.load_history_from_request(session_id, request.conversation_history)

        try:
            await self.memory.append_user_turn(session_id, state["user_id"], request.user_message)
        except MemoryStorageError as e:
            # continue degraded; the turn reaches the prompt only if the session was already cached
            logger.warning("Failed to save user message", session_id=session_id, error=str(e))

        return {}

    async def build_prompt_node(self, state: IntentState) -> Dict[str, Any]:
        request = state["request"]

        try:
            history = await self.memory.formatted_history(request.session_id)
        except MemoryStorageError as e:
            logger.warning("Failed to load history", session_id=request.session_id, error=str(e))
            history = NO_HISTORY

        prompt = build_intent_prompt(request.available_actions, history, request.user_message)
        logger.debug("Built prompt", session_id=request.session_id, prompt_chars=len(prompt))

        return {"prompt": prompt}

    async def invoke_model_node(self, state: IntentState) -> Dict[str, Any]:
        request = state["request"]

        try:
            completion = await self.client.complete(state["prompt"], self.params)
        except CompletionTimeoutError as e:
            return {"result": self._error(request, ErrorCode.LLM_API_TIMEOUT, "timeout", str(e))}
        except CompletionError as e:
            return {"result": self._error(request, ErrorCode.LLM_API_FAILED, e.error_type, str(e))}

        return {"completion": completion}

    async def parse_response_node(self, state: IntentState) -> Dict[str, Any]:
        request = state["request"]
        completion = state["completion"]

        try:
            result = parse_intent_response(completion.text)
        except ResponseParseError as e:
            return {"result": self._error(request, ErrorCode.PARSE_ERROR, e.kind, str(e))}

        # the model is never trusted to echo the session id
        result.session_id = request.session_id
        return {"result": result, "from_model": True}

    async def persist_assistant_turn_node(self, state: IntentState) -> Dict[str, Any]:
        request = state["request"]
        result = state["result"]

        try:
            await self.memory.append_assistant_turn(request.session_id, state["user_id"], result.user_message)
        except MemoryStorageError as e:
            logger.warning("Failed to save assistant message", session_id=request.session_id, error=str(e))

        return {}

    # ----- routing -----

    def route_on_result(self, state: IntentState) -> Literal["continue", "done"]:
        return "done" if state.get("result") is not None else "continue"

    def route_after_parse(self, state: IntentState) -> Literal["persist", "done"]:
        return "persist" if state.get("from_model") else "done"

    def _error(self, request: IntentRequest, code: ErrorCode, kind: str, detail: str) -> IntentResult:
        # detail stays in the logs, the caller only gets the fallback text
        logger.warning(
            "Intent turn failed",
            session_id=request.session_id,
            error_code=code.value,
            error_kind=kind,
            detail=detail,
        )
        return IntentResult.error(request.session_id, code, kind, FALLBACK_MESSAGE)
