from typing import Dict, Any, Optional, List
from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum


class IntentStatus(str, Enum):
    """Outcome status reported to the caller"""
    NEEDS_INFO = "NEEDS_INFO"
    READY = "READY"
    ERROR = "ERROR"


class ErrorCode(str, Enum):
    """Terminal error categories for a single turn"""
    PARSE_ERROR = "PARSE_ERROR"
    LLM_API_FAILED = "LLM_API_FAILED"
    LLM_API_TIMEOUT = "LLM_API_TIMEOUT"


# Go callers encode nil slices and unset strings as null
def _null_as_empty_string(value: Any) -> Any:
    return "" if value is None else value


def _null_as_empty_list(value: Any) -> Any:
    return [] if value is None else value


class ConversationMessage(BaseModel):
    """Prior turn as sent by the caller"""
    model_config = ConfigDict(extra="ignore")

    role: str
    message: str = ""

    @field_validator("role", "message", mode="before")
    @classmethod
    def null_strings(cls, value: Any) -> Any:
        return _null_as_empty_string(value)


class ActionSchema(BaseModel):
    """Action the caller allows, with its required parameter names"""
    model_config = ConfigDict(extra="ignore")

    action: str
    parameters: List[str] = Field(default_factory=list)

    @field_validator("action", mode="before")
    @classmethod
    def null_action(cls, value: Any) -> Any:
        return _null_as_empty_string(value)

    @field_validator("parameters", mode="before")
    @classmethod
    def null_parameters(cls, value: Any) -> Any:
        return _null_as_empty_list(value)


class IntentRequest(BaseModel):
    """Inbound bus request"""
    model_config = ConfigDict(extra="ignore")

    session_id: str = ""
    user_message: str = ""
    conversation_history: List[ConversationMessage] = Field(default_factory=list)
    available_actions: List[ActionSchema] = Field(default_factory=list)

    @field_validator("session_id", "user_message", mode="before")
    @classmethod
    def null_strings(cls, value: Any) -> Any:
        return _null_as_empty_string(value)

    @field_validator("conversation_history", "available_actions", mode="before")
    @classmethod
    def null_lists(cls, value: Any) -> Any:
        return _null_as_empty_list(value)


class IntentResult(BaseModel):
    """Outbound bus reply"""
    session_id: str = ""
    action: Optional[str] = None
    status: IntentStatus
    parameters: Dict[str, Optional[str]] = Field(default_factory=dict)
    user_message: str = Field(min_length=1)
    error_code: Optional[ErrorCode] = None
    error_kind: Optional[str] = None

    @classmethod
    def error(
        cls,
        session_id: str,
        error_code: Optional[ErrorCode],
        error_kind: Optional[str],
        user_message: str,
    ) -> "IntentResult":
        """Build a well-formed ERROR result"""
        return cls(
            session_id=session_id or "",
            status=IntentStatus.ERROR,
            parameters={},
            user_message=user_message,
            error_code=error_code,
            error_kind=error_kind,
        )

    def to_wire(self) -> Dict[str, Any]:
        """JSON-ready dict; error fields are dropped when unset"""

        payload = self.model_dump(mode="json")
        for key in ("error_code", "error_kind"):
            if payload.get(key) is None:
                payload.pop(key, None)
        return payload
