"""
Turns raw completion text into a structurally valid IntentResult.

The model output is untrusted: the JSON object is located inside whatever
prose surrounds it, decoded, then repaired field by field instead of being
rejected. Only text with no object at all, or text that does not decode to a
JSON object, is an error.
"""

from typing import Dict, Any, Optional
import json

from intent_agent.application.bus.schema.messages import IntentResult, IntentStatus
from .prompts import CLARIFYING_MESSAGE, FALLBACK_MESSAGE

_VALID_STATUSES = {status.value for status in IntentStatus}


class ResponseParseError(Exception):
    """Completion text could not be turned into an intent outcome"""

    def __init__(self, message: str, kind: str):
        super().__init__(message)
        self.kind = kind


def extract_json(content: str) -> Optional[str]:
    """Span from the first '{' to the last '}', or None"""

    start = content.find("{")
    if start == -1:
        return None

    end = content.rfind("}")
    if end <= start:
        return None

    return content[start:end + 1]


def _coerce_parameters(raw: Any) -> Dict[str, Optional[str]]:
    if not isinstance(raw, dict):
        return {}

    parameters: Dict[str, Optional[str]] = {}
    for key, value in raw.items():
        if value is None or isinstance(value, str):
            parameters[str(key)] = value
        elif isinstance(value, (dict, list)):
            parameters[str(key)] = json.dumps(value)
        elif isinstance(value, bool):
            parameters[str(key)] = "true" if value else "false"
        else:
            parameters[str(key)] = str(value)
    return parameters


def repair_intent(payload: Dict[str, Any]) -> IntentResult:
    """Force a decoded payload into a valid IntentResult"""

    status = payload.get("status")
    user_message = payload.get("user_message")
    if not isinstance(user_message, str):
        user_message = ""

    error_kind = None
    if not isinstance(status, str) or status not in _VALID_STATUSES:
        status = IntentStatus.ERROR.value
        user_message = FALLBACK_MESSAGE
        error_kind = "invalid_status"

    if not user_message.strip():
        user_message = CLARIFYING_MESSAGE

    action = payload.get("action")
    if not isinstance(action, str) or not action or action.lower() == "null":
        action = None

    return IntentResult(
        action=action,
        status=IntentStatus(status),
        parameters=_coerce_parameters(payload.get("parameters")),
        user_message=user_message,
        error_kind=error_kind,
    )


def parse_intent_response(content: str) -> IntentResult:
    """Extract, decode and repair a completion. Raises ResponseParseError."""

    candidate = extract_json(content or "")
    if candidate is None:
        raise ResponseParseError("no valid JSON found in response", kind="no_json")

    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"failed to parse JSON: {e}", kind="invalid_json") from e

    if not isinstance(payload, dict):
        raise ResponseParseError("response JSON is not an object", kind="invalid_json")

    return repair_intent(payload)
