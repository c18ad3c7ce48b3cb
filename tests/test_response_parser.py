"""
Tests for completion text parsing and repair.

Coverage:
- JSON extraction from surrounding prose
- no_json / invalid_json failures
- status, user_message, action and parameter repair
"""

import json

import pytest

from intent_agent.application.bus.schema.messages import IntentStatus
from intent_agent.domain.intent.prompts import CLARIFYING_MESSAGE, FALLBACK_MESSAGE
from intent_agent.domain.intent.response_parser import (
    ResponseParseError,
    extract_json,
    parse_intent_response,
    repair_intent,
)


class TestExtractJson:
    """Locating the JSON object"""

    def test_object_inside_prose(self):
        text = 'Sure! Here is the result:\n{"status": "READY"}\nLet me know.'
        assert extract_json(text) == '{"status": "READY"}'

    def test_spans_first_open_to_last_close(self):
        text = 'x {"a": {"b": 1}} y'
        assert extract_json(text) == '{"a": {"b": 1}}'

    @pytest.mark.parametrize("text", ["", "no braces here", "} backwards {", "only open {"])
    def test_no_object(self, text):
        assert extract_json(text) is None


class TestParseIntentResponse:
    """Decoding and error kinds"""

    def test_ready_response(self):
        content = json.dumps({
            "action": "CREATE_SERVICE",
            "status": "READY",
            "parameters": {"origin_url": "https://example.com", "cdn_provider": "cloudflare"},
            "user_message": "Creating your service now.",
        })

        result = parse_intent_response("```json\n" + content + "\n```")

        assert result.action == "CREATE_SERVICE"
        assert result.status == IntentStatus.READY
        assert result.parameters == {"origin_url": "https://example.com", "cdn_provider": "cloudflare"}
        assert result.user_message == "Creating your service now."
        assert result.error_code is None

    def test_no_json(self):
        with pytest.raises(ResponseParseError) as exc_info:
            parse_intent_response("I cannot help with that.")
        assert exc_info.value.kind == "no_json"

    def test_invalid_json(self):
        with pytest.raises(ResponseParseError) as exc_info:
            parse_intent_response('{"status": READY,}')
        assert exc_info.value.kind == "invalid_json"

    def test_empty_content(self):
        with pytest.raises(ResponseParseError) as exc_info:
            parse_intent_response(None)
        assert exc_info.value.kind == "no_json"


class TestRepairIntent:
    """Field repair"""

    def test_invalid_status_becomes_error(self):
        result = repair_intent({"status": "DONE", "user_message": "all set", "action": "PURGE_CACHE"})

        assert result.status == IntentStatus.ERROR
        assert result.user_message == FALLBACK_MESSAGE
        assert result.error_kind == "invalid_status"

    def test_missing_status_becomes_error(self):
        result = repair_intent({"user_message": "hi"})
        assert result.status == IntentStatus.ERROR

    def test_empty_user_message_gets_clarifying_prompt(self):
        result = repair_intent({"status": "NEEDS_INFO", "user_message": "   "})

        assert result.status == IntentStatus.NEEDS_INFO
        assert result.user_message == CLARIFYING_MESSAGE

    @pytest.mark.parametrize("action", [None, "", "null", "NULL", 42])
    def test_absent_action(self, action):
        result = repair_intent({"status": "NEEDS_INFO", "user_message": "Which origin?", "action": action})
        assert result.action is None

    def test_parameters_are_coerced_to_strings(self):
        result = repair_intent({
            "status": "NEEDS_INFO",
            "user_message": "ok",
            "parameters": {"ttl": 300, "enabled": True, "paths": ["/a", "/b"], "origin_url": None},
        })

        assert result.parameters == {
            "ttl": "300",
            "enabled": "true",
            "paths": '["/a", "/b"]',
            "origin_url": None,
        }

    def test_non_object_parameters_are_dropped(self):
        result = repair_intent({"status": "READY", "user_message": "ok", "parameters": ["a"]})
        assert result.parameters == {}
