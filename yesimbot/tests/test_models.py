"""
Data model and error taxonomy tests.

Covers:
- Message constructors, parts/text views, wire shape, tool message validation
- ToolCall id generation and wire shape
- Usage addition
- Result serialization
- ProviderError codes, status mapping, transient flag
"""

import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from yesimbot.core.errors import (
    NoAdapterAvailableError, ProviderError, ProviderErrorCode, ToolNotFoundError,
    YesImBotError, code_for_status,
)
from yesimbot.core.models import (
    FailResult, ImagePart, Message, SkipResult, SuccessResult, TextPart, ToolCall, ToolSchema, Usage,
)


class TestMessage:

    def test_tool_message_requires_call_id(self):
        with pytest.raises(ValueError):
            Message(role="tool", content="x")
        assert Message.tool("x", "call_1").tool_call_id == "call_1"

    def test_text_and_parts(self):
        message = Message.user([TextPart("a"), ImagePart("https://x"), TextPart("b")])
        assert message.text == "a\nb"
        assert message.has_images
        assert Message.user("").parts == []

    def test_assistant_wire_shape(self):
        call = ToolCall("f", {"x": 1}, id="call_7")
        d = Message.assistant("", tool_calls=[call]).to_dict()
        assert d["tool_calls"][0] == {
            "id": "call_7", "type": "function", "function": {"name": "f", "arguments": '{"x": 1}'},
        }
        assert "prefix" not in d

    def test_tool_call_id_generated(self):
        assert ToolCall("f").id.startswith("call_")
        assert ToolCall("f").id != ToolCall("f").id

    def test_tool_schema_openai_shape(self):
        schema = ToolSchema("lookup", "Find things", {"type": "object", "properties": {}})
        assert schema.to_openai() == {
            "type": "function",
            "function": {"name": "lookup", "description": "Find things",
                         "parameters": {"type": "object", "properties": {}}},
        }


class TestUsageAndResults:

    def test_usage_add(self):
        total = Usage(1, 2, 3) + Usage(10, 20, 30)
        assert total.to_dict() == {"prompt_tokens": 11, "completion_tokens": 22, "total_tokens": 33}

    def test_result_dicts(self):
        success = SuccessResult("hi", "1", 3, functions=[{"name": "f", "params": {}}]).to_dict()
        assert success["status"] == "success"
        assert success["usage"]["total_tokens"] == 0
        assert SkipResult(2).to_dict()["status"] == "skip"
        fail = FailResult("bad", raw="???").to_dict()
        assert fail == {"status": "fail", "reason": "bad", "raw": "???",
                        "usage": Usage().to_dict(), "adapter_index": -1}
        json.dumps(success)


class TestErrors:

    @pytest.mark.parametrize("status,code", [
        (400, ProviderErrorCode.BAD_REQUEST),
        (401, ProviderErrorCode.UNAUTHORIZED),
        (403, ProviderErrorCode.FORBIDDEN),
        (404, ProviderErrorCode.NOT_FOUND),
        (429, ProviderErrorCode.SERVER_ERROR),
        (502, ProviderErrorCode.SERVER_ERROR),
        (418, ProviderErrorCode.SERVER_ERROR),
    ])
    def test_code_for_status(self, status, code):
        assert code_for_status(status) is code

    def test_from_status(self):
        error = ProviderError.from_status(401, "nope")
        assert error.status == 401
        assert error.body == "nope"
        assert not error.is_transient
        assert str(error).startswith("[unauthorized] (HTTP 401)")
        assert error.to_dict()["code"] == "unauthorized"

    def test_transient_codes(self):
        assert ProviderError(ProviderErrorCode.TIMEOUT).is_transient
        assert ProviderError(ProviderErrorCode.NETWORK_ERROR).is_transient
        assert not ProviderError(ProviderErrorCode.UNKNOWN_ERROR).is_transient

    def test_hierarchy(self):
        assert issubclass(ProviderError, YesImBotError)
        assert isinstance(NoAdapterAvailableError(), YesImBotError)
        error = ToolNotFoundError("ghost")
        assert error.name == "ghost"
        assert str(error) == "Function not found: ghost"
