"""
OpenAI-compatible adapter — `POST {base}/v1/chat/completions`, bearer auth,
optional SSE streaming.

Spoken over the shared httpx client in BaseAdapter rather than the `openai`
SDK. Every backend then goes through one transport (one timeout policy, one
ProviderError mapping, httpx.MockTransport in tests). The price is that
request bodies, SSE chunk accumulation and tool-call parsing are maintained
here, and new API fields are not picked up from SDK releases.
"""

from __future__ import annotations
import json
import logging
from typing import Any, Optional

from .base import BaseAdapter
from ..models import Capability, Message, Response, ToolCall, ToolSchema, Usage

logger = logging.getLogger(__name__)


def parse_tool_calls(raw: Optional[list]) -> Optional[list[ToolCall]]:
    """Convert wire tool calls ({id, function:{name, arguments}}) to ToolCall records."""
    if not raw:
        return None
    calls = []
    for tc in raw:
        fn = tc.get("function") or tc
        calls.append(ToolCall(
            name=fn.get("name", ""),
            arguments=parse_arguments(fn.get("arguments")),
            id=tc.get("id") or "",
        ))
    return calls


def parse_arguments(arguments: Any) -> dict:
    """Tool arguments arrive as a JSON string or an object; anything else is empty."""
    if isinstance(arguments, dict):
        return arguments
    if isinstance(arguments, str) and arguments.strip():
        try:
            parsed = json.loads(arguments)
        except ValueError:
            logger.warning(f"Unparseable tool arguments: {arguments[:200]}")
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def parse_usage(raw: Optional[dict]) -> Usage:
    raw = raw or {}
    return Usage(
        prompt_tokens=int(raw.get("prompt_tokens") or 0),
        completion_tokens=int(raw.get("completion_tokens") or 0),
        total_tokens=int(raw.get("total_tokens") or 0),
    )


class OpenAIAdapter(BaseAdapter):
    """OpenAI chat-completions protocol."""

    api_type = "openai"
    supports_streaming = True

    def build_url(self) -> str:
        return f"{self.config.base_url}/v1/chat/completions"

    def build_body(self, messages: list[Message], tools: Optional[list[ToolSchema]]) -> dict:
        p = self.params
        body = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": p.temperature,
            "max_tokens": p.max_tokens,
            "top_p": p.top_p,
            "frequency_penalty": p.frequency_penalty,
            "presence_penalty": p.presence_penalty,
            "stop": p.stop or None,
        }
        if tools:
            body["tools"] = [t.to_openai() for t in tools]
        if self.has(Capability.DEEP_REASONING) and self.config.reasoning_effort:
            body["reasoning_effort"] = self.config.reasoning_effort
        if self.has(Capability.STRUCTURED_OUTPUT):
            body["response_format"] = {"type": "json_object"}
        return body

    def parse_response(self, data: dict) -> Response:
        choice = data["choices"][0]
        msg = choice["message"]
        return Response(
            model=data.get("model") or self.model,
            created=data.get("created") or 0,
            message=Message(
                role="assistant",
                content=msg.get("content") or "",
                tool_calls=parse_tool_calls(msg.get("tool_calls")),
            ),
            usage=parse_usage(data.get("usage")),
        )
