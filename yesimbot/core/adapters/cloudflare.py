"""
Workers-AI adapter — `POST {base}/accounts/{uid}/ai/run/{model}`.

Replies arrive in a `{result: {response, role, tool_calls}}` envelope and
carry no usage accounting, so usage is reported as zeros.
"""

from __future__ import annotations
import time
from typing import Optional

from .base import BaseAdapter
from .openai_adapter import parse_tool_calls
from ..models import Message, Response, ToolSchema, Usage


class CloudflareAdapter(BaseAdapter):

    api_type = "cloudflare"

    def build_url(self) -> str:
        return f"{self.config.base_url}/accounts/{self.config.uid}/ai/run/{self.model}"

    def build_body(self, messages: list[Message], tools: Optional[list[ToolSchema]]) -> dict:
        p = self.params
        return {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "tools": [t.to_openai() for t in tools] if tools else None,
            "temperature": p.temperature,
            "max_tokens": p.max_tokens,
            "frequency_penalty": p.frequency_penalty,
            "presence_penalty": p.presence_penalty,
        }

    def parse_response(self, data: dict) -> Response:
        result = data["result"]
        raw_calls = result.get("tool_calls")
        if raw_calls:
            # Workers AI returns {name, arguments} without ids
            raw_calls = [
                tc if "function" in tc else {"id": tc.get("id", ""), "function": tc}
                for tc in raw_calls
            ]
        return Response(
            model=self.model,
            created=time.time(),
            message=Message(
                role="assistant",
                content=result.get("response") or "",
                tool_calls=parse_tool_calls(raw_calls),
            ),
            usage=Usage(),
        )
