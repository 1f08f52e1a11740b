"""
Generative-language adapter — `POST {base}/v1beta/models/{model}:generateContent?key=...`.

This backend forbids a system role inside `contents`, names the assistant
role "model", and tags image parts with `mime_type`/`data` instead of a URL.
"""

from __future__ import annotations
import logging
import mimetypes
import time
from typing import Optional

from .base import BaseAdapter
from ..models import (
    Capability, ImagePart, Message, Response, TextPart, ToolCall, ToolSchema, Usage,
)

logger = logging.getLogger(__name__)

# Leading base64 characters of common image headers
_BASE64_SIGNATURES = {
    "/9j/": "image/jpeg",
    "iVBOR": "image/png",
    "R0lG": "image/gif",
    "UklGR": "image/webp",
    "Qk": "image/bmp",
}

_ROLE_MAP = {"assistant": "model", "user": "user", "tool": "user"}


def mime_type_from_base64(data: str) -> str:
    for prefix, mime in _BASE64_SIGNATURES.items():
        if data.startswith(prefix):
            return mime
    return "image/jpeg"


def image_to_part(image: ImagePart) -> dict:
    """Convert an image reference to an inline or file-backed part."""
    url = image.url
    if url.startswith("data:"):
        header, _, data = url.partition(",")
        mime = header[len("data:"):].split(";")[0] or mime_type_from_base64(data)
        return {"inline_data": {"mime_type": mime, "data": data}}
    if url.startswith(("http://", "https://", "gs://")):
        mime = mimetypes.guess_type(url.split("?")[0])[0] or "image/jpeg"
        return {"file_data": {"mime_type": mime, "file_uri": url}}
    return {"inline_data": {"mime_type": mime_type_from_base64(url), "data": url}}


def message_to_content(message: Message) -> dict:
    parts = []
    for part in message.parts:
        if isinstance(part, TextPart):
            parts.append({"text": part.text})
        elif isinstance(part, ImagePart):
            parts.append(image_to_part(part))
    if message.tool_calls:
        for tc in message.tool_calls:
            parts.append({"functionCall": {"name": tc.name, "args": tc.arguments}})
    if not parts:
        parts.append({"text": ""})
    return {"role": _ROLE_MAP.get(message.role, "user"), "parts": parts}


class GeminiAdapter(BaseAdapter):

    api_type = "gemini"

    def build_url(self) -> str:
        return f"{self.config.base_url}/v1beta/models/{self.model}:generateContent?key={self.api_key}"

    def build_headers(self) -> dict:
        # key travels in the query string
        return {"Content-Type": "application/json"}

    def build_body(self, messages: list[Message], tools: Optional[list[ToolSchema]]) -> dict:
        system = [m for m in messages if m.role == "system"]
        rest = [m for m in messages if m.role != "system"]
        p = self.params
        generation_config = {
            "stopSequences": p.stop or None,
            "temperature": p.temperature,
            "maxOutputTokens": p.max_tokens,
            "topP": p.top_p,
            "response_mime_type": "application/json" if self.has(Capability.STRUCTURED_OUTPUT) else None,
        }
        body = {
            "contents": [message_to_content(m) for m in rest],
            "generationConfig": {k: v for k, v in generation_config.items() if v is not None},
        }
        if system:
            body["system_instruction"] = {"parts": [{"text": "\n".join(m.text for m in system)}]}
        if tools:
            body["tools"] = [{"function_declarations": [
                {"name": t.name, "description": t.description, "parameters": t.input_schema}
                for t in tools
            ]}]
        return body

    def parse_response(self, data: dict) -> Response:
        candidate = data["candidates"][0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        calls = [
            ToolCall(name=part["functionCall"]["name"], arguments=part["functionCall"].get("args") or {})
            for part in parts if "functionCall" in part
        ]
        meta = data.get("usageMetadata") or {}
        return Response(
            model=data.get("modelVersion") or self.model,
            created=time.time(),
            message=Message(role="assistant", content=text, tool_calls=calls or None),
            usage=Usage(
                prompt_tokens=int(meta.get("promptTokenCount") or 0),
                completion_tokens=int(meta.get("candidatesTokenCount") or 0),
                total_tokens=int(meta.get("totalTokenCount") or 0),
            ),
        )
