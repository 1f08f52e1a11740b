"""
Universal data models for the orchestration core.
These are provider-agnostic — each adapter converts to/from its native wire format.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Optional, Union
import json
import time
import uuid


class Capability(str, Enum):
    """Feature flags an adapter/model may support."""
    NATIVE_TOOL_CALLING = "native_tool_calling"
    VISION = "vision"
    STRUCTURED_OUTPUT = "structured_output"
    STREAMING = "streaming"
    DEEP_REASONING = "deep_reasoning"
    PREFIX_CONTINUATION = "prefix_continuation"


# ── Message parts ──────────────────────────────────────────────

@dataclass
class TextPart:
    text: str

    def to_dict(self) -> dict:
        return {"type": "text", "text": self.text}


@dataclass
class ImagePart:
    """Image reference: an http(s) URL, a data URL, or bare base64."""
    url: str
    detail: Literal["low", "high", "auto"] = "auto"

    def to_dict(self) -> dict:
        return {"type": "image_url", "image_url": {"url": self.url, "detail": self.detail}}


Part = Union[TextPart, ImagePart]


@dataclass
class ToolCall:
    """A single tool invocation, native or parsed from a reply payload."""
    name: str
    arguments: dict = field(default_factory=dict)
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = self.generate_id()

    @staticmethod
    def generate_id() -> str:
        return f"call_{uuid.uuid4().hex[:12]}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments, ensure_ascii=False)},
        }


@dataclass
class Message:
    """A single message in the sliding context or an outbound request."""
    role: Literal["system", "user", "assistant", "tool"]
    content: Union[str, list] = ""
    tool_call_id: Optional[str] = None
    tool_calls: Optional[list[ToolCall]] = None
    # Assistant message the backend should continue rather than answer
    prefix: bool = False

    def __post_init__(self):
        if self.role == "tool" and not self.tool_call_id:
            raise ValueError("tool messages require a tool_call_id")

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: Union[str, list]) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, prefix: bool = False,
                  tool_calls: Optional[list[ToolCall]] = None) -> Message:
        return cls(role="assistant", content=content, prefix=prefix, tool_calls=tool_calls)

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)

    @property
    def parts(self) -> list:
        if isinstance(self.content, str):
            return [TextPart(self.content)] if self.content else []
        return list(self.content)

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def has_images(self) -> bool:
        return any(isinstance(p, ImagePart) for p in self.parts)

    def to_dict(self) -> dict:
        """OpenAI-compatible wire shape."""
        if isinstance(self.content, str):
            content: Any = self.content
        else:
            content = [p.to_dict() for p in self.content]
        d: dict = {"role": self.role, "content": content}
        if self.tool_call_id:
            d["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            d["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.prefix:
            d["prefix"] = True
        return d


@dataclass
class ToolSchema:
    """Universal tool definition for LLM consumption."""
    name: str
    description: str
    input_schema: dict  # JSON Schema format

    def to_openai(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            self.prompt_tokens + other.prompt_tokens,
            self.completion_tokens + other.completion_tokens,
            self.total_tokens + other.total_tokens,
        )

    def to_dict(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class Response:
    """Normalized reply from any backend."""
    model: str
    message: Message
    usage: Usage = field(default_factory=Usage)
    created: float = field(default_factory=time.time)

    @property
    def text(self) -> str:
        return self.message.text

    @property
    def tool_calls(self) -> list[ToolCall]:
        return self.message.tool_calls or []


# ── Orchestration results ──────────────────────────────────────

@dataclass
class SuccessResult:
    final_reply: str
    reply_to: str
    next_trigger_count: int
    logic: str = ""
    functions: list[dict] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    adapter_index: int = -1
    status: Literal["success"] = "success"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "final_reply": self.final_reply,
            "reply_to": self.reply_to,
            "next_trigger_count": self.next_trigger_count,
            "logic": self.logic,
            "functions": self.functions,
            "usage": self.usage.to_dict(),
            "adapter_index": self.adapter_index,
        }


@dataclass
class SkipResult:
    next_trigger_count: int
    logic: str = ""
    functions: list[dict] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    adapter_index: int = -1
    status: Literal["skip"] = "skip"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "next_trigger_count": self.next_trigger_count,
            "logic": self.logic,
            "functions": self.functions,
            "usage": self.usage.to_dict(),
            "adapter_index": self.adapter_index,
        }


@dataclass
class FailResult:
    reason: str
    raw: str = ""
    usage: Usage = field(default_factory=Usage)
    adapter_index: int = -1
    status: Literal["fail"] = "fail"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "reason": self.reason,
            "raw": self.raw,
            "usage": self.usage.to_dict(),
            "adapter_index": self.adapter_index,
        }


OrchestrationResult = Union[SuccessResult, SkipResult, FailResult]
