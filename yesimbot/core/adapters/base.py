"""
Abstract base class for LLM backend adapters.
All adapters (OpenAI-compatible, custom URL, Cloudflare, Gemini, Ollama)
implement this interface and normalize replies to a single `Response` shape.
"""

from __future__ import annotations

import inspect
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx

from ..errors import ProviderError, ProviderErrorCode
from ..models import Capability, Message, Response, ToolSchema

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], Any]


def coerce_param(value: Any) -> Any:
    """Best-effort conversion of a free-form parameter to bool/number/JSON/string."""
    if not isinstance(value, str):
        return value
    value = value.strip()
    if value == "true":
        return True
    if value == "false":
        return False
    try:
        return json.loads(value)
    except ValueError:
        pass
    try:
        number = float(value)
    except ValueError:
        return value
    return int(number) if number.is_integer() and "." not in value else number


def compile_reasoning_pattern(start: str, end: str) -> Optional[re.Pattern]:
    """Compile the reasoning-span pattern. Delimiters are regex fragments;
    invalid fragments are matched literally."""
    if not start or not end:
        return None
    try:
        return re.compile(f"{start}[\\s\\S]*?{end}")
    except re.error:
        logger.warning(f"Invalid reasoning delimiters {start!r}/{end!r}; matching literally")
        return re.compile(f"{re.escape(start)}[\\s\\S]*?{re.escape(end)}")


# ── Configuration records ──────────────────────────────────────

@dataclass
class GenerationParameters:
    """Sampling parameters shared by every adapter in a pool."""
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    stop: list[str] = field(default_factory=list)
    other_parameters: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> GenerationParameters:
        data = data or {}
        return cls(
            temperature=data.get("temperature"),
            max_tokens=data.get("max_tokens"),
            top_p=data.get("top_p"),
            frequency_penalty=data.get("frequency_penalty"),
            presence_penalty=data.get("presence_penalty"),
            stop=list(data.get("stop") or []),
            other_parameters=dict(data.get("other_parameters") or {}),
        )


@dataclass
class AdapterConfig:
    """Endpoint, credentials, model and capability set for one backend."""
    api_type: str
    base_url: str
    model: str
    api_key: str = ""
    id: str = ""
    uid: str = ""
    enabled: bool = True
    abilities: set[Capability] = field(default_factory=set)
    reasoning_start: str = ""
    reasoning_end: str = ""
    reasoning_effort: str = ""
    start_with: str = ""
    timeout: float = 60.0
    extra_params: dict = field(default_factory=dict)

    def __post_init__(self):
        self.base_url = (self.base_url or "").rstrip("/")
        if not self.id:
            self.id = f"{self.api_type}:{self.model}"

    @classmethod
    def from_dict(cls, data: dict) -> AdapterConfig:
        abilities = set()
        for name in data.get("abilities") or []:
            try:
                abilities.add(Capability(name))
            except ValueError:
                logger.warning(f"Ignoring unknown adapter ability: {name}")
        return cls(
            api_type=data.get("api_type", "openai"),
            base_url=data.get("base_url", ""),
            model=data.get("model", ""),
            api_key=data.get("api_key") or "",
            id=data.get("id") or "",
            uid=data.get("uid") or "",
            enabled=data.get("enabled", True),
            abilities=abilities,
            reasoning_start=data.get("reasoning_start") or "",
            reasoning_end=data.get("reasoning_end") or "",
            reasoning_effort=data.get("reasoning_effort") or "",
            start_with=data.get("start_with") or "",
            timeout=float(data.get("timeout", 60)),
            extra_params=dict(data.get("extra_params") or {}),
        )


# ── Adapter interface ──────────────────────────────────────────

class BaseAdapter(ABC):
    """Abstract LLM backend adapter."""

    api_type: str = ""
    # True if the backend speaks OpenAI-style SSE chunks
    supports_streaming: bool = False

    def __init__(
        self,
        config: AdapterConfig,
        params: Optional[GenerationParameters] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.config = config
        self.params = params or GenerationParameters()
        self.on_progress = on_progress
        self._transport = transport
        self.extra_params = {
            str(k).strip(): coerce_param(v)
            for k, v in {**self.params.other_parameters, **config.extra_params}.items()
        }
        self._reasoning_re = compile_reasoning_pattern(config.reasoning_start, config.reasoning_end)
        logger.info(f"Adapter: {self.api_type or self.__class__.__name__} registered ({config.id})")

    @property
    def model(self) -> str:
        return self.config.model

    @property
    def api_key(self) -> str:
        """Access the API key (property to avoid accidental logging)."""
        return self.config.api_key

    def __repr__(self) -> str:
        key = self.config.api_key
        masked = f"***{key[-4:]}" if key and len(key) > 4 else "***"
        return f"{self.__class__.__name__}(model={self.model!r}, api_key={masked!r})"

    def has(self, capability: Capability) -> bool:
        return capability in self.config.abilities

    def strip_reasoning(self, text: str) -> str:
        """Remove everything between the configured reasoning markers."""
        if not text or self._reasoning_re is None:
            return text
        return self._reasoning_re.sub("", text).strip()

    def prepare_messages(self, messages: list[Message]) -> list[Message]:
        """Append a pre-seeded assistant prefix when prefix continuation is enabled."""
        if self.has(Capability.PREFIX_CONTINUATION) and self.config.start_with:
            return [*messages, Message.assistant(self.config.start_with, prefix=True)]
        return list(messages)

    # ── Backend-specific hooks ────────────────────────────────────

    @abstractmethod
    def build_url(self) -> str:
        pass

    def build_headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @abstractmethod
    def build_body(self, messages: list[Message], tools: Optional[list[ToolSchema]]) -> dict:
        """Backend request body from the generic fields (extra params merged later)."""

    def request_extras(self) -> dict:
        """Free-form parameters merged over the generated body."""
        return self.extra_params

    @abstractmethod
    def parse_response(self, data: dict) -> Response:
        """Normalize a backend reply. May raise KeyError/TypeError/IndexError on bad shapes."""

    # ── Chat ──────────────────────────────────────────────────────

    async def chat(
        self,
        messages: list[Message],
        tools: Optional[list[ToolSchema]] = None,
        debug: bool = False,
    ) -> Response:
        """Send the conversation to the backend and return a normalized Response."""
        messages = self.prepare_messages(messages)
        body = {k: v for k, v in self.build_body(messages, tools).items() if v is not None}
        body.update(self.request_extras())

        url = self.build_url()
        headers = self.build_headers()
        logger.debug(f"{self.__class__.__name__} → {self.model} ({len(messages)} messages)")

        if self.supports_streaming and self.has(Capability.STREAMING):
            body["stream"] = True
            data = await self._post_stream(url, headers, body)
        else:
            data = await self._post(url, headers, body)

        if debug:
            logger.info(f"Raw response from {self.config.id}: {json.dumps(data, ensure_ascii=False)[:4000]}")

        try:
            return self.parse_response(data)
        except (KeyError, TypeError, IndexError, AttributeError) as e:
            raise ProviderError(
                ProviderErrorCode.UNKNOWN_ERROR,
                f"Unexpected response shape from {self.api_type}: {e}",
                body=json.dumps(data, ensure_ascii=False, default=str),
            ) from e

    # ── HTTP helpers ──────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport)

    async def _post(self, url: str, headers: dict, body: dict) -> dict:
        try:
            async with self._client() as client:
                resp = await client.post(url, headers=headers, json=body)
        except httpx.TimeoutException as e:
            raise ProviderError(ProviderErrorCode.TIMEOUT, f"Request timed out after {self.config.timeout}s") from e
        except httpx.RequestError as e:
            raise ProviderError(ProviderErrorCode.NETWORK_ERROR, f"Network error: {e}") from e

        if resp.status_code >= 400:
            raise ProviderError.from_status(resp.status_code, resp.text)
        try:
            return resp.json()
        except ValueError as e:
            raise ProviderError(
                ProviderErrorCode.UNKNOWN_ERROR, "Response body is not JSON",
                status=resp.status_code, body=resp.text,
            ) from e

    async def _post_stream(self, url: str, headers: dict, body: dict) -> dict:
        """
        Accumulate OpenAI-style SSE chunks into one non-streaming reply shape.

        Per chunk, `delta.reasoning_content` wins over `delta.content`.
        Tool-call fragments are merged by index. The progress callback
        receives the accumulated text after every chunk.
        """
        content = ""
        tool_calls: dict[int, dict] = {}
        last: dict = {}
        try:
            async with self._client() as client:
                async with client.stream("POST", url, headers=headers, json=body) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        raise ProviderError.from_status(resp.status_code, resp.text)
                    async for line in resp.aiter_lines():
                        line = line.strip()
                        if not line.startswith("data:"):
                            continue
                        payload = line[len("data:"):].strip()
                        if payload == "[DONE]":
                            break
                        try:
                            chunk = json.loads(payload)
                        except ValueError:
                            logger.debug(f"Skipping malformed stream chunk: {payload[:200]}")
                            continue
                        last = chunk
                        for choice in chunk.get("choices") or []:
                            delta = choice.get("delta") or {}
                            piece = delta.get("reasoning_content") or delta.get("content") or ""
                            content += piece
                            for tc in delta.get("tool_calls") or []:
                                slot = tool_calls.setdefault(
                                    tc.get("index", 0),
                                    {"id": "", "type": "function", "function": {"name": "", "arguments": ""}},
                                )
                                if tc.get("id"):
                                    slot["id"] = tc["id"]
                                fn = tc.get("function") or {}
                                slot["function"]["name"] += fn.get("name") or ""
                                slot["function"]["arguments"] += fn.get("arguments") or ""
                        await self._notify_progress(content)
        except httpx.TimeoutException as e:
            raise ProviderError(ProviderErrorCode.TIMEOUT, f"Stream timed out after {self.config.timeout}s") from e
        except httpx.RequestError as e:
            raise ProviderError(ProviderErrorCode.NETWORK_ERROR, f"Network error: {e}") from e

        message: dict = {"role": "assistant", "content": content}
        if tool_calls:
            message["tool_calls"] = [tool_calls[i] for i in sorted(tool_calls)]
        return {
            "model": last.get("model", self.model),
            "created": last.get("created", int(time.time())),
            "choices": [{"index": 0, "message": message, "finish_reason": "stop"}],
            "usage": last.get("usage") or {},
        }

    async def _notify_progress(self, text: str) -> None:
        if self.on_progress is None:
            return
        result = self.on_progress(text)
        if inspect.isawaitable(result):
            await result
