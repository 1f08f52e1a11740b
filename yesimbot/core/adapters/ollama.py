"""
Ollama adapter — `POST {base}/api/chat`, non-streaming.

Runtime options (context size, GPU placement, threads...) are read from the
adapter's extra parameters and sent under `options`; everything else is
merged at the top level like the other adapters.
"""

from __future__ import annotations
import logging
import time
from typing import Optional

from .base import BaseAdapter
from .openai_adapter import parse_tool_calls
from ..models import ImagePart, Message, Response, ToolSchema, Usage

logger = logging.getLogger(__name__)

OPTION_KEYS = frozenset({
    "num_ctx", "num_batch", "num_gpu", "main_gpu", "low_vram", "logits_all",
    "vocab_only", "use_mmap", "use_mlock", "num_thread", "numa", "seed",
    "repeat_penalty", "top_k",
})


def _strip_data_url(url: str) -> str:
    return url.partition(",")[2] if url.startswith("data:") else url


class OllamaAdapter(BaseAdapter):

    api_type = "ollama"

    def build_url(self) -> str:
        return f"{self.config.base_url}/api/chat"

    def _convert_message(self, message: Message) -> dict:
        d: dict = {"role": message.role, "content": message.text}
        images = [_strip_data_url(p.url) for p in message.parts if isinstance(p, ImagePart)]
        if images:
            d["images"] = images
        if message.tool_calls:
            d["tool_calls"] = [
                {"function": {"name": tc.name, "arguments": tc.arguments}}
                for tc in message.tool_calls
            ]
        return d

    def build_body(self, messages: list[Message], tools: Optional[list[ToolSchema]]) -> dict:
        p = self.params
        options = {
            "temperature": p.temperature,
            "num_predict": p.max_tokens,
            "top_p": p.top_p,
            "frequency_penalty": p.frequency_penalty,
            "presence_penalty": p.presence_penalty,
            "stop": p.stop or None,
        }
        options.update({k: v for k, v in self.extra_params.items() if k in OPTION_KEYS})
        return {
            "model": self.model,
            "messages": [self._convert_message(m) for m in messages],
            "tools": [t.to_openai() for t in tools] if tools else None,
            "stream": False,
            "options": {k: v for k, v in options.items() if v is not None},
        }

    def request_extras(self) -> dict:
        return {k: v for k, v in self.extra_params.items() if k not in OPTION_KEYS}

    def parse_response(self, data: dict) -> Response:
        msg = data["message"]
        if data.get("done_reason") == "length":
            logger.warning("Ollama stopped due to token length limit")
        prompt = int(data.get("prompt_eval_count") or 0)
        completion = int(data.get("eval_count") or 0)
        return Response(
            model=data.get("model") or self.model,
            created=time.time(),
            message=Message(
                role="assistant",
                content=msg.get("content") or "",
                tool_calls=parse_tool_calls(msg.get("tool_calls")),
            ),
            usage=Usage(prompt, completion, prompt + completion),
        )
