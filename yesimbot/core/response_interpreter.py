"""
Response Interpreter — turns a model's free-text reply into a typed result.

The reply is expected to carry a structured payload (JSON or XML) with the
fields: status, replyTo, nextReplyIn, logic, reply, check, finalReply,
functions. Decoding and repair live in `structured_format`; this module
normalizes the fields and branches on status.
"""

from __future__ import annotations

import json
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .models import FailResult, Message, SkipResult, SuccessResult, Usage
from .prompt_context import PromptContext
from .structured_format import PayloadParseError, ReplyFormat, decode_payload, payload_to_xml

logger = logging.getLogger(__name__)

CONTRACT_FIELDS = ("status", "replyTo", "nextReplyIn", "logic", "reply", "check", "finalReply", "functions")

# Accepted in tolerant mode from models that ignore the field names
ALTERNATE_REPLY_FIELDS = ("msg", "text", "message", "answer")

PRIVATE_PREFIX = "private:"

_PLACEHOLDER_RE = re.compile(r"\{.+\}")
_DIGITS_RE = re.compile(r"\d+")


@dataclass
class InteractionRequest:
    """The model asked for tool results before answering."""
    functions: list[dict]
    logic: str = ""
    next_trigger_count: int = 0
    usage: Usage = field(default_factory=Usage)
    adapter_index: int = -1


Interpretation = Union[SuccessResult, SkipResult, FailResult, InteractionRequest]


# ── Field normalization ──────────────────────────────────────

def normalize_functions(value: Any) -> list[dict]:
    """
    Normalize every legal `functions` shape to [{"name", "params"}]:

      [{name, params}]              array of calls
      {name, params}                single call
      {function: [{name, params}]}  XML-parsed array
      {function: {name, params}}    XML-parsed single call
    """
    if isinstance(value, list):
        items = value
    elif isinstance(value, dict):
        if "function" in value and "name" not in value:
            inner = value["function"]
            items = inner if isinstance(inner, list) else [inner]
        else:
            items = [value]
    else:
        return []

    functions = []
    for item in items:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        if not name:
            continue
        params = item.get("params")
        functions.append({"name": name, "params": params if isinstance(params, dict) else {}})
    return functions


def resolve_trigger_count(
    value: Any,
    min_count: int,
    max_count: int,
    rng: Optional[random.Random] = None,
) -> int:
    """Clamp a numeric value into [min, max]; otherwise draw uniformly from it."""
    if value is not None and not isinstance(value, bool):
        try:
            number = int(float(str(value).strip()))
        except (TypeError, ValueError, OverflowError):
            pass
        else:
            return max(min_count, min(number, max_count))
    return (rng or random).randint(min_count, max_count)


def extract_reply_to(value: Any) -> str:
    """
    Normalize the reply target.

    `private:` targets are kept verbatim. Anything else is reduced to its
    first run of digits; unfilled `{...}` placeholders and sandbox targets
    are invalid and yield "".
    """
    if value is None:
        return ""
    reply_to = str(value).strip()
    if not reply_to or reply_to.startswith(PRIVATE_PREFIX):
        return reply_to
    if _PLACEHOLDER_RE.search(reply_to) or "sandbox" in reply_to:
        return ""
    m = _DIGITS_RE.search(reply_to)
    return m.group(0) if m else reply_to


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return payload_to_xml(value)
    return str(value)


# ── Interpreter ───────────────────────────────────────────────

class ResponseInterpreter:
    """Decode a raw model reply and decide the next pipeline step."""

    def __init__(
        self,
        response_format: Union[str, ReplyFormat] = ReplyFormat.JSON,
        min_trigger_count: int = 2,
        max_trigger_count: int = 4,
        allow_error_format: bool = False,
        rng: Optional[random.Random] = None,
    ):
        self.response_format = ReplyFormat.parse(response_format)
        self.min_trigger_count = min(min_trigger_count, max_trigger_count)
        self.max_trigger_count = max(min_trigger_count, max_trigger_count)
        self.allow_error_format = allow_error_format
        self._rng = rng or random.Random()

    def parse(self, raw: str) -> dict:
        """Decode the payload; raises PayloadParseError."""
        return decode_payload(raw, self.response_format)

    def interpret(
        self,
        raw: str,
        usage: Optional[Usage] = None,
        adapter_index: int = -1,
        context: Optional[PromptContext] = None,
    ) -> Interpretation:
        usage = usage or Usage()
        fmt = self.response_format.label
        try:
            payload = self.parse(raw)
        except PayloadParseError as e:
            logger.warning(f"Reply parse failed: {e}")
            return FailResult(reason=str(e), raw=raw, usage=usage, adapter_index=adapter_index)

        if not any(key in payload for key in CONTRACT_FIELDS):
            reason = f"{fmt} payload has none of the expected fields: {sorted(payload)[:8]}"
            logger.warning(reason)
            return FailResult(reason=reason, raw=raw, usage=usage, adapter_index=adapter_index)

        if context is not None:
            context.add(Message.assistant(json.dumps(payload, ensure_ascii=False)))

        next_count = resolve_trigger_count(
            payload.get("nextReplyIn"), self.min_trigger_count, self.max_trigger_count, self._rng,
        )
        logic = _as_text(payload.get("logic"))
        functions = normalize_functions(payload.get("functions"))
        status = str(payload.get("status") or "").strip().lower()

        if status == "success":
            final_reply = _as_text(payload.get("finalReply") or payload.get("reply") or "")
            if self.allow_error_format:
                for key in ALTERNATE_REPLY_FIELDS:
                    if payload.get(key):
                        final_reply += _as_text(payload[key])
                        break
            if not final_reply.strip():
                logger.info("Reply is empty; treating as skip")
                return SkipResult(next_count, logic, functions, usage, adapter_index)
            return SuccessResult(
                final_reply=final_reply,
                reply_to=extract_reply_to(payload.get("replyTo")),
                next_trigger_count=next_count,
                logic=logic,
                functions=functions,
                usage=usage,
                adapter_index=adapter_index,
            )
        if status == "skip":
            return SkipResult(next_count, logic, functions, usage, adapter_index)
        if status in ("interaction", "function"):
            return InteractionRequest(functions, logic, next_count, usage, adapter_index)

        reason = f"status is not a valid value: {payload.get('status')!r}"
        return FailResult(reason=reason, raw=raw, usage=usage, adapter_index=adapter_index)
