"""
Tool Execution Loop — runs requested tool calls and re-enters the pipeline.

Calls run sequentially. A failing call (unknown name or handler error) is
captured and reported back to the model; it never aborts the batch. If any
call produced a message, the pipeline is re-entered one level deeper; past
`max_depth` the loop fails closed.
"""

from __future__ import annotations

import json
import logging
from typing import Awaitable, Callable, Literal, Optional, Union

from .errors import ToolNotFoundError
from .models import FailResult, Message, OrchestrationResult, ToolCall, Usage
from .tool_registry import ToolRegistry

logger = logging.getLogger(__name__)

Reenter = Callable[[list[Message], int], Awaitable[OrchestrationResult]]
ToolRequest = Union[ToolCall, dict]


def success_envelope(name: str, result: str) -> str:
    return json.dumps({"function": name, "status": "success", "result": result}, ensure_ascii=False)


def failure_envelope(name: str, reason: str) -> str:
    return json.dumps({"function": name, "status": "failed", "reason": reason}, ensure_ascii=False)


class ToolExecutionLoop:

    def __init__(
        self,
        registry: ToolRegistry,
        function_result_role: Literal["user", "assistant"] = "user",
        max_depth: int = 5,
    ):
        if function_result_role not in ("user", "assistant"):
            raise ValueError(f"function_result_role must be user or assistant, got {function_result_role!r}")
        self.registry = registry
        self.function_result_role = function_result_role
        self.max_depth = max_depth

    async def _call(self, name: str, params: dict) -> tuple[bool, Optional[str]]:
        """Returns (ok, text). Errors are captured, never raised."""
        logger.info(f"Calling function {name}({json.dumps(params, ensure_ascii=False, default=str)[:300]})")
        try:
            return True, await self.registry.call_function(name, params)
        except ToolNotFoundError as e:
            logger.warning(str(e))
            return False, str(e)
        except Exception as e:
            logger.warning(f"Function {name} failed: {e}")
            return False, str(e) or e.__class__.__name__

    async def run_native(self, calls: list[ToolCall]) -> list[Message]:
        """Execute provider-native tool calls; results become tool-role messages."""
        messages = []
        for call in calls:
            ok, text = await self._call(call.name, call.arguments)
            if ok and not text:
                continue
            content = success_envelope(call.name, text) if ok else failure_envelope(call.name, text)
            messages.append(Message.tool(content, call.id))
        return messages

    async def run_textual(self, functions: list[dict]) -> list[Message]:
        """Execute {name, params} requests parsed from a reply payload."""
        messages = []
        for func in functions:
            name = func.get("name", "")
            ok, text = await self._call(name, func.get("params") or {})
            if ok and not text:
                continue
            content = success_envelope(name, text) if ok else failure_envelope(name, text)
            messages.append(Message(role=self.function_result_role, content=content))
        return messages

    async def execute(
        self,
        requests: list[ToolRequest],
        reenter: Reenter,
        depth: int = 0,
        usage: Optional[Usage] = None,
        adapter_index: int = -1,
    ) -> Optional[OrchestrationResult]:
        """
        Run a batch and re-enter the pipeline with the produced messages.

        Returns None when no call produced a message (the caller keeps its
        prior result), or a FailResult when the depth bound is exceeded.
        """
        if not requests:
            return None
        if depth >= self.max_depth:
            reason = f"Tool recursion depth limit reached ({self.max_depth})"
            logger.warning(reason)
            return FailResult(reason=reason, usage=usage or Usage(), adapter_index=adapter_index)

        native = [r for r in requests if isinstance(r, ToolCall)]
        textual = [r for r in requests if isinstance(r, dict)]
        messages = await self.run_native(native) if native else []
        if textual:
            messages += await self.run_textual(textual)
        if not messages:
            return None
        return await reenter(messages, depth + 1)

    async def run_side_effects(self, functions: list[dict]) -> None:
        """Run functions attached to a success/skip result; results are only logged."""
        for message in await self.run_textual(functions):
            logger.info(f"Function result (not fed back): {message.text[:300]}")
