"""
Tool Registry — name → tool records callable by the model.

Each tool is a plain record {name, description, params, handler} registered
at startup. Handlers receive the parameter mapping and may be sync or async.
"""

from __future__ import annotations
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from .errors import ToolNotFoundError
from .models import ToolSchema

logger = logging.getLogger(__name__)

Handler = Callable[[dict], Any]


@dataclass
class Tool:
    """
    A callable capability exposed to the model.

    `params` maps parameter names to JSON-schema property dicts, e.g.
    {"query": {"type": "string", "description": "..."}}. A parameter with a
    "default" is optional.
    """
    name: str
    description: str
    handler: Handler
    params: dict[str, dict] = field(default_factory=dict)

    def schema(self) -> ToolSchema:
        properties = {
            key: {k: v for k, v in spec.items() if k != "default"}
            for key, spec in self.params.items()
        }
        required = [key for key, spec in self.params.items() if "default" not in spec]
        return ToolSchema(
            name=self.name,
            description=self.description,
            input_schema={"type": "object", "properties": properties, "required": required},
        )

    def prompt(self) -> str:
        """Textual description for adapters without native tool calling."""
        lines = [f"{self.name}:", f"  description: {self.description}", "  params:"]
        for key, spec in self.params.items():
            lines.append(f"    {key}: {spec.get('description', spec.get('type', ''))}")
        return "\n".join(lines)


class ToolRegistry:
    """Central registry for model-callable tools."""

    def __init__(self, tools: Optional[Iterable[Tool]] = None):
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.warning(f"Tool {tool.name} re-registered; replacing previous handler")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get_tool(self, name: str) -> Tool:
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def get_schemas(self) -> list[ToolSchema]:
        """Schemas for adapters with native tool calling."""
        return [tool.schema() for tool in self._tools.values()]

    def function_prompt(self) -> str:
        """Text listing of every tool, for the `{{functionPrompt}}` placeholder."""
        return "\n".join(tool.prompt() for tool in self._tools.values())

    async def call_function(self, name: str, params: Optional[dict] = None) -> Optional[str]:
        """
        Invoke a tool by name.

        Raises ToolNotFoundError for unknown names; errors raised by the
        handler propagate to the caller. Non-string results are JSON-encoded.
        """
        tool = self.get_tool(name)
        result = tool.handler(dict(params or {}))
        if inspect.isawaitable(result):
            result = await result
        if result is None or isinstance(result, str):
            return result
        return json.dumps(result, ensure_ascii=False, default=str)
