"""
Orchestrator — the conversational pipeline.

For one channel:
  route (tier) → prepare (adapter, memories, system prompt) → chat →
  strip reasoning → tool loop / interpret → terminal result

Each channel owns a ChannelState {trigger_count, lock, context}. At most one
pipeline runs per channel; recursive tool re-entries run under the lock the
top-level call already holds.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .adapter_pool import AdapterPool, PoolEntry
from .adapters.base import BaseAdapter
from .errors import ConfigError, NoAdapterAvailableError
from .memory_store import MemoryService
from .model_router import AdapterClassifier, AdaptiveRouter, ModelTier, RouterSettings
from .models import (
    Capability, Message, OrchestrationResult, SkipResult, SuccessResult,
    ToolSchema, Usage,
)
from .prompt_builder import PromptBuilder
from .prompt_context import PromptContext
from .response_interpreter import InteractionRequest, ResponseInterpreter
from .structured_format import ReplyFormat
from .structured_logger import trace_context
from .tool_loop import ToolExecutionLoop
from .tool_registry import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "{{outputSchema}}\n{{functionPrompt}}\n{{memory}}"

ResultCallback = Callable[[OrchestrationResult], Any]


@dataclass
class OrchestratorSettings:
    response_format: ReplyFormat = ReplyFormat.JSON
    allow_error_format: bool = False
    send_resolve_ok: bool = False
    multi_turn: bool = True
    function_result_role: str = "user"
    max_tool_depth: int = 5
    max_context_size: int = 20
    max_recall_size: int = 100
    min_trigger_count: int = 2
    max_trigger_count: int = 4
    memory_top_k: int = 5
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    router: RouterSettings = field(default_factory=RouterSettings)

    def __post_init__(self):
        self.response_format = ReplyFormat.parse(self.response_format)
        if self.function_result_role not in ("user", "assistant"):
            raise ValueError(f"function_result_role must be user or assistant, got {self.function_result_role!r}")
        if self.min_trigger_count > self.max_trigger_count:
            self.min_trigger_count, self.max_trigger_count = self.max_trigger_count, self.min_trigger_count

    @classmethod
    def from_config(cls, config: Any) -> OrchestratorSettings:
        """Build from a Config (anything with a dot-path `get`). Bad values raise ConfigError."""
        try:
            return cls(
                response_format=config.get("settings.response_format", "json"),
                allow_error_format=bool(config.get("settings.allow_error_format", False)),
                send_resolve_ok=bool(config.get("settings.send_resolve_ok", False)),
                multi_turn=bool(config.get("settings.multi_turn", True)),
                function_result_role=config.get("settings.function_result_role", "user"),
                max_tool_depth=int(config.get("settings.max_tool_depth", 5)),
                max_context_size=int(config.get("settings.max_context_size", 20)),
                max_recall_size=int(config.get("settings.max_recall_size", 100)),
                min_trigger_count=int(config.get("memory_slot.min_trigger_count", 2)),
                max_trigger_count=int(config.get("memory_slot.max_trigger_count", 4)),
                memory_top_k=int(config.get("memory.top_k", 5)),
                system_prompt=config.get("prompt.system", DEFAULT_SYSTEM_PROMPT),
                router=RouterSettings.from_dict(config.get("router", {})),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid settings: {e}") from e


@dataclass
class ChannelState:
    """Per-channel orchestration state."""
    channel_id: str
    context: PromptContext
    trigger_count: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    retrigger: bool = False
    # history of the most recent dropped trigger, replayed once after the current run
    pending_history: Optional[list[Message]] = None


@dataclass
class PreparedRequest:
    """Everything chosen for one top-level call; reused by recursive re-entries."""
    entry: PoolEntry
    system_prompt: str
    memories: list[str] = field(default_factory=list)
    tools: Optional[list[ToolSchema]] = None

    @property
    def adapter(self) -> BaseAdapter:
        return self.entry.adapter

    @property
    def index(self) -> int:
        return self.entry.index


def latest_user_text(messages: list[Message]) -> str:
    for message in reversed(messages):
        if message.role == "user" and message.text.strip():
            return message.text
    return ""


async def _deliver(on_result: Optional[ResultCallback], result: OrchestrationResult) -> None:
    if on_result is None:
        return
    outcome = on_result(result)
    if inspect.isawaitable(outcome):
        await outcome


class Orchestrator:

    def __init__(
        self,
        pool: AdapterPool,
        registry: Optional[ToolRegistry] = None,
        memory: Optional[MemoryService] = None,
        settings: Optional[OrchestratorSettings] = None,
        router: Optional[AdaptiveRouter] = None,
    ):
        self.pool = pool
        self.registry = registry or ToolRegistry()
        self.memory = memory
        self.settings = settings or OrchestratorSettings()
        s = self.settings
        self.interpreter = ResponseInterpreter(
            s.response_format, s.min_trigger_count, s.max_trigger_count, s.allow_error_format,
        )
        self.tool_loop = ToolExecutionLoop(self.registry, s.function_result_role, s.max_tool_depth)
        self.prompt_builder = PromptBuilder(s.system_prompt, s.response_format)
        classifier = self._classify if s.router.router_adapter else None
        self.router = router or AdaptiveRouter(s.router, classifier)
        self._channels: dict[str, ChannelState] = {}

    # ── Channel state ─────────────────────────────────────────────

    def channel(self, channel_id: str) -> ChannelState:
        state = self._channels.get(channel_id)
        if state is None:
            s = self.settings
            state = ChannelState(
                channel_id=channel_id,
                context=PromptContext(s.max_context_size, s.multi_turn, s.send_resolve_ok, s.max_recall_size),
                trigger_count=s.min_trigger_count,
            )
            self._channels[channel_id] = state
        return state

    # ── Entry points ──────────────────────────────────────────────

    async def handle_trigger(
        self,
        channel_id: str,
        history: Optional[list[Message]] = None,
        owner_id: str = "",
        debug: bool = False,
        on_result: Optional[ResultCallback] = None,
    ) -> Optional[OrchestrationResult]:
        """
        Run the pipeline unless the channel is busy.

        A trigger that arrives while the channel is busy is dropped and
        returns None; the busy run then repeats once with that trigger's
        history when it finishes. Every run's result, the re-run included,
        is handed to `on_result` (sync or async) as soon as it is produced.
        The first run's result is returned.
        """
        state = self.channel(channel_id)
        if state.lock.locked():
            logger.info(f"Channel {channel_id} is busy; dropping trigger and scheduling a re-run")
            state.retrigger = True
            state.pending_history = history
            return None

        async with state.lock:
            state.retrigger = False
            result = await self._run(state, history, owner_id, debug)
            await _deliver(on_result, result)
            if state.retrigger:
                state.retrigger = False
                pending, state.pending_history = state.pending_history, None
                logger.info(f"Channel {channel_id}: re-running for a dropped trigger")
                rerun = await self._run(state, pending, owner_id, debug)
                if on_result is None:
                    logger.warning(f"Channel {channel_id}: re-run result has no receiver ({rerun.status})")
                await _deliver(on_result, rerun)
            return result

    async def respond(
        self,
        channel_id: str,
        history: Optional[list[Message]] = None,
        owner_id: str = "",
        debug: bool = False,
    ) -> OrchestrationResult:
        """Run the pipeline, waiting for the channel lock if needed."""
        state = self.channel(channel_id)
        async with state.lock:
            return await self._run(state, history, owner_id, debug)

    # ── Pipeline ──────────────────────────────────────────────────

    async def _run(
        self,
        state: ChannelState,
        history: Optional[list[Message]],
        owner_id: str,
        debug: bool,
    ) -> OrchestrationResult:
        with trace_context(state.channel_id):
            if history is not None:
                state.context.set_chat_history(history)
            query = latest_user_text(history or state.context.messages)

            async def prepare(tier: ModelTier) -> PreparedRequest:
                return await self._prepare(tier, query, owner_id or state.channel_id)

            decision = await self.router.route(query, prepare)
            result = await self.generate(state, [], decision.prepared, depth=0, debug=debug)

            if isinstance(result, (SuccessResult, SkipResult)):
                state.trigger_count = result.next_trigger_count
                if result.functions:
                    await self.tool_loop.run_side_effects(result.functions)
            else:
                logger.error(f"Reply could not be used (adapter {result.adapter_index}): {result.reason}")
                if debug and result.raw:
                    logger.info(f"Raw reply: {result.raw}")
            return result

    def _select_adapter(self, tier: ModelTier) -> Optional[PoolEntry]:
        router = self.settings.router
        adapter_id = router.enhanced_adapter if tier is ModelTier.ENHANCED else router.standard_adapter
        if adapter_id:
            entry = self.pool.by_id(adapter_id)
            if entry is not None:
                return entry
            logger.warning(f"Adapter {adapter_id} for tier {tier.value} not in pool; using round-robin")
        return self.pool.next()

    async def _prepare(self, tier: ModelTier, query: str, owner_id: str) -> PreparedRequest:
        """Select the adapter and assemble the system prompt for a tier."""
        entry = self._select_adapter(tier)
        if entry is None:
            raise NoAdapterAvailableError()
        memories: list[str] = []
        if self.memory is not None and query:
            memories = await self.memory.search(query, owner_id, self.settings.memory_top_k)

        if entry.adapter.has(Capability.NATIVE_TOOL_CALLING):
            system_prompt = self.prompt_builder.build(None)
            tools = self.registry.get_schemas() or None
        else:
            system_prompt = self.prompt_builder.build(self.registry.function_prompt())
            tools = None
        return PreparedRequest(entry, system_prompt, memories, tools)

    async def generate(
        self,
        state: ChannelState,
        new_messages: list[Message],
        prepared: PreparedRequest,
        depth: int = 0,
        debug: bool = False,
        usage: Optional[Usage] = None,
    ) -> OrchestrationResult:
        """One model round-trip; recurses through the tool loop."""
        state.context.extend(new_messages)
        adapter = prepared.adapter
        messages = state.context.build_messages(
            prepared.system_prompt, prepared.memories, vision=adapter.has(Capability.VISION),
        )
        response = await adapter.chat(messages, prepared.tools, debug)
        total = (usage or Usage()) + response.usage
        text = adapter.strip_reasoning(response.text)
        if debug:
            logger.info(f"Adapter {prepared.index} (depth {depth}) replied:\n{text}")

        async def reenter(tool_messages: list[Message], next_depth: int) -> OrchestrationResult:
            return await self.generate(state, tool_messages, prepared, next_depth, debug, total)

        if response.tool_calls:
            state.context.add(Message.assistant(text, tool_calls=response.tool_calls))
            result = await self.tool_loop.execute(response.tool_calls, reenter, depth, total, prepared.index)
            if result is not None:
                return result

        outcome = self.interpreter.interpret(text, total, prepared.index, state.context)
        if not isinstance(outcome, InteractionRequest):
            return outcome

        result = await self.tool_loop.execute(outcome.functions, reenter, depth, total, prepared.index)
        if result is None:
            # nothing came back to feed the model; functions already ran
            return SkipResult(outcome.next_trigger_count, outcome.logic, [], total, prepared.index)
        return result

    # ── Router model ──────────────────────────────────────────────

    async def _classify(self, text: str) -> bool:
        entry = self.pool.by_id(self.settings.router.router_adapter)
        if entry is None:
            raise NoAdapterAvailableError(f"Router adapter {self.settings.router.router_adapter} not in pool")
        return await AdapterClassifier(entry.adapter)(text)
