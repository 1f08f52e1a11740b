"""
Adaptive Router — picks the standard or enhanced model tier per request.

Cheap heuristics run first when latency optimization is on. Otherwise a
lightweight router model classifies the message while the standard-tier
request is prepared speculatively; the router call is raced against a
timeout and a late answer is ignored.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .models import Message

logger = logging.getLogger(__name__)


class ModelTier(Enum):
    STANDARD = "standard"
    ENHANCED = "enhanced"


@dataclass
class RouterSettings:
    enabled: bool = False
    latency_optimization: bool = True
    short_message_words: int = 8
    timeout: float = 1.5
    router_adapter: str = ""
    standard_adapter: str = ""
    enhanced_adapter: str = ""

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> RouterSettings:
        data = data or {}
        return cls(
            enabled=bool(data.get("enabled", False)),
            latency_optimization=bool(data.get("latency_optimization", True)),
            short_message_words=int(data.get("short_message_words", 8)),
            timeout=float(data.get("timeout", 1.5)),
            router_adapter=data.get("router_adapter") or "",
            standard_adapter=data.get("standard_adapter") or "",
            enhanced_adapter=data.get("enhanced_adapter") or "",
        )


@dataclass
class RouteDecision:
    """Chosen tier, why, and the payload prepared for that tier."""
    tier: ModelTier
    reasoning: str
    prepared: Any = None

    def to_dict(self) -> dict:
        return {"tier": self.tier.value, "reasoning": self.reasoning}


Classifier = Callable[[str], Awaitable[bool]]
Prepare = Callable[[ModelTier], Awaitable[Any]]

CODE_FENCE = "```"

ROUTER_PROMPT = (
    "You route chat messages to a model tier. Reply with exactly one word: "
    "'enhanced' if the message needs careful reasoning, coding or long-form "
    "writing, otherwise 'standard'."
)


def _discard_result(task: asyncio.Future) -> None:
    # late router answers are ignored; retrieve the exception so it is not reported
    if not task.cancelled():
        task.exception()


class AdapterClassifier:
    """Classifier backed by a (cheap) chat adapter."""

    def __init__(self, adapter, prompt: str = ROUTER_PROMPT):
        self.adapter = adapter
        self.prompt = prompt

    async def __call__(self, text: str) -> bool:
        response = await self.adapter.chat([Message.system(self.prompt), Message.user(text)])
        answer = self.adapter.strip_reasoning(response.text).strip().lower()
        return answer.startswith("enhanced") or answer == "true"


class AdaptiveRouter:

    def __init__(self, settings: Optional[RouterSettings] = None, classifier: Optional[Classifier] = None):
        self.settings = settings or RouterSettings()
        self.classifier = classifier

    # ── Heuristics ────────────────────────────────────────────────

    def heuristic(self, text: str) -> Optional[RouteDecision]:
        """Short-circuit decision, or None when the router model should decide."""
        if CODE_FENCE in text:
            return RouteDecision(ModelTier.ENHANCED, "message contains a code block")
        if len(text.split()) <= self.settings.short_message_words:
            return RouteDecision(ModelTier.STANDARD, "short message")
        return None

    async def _classify(self, text: str) -> bool:
        try:
            return bool(await self.classifier(text))
        except Exception as e:
            logger.warning(f"Router model failed, using standard tier: {e}")
            return False

    # ── Routing ───────────────────────────────────────────────────

    async def route(self, text: str, prepare: Prepare) -> RouteDecision:
        """
        Decide the tier and return it with the prepared payload.

        `prepare(tier)` is awaited exactly once for the chosen tier; on the
        standard path the speculative preparation is reused.
        """
        if not self.settings.enabled:
            return RouteDecision(ModelTier.STANDARD, "adaptive routing disabled", await prepare(ModelTier.STANDARD))

        if self.settings.latency_optimization:
            decision = self.heuristic(text)
            if decision is not None:
                logger.info(f"Routing to {decision.tier.value}: {decision.reasoning}")
                decision.prepared = await prepare(decision.tier)
                return decision

        if self.classifier is None:
            return RouteDecision(ModelTier.STANDARD, "no router model", await prepare(ModelTier.STANDARD))

        router_task = asyncio.ensure_future(self._classify(text))
        prepare_task = asyncio.ensure_future(prepare(ModelTier.STANDARD))

        done, _ = await asyncio.wait({router_task}, timeout=self.settings.timeout)
        if router_task in done and router_task.result():
            if not prepare_task.done():
                prepare_task.cancel()
            prepare_task.add_done_callback(_discard_result)
            logger.info("Routing to enhanced: router model")
            return RouteDecision(ModelTier.ENHANCED, "router model", await prepare(ModelTier.ENHANCED))

        if router_task in done:
            reasoning = "router model"
        else:
            reasoning = f"router timed out after {self.settings.timeout}s"
            router_task.add_done_callback(_discard_result)
        logger.info(f"Routing to standard: {reasoning}")
        return RouteDecision(ModelTier.STANDARD, reasoning, await prepare_task)
