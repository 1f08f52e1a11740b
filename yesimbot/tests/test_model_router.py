"""
Adaptive router tests.

Covers:
- Disabled routing and missing router model default to standard
- Heuristics: code fences go enhanced, short messages go standard
- Router model says enhanced: speculative standard prep discarded
- Router model says standard: speculative prep reused, prepare called once
- Router timeout: standard prep reused, late answer ignored
- Router failure degrades to standard
- AdapterClassifier answer parsing
"""

import asyncio
import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from yesimbot.core.model_router import AdapterClassifier, AdaptiveRouter, ModelTier, RouterSettings
from yesimbot.core.models import Message, Response


LONG_TEXT = "please explain in detail how the scheduler decides which of the many tasks runs next"


class PrepareRecorder:

    def __init__(self):
        self.tiers = []

    async def __call__(self, tier: ModelTier):
        self.tiers.append(tier)
        return f"prepared:{tier.value}"


def _router(classifier=None, **kwargs) -> AdaptiveRouter:
    settings = RouterSettings(enabled=True, **kwargs)
    return AdaptiveRouter(settings, classifier)


class TestShortCircuits:

    @pytest.mark.asyncio
    async def test_disabled(self):
        prepare = PrepareRecorder()
        classifier = AsyncMock(return_value=True)
        decision = await AdaptiveRouter(RouterSettings(enabled=False), classifier).route(LONG_TEXT, prepare)
        assert decision.tier is ModelTier.STANDARD
        assert decision.prepared == "prepared:standard"
        classifier.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_code_fence_goes_enhanced(self):
        prepare = PrepareRecorder()
        classifier = AsyncMock(return_value=False)
        decision = await _router(classifier).route("fix this\n```py\nx=1\n```", prepare)
        assert decision.tier is ModelTier.ENHANCED
        assert prepare.tiers == [ModelTier.ENHANCED]
        classifier.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_short_message_goes_standard(self):
        prepare = PrepareRecorder()
        decision = await _router(AsyncMock(return_value=True)).route("hi there", prepare)
        assert decision.tier is ModelTier.STANDARD
        assert decision.reasoning == "short message"

    @pytest.mark.asyncio
    async def test_heuristics_skipped_without_latency_optimization(self):
        prepare = PrepareRecorder()
        classifier = AsyncMock(return_value=False)
        decision = await _router(classifier, latency_optimization=False).route("hi", prepare)
        assert decision.tier is ModelTier.STANDARD
        classifier.assert_awaited_once_with("hi")

    @pytest.mark.asyncio
    async def test_no_classifier(self):
        prepare = PrepareRecorder()
        decision = await _router(None).route(LONG_TEXT, prepare)
        assert decision.tier is ModelTier.STANDARD
        assert prepare.tiers == [ModelTier.STANDARD]


class TestRouterModel:

    @pytest.mark.asyncio
    async def test_enhanced(self):
        prepare = PrepareRecorder()
        decision = await _router(AsyncMock(return_value=True)).route(LONG_TEXT, prepare)
        assert decision.tier is ModelTier.ENHANCED
        assert decision.prepared == "prepared:enhanced"
        assert ModelTier.ENHANCED in prepare.tiers

    @pytest.mark.asyncio
    async def test_standard_reuses_speculative_prep(self):
        prepare = PrepareRecorder()
        decision = await _router(AsyncMock(return_value=False)).route(LONG_TEXT, prepare)
        assert decision.tier is ModelTier.STANDARD
        assert decision.prepared == "prepared:standard"
        assert prepare.tiers == [ModelTier.STANDARD]

    @pytest.mark.asyncio
    async def test_timeout_uses_standard_and_ignores_late_answer(self):
        prepare = PrepareRecorder()
        finished = asyncio.Event()

        async def slow_classifier(text):
            await asyncio.sleep(0.2)
            finished.set()
            return True

        decision = await _router(slow_classifier, timeout=0.01).route(LONG_TEXT, prepare)
        assert decision.tier is ModelTier.STANDARD
        assert "timed out" in decision.reasoning
        assert decision.prepared == "prepared:standard"

        # the abandoned router call still completes, and nothing acts on it
        await asyncio.wait_for(finished.wait(), timeout=1.0)
        await asyncio.sleep(0)
        assert prepare.tiers == [ModelTier.STANDARD]

    @pytest.mark.asyncio
    async def test_router_failure_degrades(self):
        prepare = PrepareRecorder()
        classifier = AsyncMock(side_effect=RuntimeError("router down"))
        decision = await _router(classifier).route(LONG_TEXT, prepare)
        assert decision.tier is ModelTier.STANDARD
        assert prepare.tiers == [ModelTier.STANDARD]

    def test_decision_to_dict(self):
        assert _router().heuristic("short").to_dict() == {"tier": "standard", "reasoning": "short message"}


class TestAdapterClassifier:

    def _adapter(self, text: str):
        adapter = MagicMock()
        adapter.chat = AsyncMock(return_value=Response(model="r", message=Message.assistant(text)))
        adapter.strip_reasoning = lambda t: t
        return adapter

    @pytest.mark.asyncio
    async def test_enhanced_answer(self):
        adapter = self._adapter("Enhanced.")
        assert await AdapterClassifier(adapter)("question") is True
        messages = adapter.chat.await_args.args[0]
        assert [m.role for m in messages] == ["system", "user"]
        assert messages[1].text == "question"

    @pytest.mark.asyncio
    async def test_standard_answer(self):
        assert await AdapterClassifier(self._adapter("standard"))("question") is False
