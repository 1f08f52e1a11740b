"""
Prompt context and system prompt tests.

Covers:
- Sliding window eviction into the bounded recall buffer
- set_chat_history in multi-turn and single-turn modes
- Outbound message order (system, Resolve OK, window)
- Vision fallback placeholder
- Memory merge into the system prompt
- PromptBuilder placeholders (output schema, function prompt)
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from yesimbot.core.models import ImagePart, Message, TextPart
from yesimbot.core.prompt_builder import (
    MEMORY_HEADER, NO_FUNCTIONS, PromptBuilder, format_memories, merge_memories, output_schema,
)
from yesimbot.core.prompt_context import IMAGE_PLACEHOLDER, RESOLVE_OK, PromptContext, strip_images
from yesimbot.core.structured_format import ReplyFormat


# ── Window ───────────────────────────────────────────────────

class TestWindow:

    def test_eviction_moves_to_recall(self):
        ctx = PromptContext(capacity=2)
        ctx.extend([Message.user("a"), Message.user("b"), Message.user("c")])
        assert [m.text for m in ctx.messages] == ["b", "c"]
        assert [m.text for m in ctx.recall] == ["a"]

    def test_recall_buffer_is_bounded(self):
        ctx = PromptContext(capacity=1, recall_limit=3)
        ctx.extend([Message.user(str(n)) for n in range(10)])
        assert [m.text for m in ctx.messages] == ["9"]
        assert [m.text for m in ctx.recall] == ["6", "7", "8"]

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            PromptContext(capacity=0)

    def test_clear(self):
        ctx = PromptContext()
        ctx.add(Message.user("x"))
        ctx.clear()
        assert len(ctx) == 0


class TestChatHistory:

    def test_multi_turn_keeps_messages(self):
        ctx = PromptContext(multi_turn=True)
        ctx.add(Message.user("old"))
        ctx.set_chat_history([Message.user("a"), Message.assistant("b")])
        assert [(m.role, m.text) for m in ctx.messages] == [("user", "a"), ("assistant", "b")]

    def test_single_turn_merges_parts(self):
        ctx = PromptContext(multi_turn=False)
        image = ImagePart("https://x/cat.png")
        ctx.set_chat_history([
            Message.user("line one"),
            Message.user([TextPart("line two"), image, TextPart("line three")]),
            Message.user("line four"),
        ])
        assert len(ctx) == 1
        merged = ctx.messages[0]
        assert merged.role == "user"
        assert [p.text if isinstance(p, TextPart) else p for p in merged.parts] == [
            "line one\nline two", image, "line three\nline four",
        ]

    def test_single_turn_empty_history(self):
        ctx = PromptContext(multi_turn=False)
        ctx.set_chat_history([])
        assert len(ctx) == 0


class TestBuildMessages:

    def test_order_with_resolve_ok(self):
        ctx = PromptContext(send_resolve_ok=True)
        ctx.add(Message.user("hi"))
        messages = ctx.build_messages("SYSTEM")
        assert [(m.role, m.text) for m in messages] == [
            ("system", "SYSTEM"), ("assistant", RESOLVE_OK), ("user", "hi"),
        ]

    def test_memories_merged(self):
        ctx = PromptContext()
        messages = ctx.build_messages("Rules.\n{{memory}}", ["likes cats"])
        assert messages[0].text == f"Rules.\n{MEMORY_HEADER}\n- likes cats"

    def test_vision_fallback(self):
        ctx = PromptContext()
        ctx.add(Message.user([TextPart("look"), ImagePart("https://x/a.png")]))
        stripped = ctx.build_messages("S", vision=False)[1]
        assert not stripped.has_images
        assert stripped.text == f"look\n{IMAGE_PLACEHOLDER}"
        kept = ctx.build_messages("S", vision=True)[1]
        assert kept.has_images

    def test_strip_images_passthrough(self):
        message = Message.user("plain")
        assert strip_images(message) is message


# ── System prompt ────────────────────────────────────────────

class TestMemoryMerge:

    def test_placeholder_removed_without_memories(self):
        assert merge_memories("A{{memory}}B", []) == "AB"

    def test_appended_without_placeholder(self):
        assert merge_memories("Rules.", ["m1", "m2"]) == f"Rules.\n\n{MEMORY_HEADER}\n- m1\n- m2"

    def test_unchanged_without_placeholder_or_memories(self):
        assert merge_memories("Rules.", []) == "Rules."

    def test_format_empty(self):
        assert format_memories([]) == ""


class TestPromptBuilder:

    TEMPLATE = "{{outputSchema}}\n---\n{{functionPrompt}}\n---\n{{memory}}"

    def test_output_schema_names_format(self):
        assert "XML" in output_schema(ReplyFormat.XML)
        assert "nextReplyIn" in output_schema(ReplyFormat.JSON)

    def test_native_adapter_gets_no_function_prompt(self):
        prompt = PromptBuilder(self.TEMPLATE, "json").build(None)
        assert "{{functionPrompt}}" not in prompt
        assert "Available functions" not in prompt
        assert "{{memory}}" in prompt

    def test_textual_function_prompt(self):
        prompt = PromptBuilder(self.TEMPLATE, "xml").build("search:\n  description: find things")
        assert "<functions>" in prompt
        assert "Available functions:\nsearch:" in prompt

    def test_no_functions_registered(self):
        prompt = PromptBuilder(self.TEMPLATE, "json").build("")
        assert NO_FUNCTIONS in prompt
