"""
Prompt Context — bounded sliding window of conversation messages.

When the window is full, the oldest message is moved to a recall buffer.
The recall buffer is write-only for now; nothing replays it. It keeps at
most `recall_limit` messages, dropping the oldest.
"""

from __future__ import annotations
import logging
from collections import deque
from typing import Iterable, Optional

from .models import ImagePart, Message, TextPart
from .prompt_builder import merge_memories

logger = logging.getLogger(__name__)

RESOLVE_OK = "Resolve OK"
IMAGE_PLACEHOLDER = "[image]"


class PromptContext:
    """
    Holds the messages sent to the model each turn.

    Outbound order:
      system prompt (with memories) → optional "Resolve OK" → window
    """

    def __init__(
        self,
        capacity: int = 20,
        multi_turn: bool = True,
        send_resolve_ok: bool = False,
        recall_limit: int = 100,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.multi_turn = multi_turn
        self.send_resolve_ok = send_resolve_ok
        self._window: list[Message] = []
        self._recall: deque[Message] = deque(maxlen=max(recall_limit, 0))

    def __len__(self) -> int:
        return len(self._window)

    @property
    def messages(self) -> list[Message]:
        return list(self._window)

    @property
    def recall(self) -> list[Message]:
        return list(self._recall)

    def add(self, message: Message) -> None:
        while len(self._window) >= self.capacity:
            self._recall.append(self._window.pop(0))
        self._window.append(message)

    def extend(self, messages: Iterable[Message]) -> None:
        for message in messages:
            self.add(message)

    def clear(self) -> None:
        self._window.clear()

    def set_chat_history(self, history: list[Message]) -> None:
        """
        Replace the window with chat history.

        Multi-turn mode keeps each message; otherwise every text and image
        part is merged into a single user message, joining adjacent text
        parts with a newline.
        """
        self._window = []
        if self.multi_turn:
            self.extend(history)
            return

        parts: list = []
        for message in history:
            for part in message.parts:
                if isinstance(part, TextPart) and parts and isinstance(parts[-1], TextPart):
                    parts[-1] = TextPart(parts[-1].text + "\n" + part.text)
                elif isinstance(part, (TextPart, ImagePart)):
                    parts.append(part)
        if parts:
            self.add(Message.user(parts))

    def build_messages(
        self,
        system_prompt: str,
        memories: Optional[list[str]] = None,
        vision: bool = True,
    ) -> list[Message]:
        """Assemble the outbound message list for one model call."""
        messages = [Message.system(merge_memories(system_prompt, memories or []))]
        if self.send_resolve_ok:
            messages.append(Message.assistant(RESOLVE_OK))
        for message in self._window:
            messages.append(message if vision else strip_images(message))
        return messages


def strip_images(message: Message) -> Message:
    """Replace image parts with a text placeholder for adapters without vision."""
    if isinstance(message.content, str) or not message.has_images:
        return message
    parts = [TextPart(IMAGE_PLACEHOLDER) if isinstance(p, ImagePart) else p for p in message.content]
    return Message(
        role=message.role,
        content=parts,
        tool_call_id=message.tool_call_id,
        tool_calls=message.tool_calls,
        prefix=message.prefix,
    )
