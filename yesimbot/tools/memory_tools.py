"""
Memory Tools — let the model write and search its own memory.

Tools:
  add_core_memory        — append a core memory
  modify_core_memory     — replace (or, with empty new content, delete) a core memory
  add_user_memory        — append a memory about a user
  modify_user_memory     — replace (or delete) a memory about a user
  add_archival_memory    — store typed, topical knowledge
  search_archival_memory — semantic search over archival memory
"""

from __future__ import annotations

from typing import Any, Optional

from ..core.memory_store import MemoryService, MemoryType
from ..core.tool_registry import Tool

_CONTENT = {"type": "string", "description": "Content to write to the memory. All unicode (including emojis) is supported."}
_OLD_CONTENT = {"type": "string", "description": "The current content of the memory."}
_NEW_CONTENT = {"type": "string", "description": "The new content of the memory. Use an empty string to delete it."}
_USER_ID = {"type": "string", "description": "The user id the memory is about."}
_TYPE = {
    "type": "string",
    "enum": [t.value for t in MemoryType],
    "description": "The type of memory.",
}
_TOPIC = {"type": "string", "description": "The topic of the memory."}
_KEYWORDS = {"type": "array", "items": {"type": "string"}, "description": "Keywords associated with the memory."}


def _keywords(value: Any) -> list[str]:
    # textual tool calls may pass a comma-separated string
    if isinstance(value, str):
        return [k.strip() for k in value.split(",") if k.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(k) for k in value]
    return []


def _memory_type(value: Any, default: Optional[MemoryType]) -> Optional[MemoryType]:
    try:
        return MemoryType(str(value).strip().lower()) if value else default
    except ValueError:
        return default


def build_memory_tools(service: MemoryService) -> list[Tool]:
    """Tool records bound to a MemoryService, ready to register."""

    async def add_core_memory(params: dict) -> str:
        item_id = await service.add_core_memory(params["content"])
        await service.store.commit()
        return f"Core memory added: {item_id}"

    async def modify_core_memory(params: dict) -> str:
        ok = await service.modify_core_memory(params["oldContent"], params.get("newContent", ""))
        await service.store.commit()
        return "Core memory updated." if ok else "No core memory with that content."

    async def add_user_memory(params: dict) -> str:
        item_id = await service.add_user_memory(str(params["userId"]), params["content"])
        await service.store.commit()
        return f"User memory added: {item_id}"

    async def modify_user_memory(params: dict) -> str:
        ok = await service.modify_user_memory(
            str(params["userId"]), params["oldContent"], params.get("newContent", ""),
        )
        await service.store.commit()
        return "User memory updated." if ok else "No memory with that content for this user."

    async def add_archival_memory(params: dict) -> str:
        item_id = await service.add_archival_memory(
            params["content"],
            _memory_type(params.get("type"), MemoryType.KNOWLEDGE),
            params.get("topic", ""),
            _keywords(params.get("keywords")),
        )
        await service.store.commit()
        return f"Archival memory added: {item_id}"

    async def search_archival_memory(params: dict) -> str:
        results = await service.search_archival_memory(
            params["query"],
            type=_memory_type(params.get("type"), None),
            topic=params.get("topic", ""),
            keywords=_keywords(params.get("keywords")) or None,
            limit=int(params.get("limit") or service.default_limit),
        )
        if not results:
            return "No matching memories."
        return "\n".join(f"- {r}" for r in results)

    return [
        Tool("add_core_memory", "Append to the contents of core memory.",
             add_core_memory, {"content": _CONTENT}),
        Tool("modify_core_memory",
             "Replace the contents of core memory. To delete a memory, use an empty string for newContent.",
             modify_core_memory, {"oldContent": _OLD_CONTENT, "newContent": _NEW_CONTENT}),
        Tool("add_user_memory", "Append to the contents of user memory.",
             add_user_memory, {"userId": _USER_ID, "content": _CONTENT}),
        Tool("modify_user_memory",
             "Replace the contents of user memory. To delete a memory, use an empty string for newContent.",
             modify_user_memory, {"userId": _USER_ID, "oldContent": _OLD_CONTENT, "newContent": _NEW_CONTENT}),
        Tool("add_archival_memory",
             "Add to archival memory. Phrase the content so it can be easily queried later.",
             add_archival_memory,
             {"content": _CONTENT, "type": {**_TYPE, "default": "knowledge"},
              "topic": {**_TOPIC, "default": ""}, "keywords": {**_KEYWORDS, "default": []}}),
        Tool("search_archival_memory", "Search archival memory using semantic (embedding-based) search.",
             search_archival_memory,
             {"query": {"type": "string", "description": "String to search for."},
              "type": {**_TYPE, "default": ""}, "topic": {**_TOPIC, "default": ""},
              "keywords": {**_KEYWORDS, "default": []},
              "limit": {"type": "integer", "description": "Number of results to return.", "default": 5}}),
    ]
