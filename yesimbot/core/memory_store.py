"""
Memory Store — embedding vectors + metadata with cosine-similarity search.

Items are owned by the store; callers reference them by id. The store is
kept in memory and written to a JSON file on `commit()` (atomic write).

MemoryService layers the core / user / archival memory operations on top
of the store, embedding content through an external `Embedder`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol

import numpy as np

logger = logging.getLogger(__name__)


class MemoryType(str, Enum):
    CORE = "core"
    USER = "user"
    GROUP = "group"
    KNOWLEDGE = "knowledge"


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


def magnitude(vector: Iterable[float]) -> float:
    return float(np.linalg.norm(np.asarray(list(vector), dtype=np.float64)))


def cosine_similarity(
    a: list[float],
    b: list[float],
    mag_a: Optional[float] = None,
    mag_b: Optional[float] = None,
) -> float:
    """Cosine similarity; 0.0 for zero vectors or mismatched dimensions."""
    if not len(a) or not len(b) or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    mag_a = np.linalg.norm(va) if mag_a is None else mag_a
    mag_b = np.linalg.norm(vb) if mag_b is None else mag_b
    if mag_a == 0 or mag_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (mag_a * mag_b))


@dataclass
class MemoryItem:
    """A stored embedding with its metadata."""
    content: str
    embedding: list[float]
    type: MemoryType = MemoryType.KNOWLEDGE
    topic: str = ""
    keywords: set[str] = field(default_factory=set)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    magnitude: float = -1.0
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def __post_init__(self):
        self.type = MemoryType(self.type)
        self.keywords = set(self.keywords)
        if self.magnitude < 0:
            self.magnitude = magnitude(self.embedding)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "embedding": self.embedding,
            "magnitude": self.magnitude,
            "type": self.type.value,
            "topic": self.topic,
            "keywords": sorted(self.keywords),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> MemoryItem:
        return cls(
            id=data["id"],
            content=data["content"],
            embedding=list(data.get("embedding", [])),
            magnitude=data.get("magnitude", -1.0),
            type=data.get("type", MemoryType.KNOWLEDGE.value),
            topic=data.get("topic", ""),
            keywords=set(data.get("keywords", [])),
            created_at=data.get("created_at", time.time()),
            updated_at=data.get("updated_at", time.time()),
        )


ItemFilter = Callable[[MemoryItem], bool]


class MemoryStore:
    """In-memory vector collection with JSON persistence.

    Storage layout:
        {path}  — {"version": 1, "items": [...]}
    """

    def __init__(self, path: str = ""):
        self._items: dict[str, MemoryItem] = {}
        self._path = path
        self._commit_lock = asyncio.Lock()
        self.load()

    def __len__(self) -> int:
        return len(self._items)

    # ── CRUD ───────────────────────────────────────────────

    def get(self, item_id: str) -> Optional[MemoryItem]:
        return self._items.get(item_id)

    def get_all(self) -> list[MemoryItem]:
        return list(self._items.values())

    def add(
        self,
        content: str,
        embedding: list[float],
        type: MemoryType = MemoryType.KNOWLEDGE,
        topic: str = "",
        keywords: Iterable[str] = (),
    ) -> str:
        item = MemoryItem(content=content, embedding=list(embedding), type=type,
                          topic=topic, keywords=set(keywords))
        self._items[item.id] = item
        logger.debug(f"Memory added: [{item.type.value}] {item.id}")
        return item.id

    def add_many(self, embeddings: list[list[float]], metadatas: list[dict]) -> list[str]:
        if len(embeddings) != len(metadatas):
            raise ValueError("embeddings and metadatas must have the same length")
        return [self.add(embedding=e, **m) for e, m in zip(embeddings, metadatas)]

    def update(
        self,
        item_id: str,
        content: str,
        embedding: Optional[list[float]] = None,
        topic: Optional[str] = None,
        keywords: Optional[Iterable[str]] = None,
    ) -> bool:
        """Mutate an item in place. Returns False if the id is unknown."""
        item = self._items.get(item_id)
        if item is None:
            return False
        item.content = content
        if embedding is not None:
            item.embedding = list(embedding)
            item.magnitude = magnitude(item.embedding)
        if topic:
            item.topic = topic
        if keywords is not None:
            item.keywords = set(keywords)
        item.updated_at = time.time()
        return True

    def delete(self, item_id: str) -> bool:
        return self._items.pop(item_id, None) is not None

    def clear(self) -> None:
        self._items.clear()

    def find(self, predicate: ItemFilter) -> Optional[MemoryItem]:
        for item in self._items.values():
            if predicate(item):
                return item
        return None

    def filter(self, predicate: ItemFilter) -> list[MemoryItem]:
        return [item for item in self._items.values() if predicate(item)]

    # ── Search ─────────────────────────────────────────────

    def similarity_search_with_score(
        self,
        query: list[float],
        k: int = 5,
        predicate: Optional[ItemFilter] = None,
    ) -> list[tuple[MemoryItem, float]]:
        """The k most similar items, best first.

        Items whose embedding dimension differs from the query score 0.0.
        """
        if not self._items or k <= 0:
            return []
        candidates = [item for item in self._items.values() if predicate is None or predicate(item)]
        if not candidates:
            return []
        q = np.asarray(query, dtype=np.float64)
        scores = np.zeros(len(candidates))
        rows = [i for i, item in enumerate(candidates) if q.size and len(item.embedding) == q.size]
        if rows:
            matrix = np.array([candidates[i].embedding for i in rows], dtype=np.float64)
            norms = np.array([candidates[i].magnitude for i in rows]) * np.linalg.norm(q)
            dots = matrix @ q
            scores[rows] = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
        # stable so equal scores keep insertion order
        order = np.argsort(-scores, kind="stable")[:k]
        return [(candidates[i], float(scores[i])) for i in order]

    def similarity_search(
        self,
        query: list[float],
        k: int = 5,
        predicate: Optional[ItemFilter] = None,
    ) -> list[MemoryItem]:
        return [item for item, _ in self.similarity_search_with_score(query, k, predicate)]

    # ── Persistence ────────────────────────────────────────

    async def commit(self) -> None:
        """Persist the current items. Concurrent commits are serialized."""
        if not self._path:
            return
        async with self._commit_lock:
            # snapshot before yielding so concurrent mutations land in the next commit
            data = {"version": 1, "items": [i.to_dict() for i in self._items.values()]}
            await asyncio.to_thread(self._write, data)
            logger.debug(f"Memory store committed: {len(data['items'])} items")

    def _write(self, data: dict) -> None:
        dir_name = os.path.dirname(os.path.abspath(self._path))
        os.makedirs(dir_name, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=dir_name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f)
            os.replace(tmp_path, self._path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def load(self) -> None:
        if not self._path or not os.path.exists(self._path):
            return
        try:
            with open(self._path, "r") as f:
                data = json.load(f)
            for raw in data.get("items", []):
                item = MemoryItem.from_dict(raw)
                self._items[item.id] = item
            logger.debug(f"Memory store loaded: {len(self._items)} items")
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Failed to load memory store: {e}")


def user_keyword(user_id: str) -> str:
    return f"User:{user_id}"


def group_keyword(group_id: str) -> str:
    return f"Group:{group_id}"


class MemoryService:
    """Core / user / archival memory operations over a MemoryStore."""

    CORE_TOPIC = "core"
    USER_TOPIC = "user"

    def __init__(self, store: MemoryStore, embedder: Embedder, default_limit: int = 5):
        self.store = store
        self.embedder = embedder
        self.default_limit = default_limit

    async def add_core_memory(self, content: str) -> str:
        embedding = await self.embedder.embed(content)
        return self.store.add(content, embedding, MemoryType.CORE, self.CORE_TOPIC)

    async def modify_core_memory(self, old_content: str, new_content: str) -> bool:
        item = self.store.find(lambda i: i.type == MemoryType.CORE and i.content == old_content)
        if item is None:
            return False
        return await self.update_memory(item.id, new_content)

    async def add_user_memory(self, user_id: str, content: str) -> str:
        embedding = await self.embedder.embed(content)
        return self.store.add(content, embedding, MemoryType.USER, self.USER_TOPIC,
                              [user_keyword(user_id)])

    async def modify_user_memory(self, user_id: str, old_content: str, new_content: str) -> bool:
        keyword = user_keyword(user_id)
        item = self.store.find(lambda i: i.content == old_content and keyword in i.keywords)
        if item is None:
            return False
        return await self.update_memory(item.id, new_content)

    async def add_archival_memory(
        self,
        content: str,
        type: MemoryType = MemoryType.KNOWLEDGE,
        topic: str = "",
        keywords: Iterable[str] = (),
    ) -> str:
        embedding = await self.embedder.embed(content)
        return self.store.add(content, embedding, MemoryType(type), topic, keywords)

    async def update_memory(self, item_id: str, new_content: str) -> bool:
        """Replace an item's content; an empty new content deletes it.
        The embedding is recomputed only if the content changed."""
        item = self.store.get(item_id)
        if item is None:
            return False
        if not new_content.strip():
            return self.store.delete(item_id)
        if new_content == item.content:
            return self.store.update(item_id, new_content)
        embedding = await self.embedder.embed(new_content)
        return self.store.update(item_id, new_content, embedding)

    async def search_archival_memory(
        self,
        query: str,
        type: Optional[MemoryType] = None,
        topic: str = "",
        keywords: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
    ) -> list[str]:
        if not len(self.store):
            return []
        wanted = set(keywords or ())

        def matches(item: MemoryItem) -> bool:
            if type is not None and item.type != MemoryType(type):
                return False
            if topic and item.topic != topic:
                return False
            if wanted and not (wanted & item.keywords):
                return False
            return True

        embedding = await self.embedder.embed(query)
        items = self.store.similarity_search(embedding, limit or self.default_limit, matches)
        return [item.content for item in items]

    async def search(self, query_text: str, owner_id: str = "", top_k: Optional[int] = None) -> list[str]:
        """Prompt-enrichment search: shared memories plus those owned by `owner_id`."""
        if not len(self.store) or not query_text.strip():
            return []
        owner_keys = {user_keyword(owner_id), group_keyword(owner_id)} if owner_id else set()

        def visible(item: MemoryItem) -> bool:
            if item.type in (MemoryType.CORE, MemoryType.KNOWLEDGE):
                return True
            return bool(owner_keys & item.keywords)

        embedding = await self.embedder.embed(query_text)
        items = self.store.similarity_search(embedding, top_k or self.default_limit, visible)
        return [item.content for item in items]
