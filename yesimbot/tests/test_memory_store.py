"""
Memory store and memory service tests.

Covers:
- cosine_similarity edge cases (zero vectors, dimension mismatch)
- CRUD, add_many, find/filter
- Similarity search ordering, k, predicates, empty store
- JSON persistence (commit + reload)
- MemoryService core/user/archival operations, update semantics, owner-scoped search
"""

import asyncio
import os
import sys
import tempfile

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from yesimbot.core.memory_store import (
    MemoryItem, MemoryService, MemoryStore, MemoryType,
    cosine_similarity, group_keyword, user_keyword,
)


class KeywordEmbedder:
    """Deterministic embedder: one dimension per known word."""

    VOCAB = ("cat", "dog", "pizza", "rain", "code")

    def __init__(self):
        self.calls = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        words = text.lower().split()
        return [float(sum(1 for w in words if w.startswith(v))) for v in self.VOCAB]


# ── Similarity ───────────────────────────────────────────────

class TestCosine:

    def test_identical(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_mismatched_dimensions(self):
        assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0
        assert cosine_similarity([], []) == 0.0


# ── Store ────────────────────────────────────────────────────

class TestMemoryStore:

    def test_crud(self):
        store = MemoryStore()
        item_id = store.add("cats purr", [1.0, 0.0], MemoryType.KNOWLEDGE, "pets", ["cat"])
        item = store.get(item_id)
        assert item.content == "cats purr"
        assert item.magnitude == pytest.approx(1.0)
        assert item.keywords == {"cat"}

        assert store.update(item_id, "cats nap", [0.0, 2.0], keywords=["nap"])
        item = store.get(item_id)
        assert item.content == "cats nap"
        assert item.magnitude == pytest.approx(2.0)
        assert item.topic == "pets"
        assert item.keywords == {"nap"}

        assert store.delete(item_id)
        assert store.get(item_id) is None
        assert not store.delete(item_id)
        assert not store.update("unknown", "x")

    def test_add_many_length_mismatch(self):
        store = MemoryStore()
        with pytest.raises(ValueError):
            store.add_many([[1.0]], [])

    def test_add_many_and_filter(self):
        store = MemoryStore()
        ids = store.add_many(
            [[1.0, 0.0], [0.0, 1.0]],
            [{"content": "a", "type": MemoryType.CORE}, {"content": "b", "type": MemoryType.USER}],
        )
        assert len(ids) == 2 and len(store) == 2
        assert [i.content for i in store.filter(lambda i: i.type == MemoryType.USER)] == ["b"]
        assert store.find(lambda i: i.content == "a").id == ids[0]
        store.clear()
        assert store.get_all() == []

    def test_search_empty_store(self):
        assert MemoryStore().similarity_search([1.0, 0.0]) == []

    def test_search_order_and_k(self):
        store = MemoryStore()
        store.add("east", [1.0, 0.0])
        store.add("north", [0.0, 1.0])
        store.add("northeast", [1.0, 1.0])
        results = store.similarity_search_with_score([0.0, 1.0], k=2)
        assert [item.content for item, _ in results] == ["north", "northeast"]
        assert results[0][1] == pytest.approx(1.0)

    def test_search_scores_match_pairwise_cosine(self):
        store = MemoryStore()
        vectors = [[3.0, 4.0, 0.0], [0.0, 0.0, 2.0], [1.0, 1.0, 1.0], [0.0, 0.0, 0.0]]
        for n, vector in enumerate(vectors):
            store.add(f"v{n}", vector)
        query = [1.0, 2.0, 0.5]
        results = store.similarity_search_with_score(query, k=4)
        for item, score in results:
            assert score == pytest.approx(cosine_similarity(query, item.embedding))
        scores = [score for _, score in results]
        assert scores == sorted(scores, reverse=True)
        assert results[-1][0].content == "v3"

    def test_search_mismatched_dimension_scores_zero(self):
        store = MemoryStore()
        store.add("short", [1.0])
        store.add("match", [1.0, 0.0])
        results = store.similarity_search_with_score([1.0, 0.0])
        assert [(item.content, score) for item, score in results] == [("match", 1.0), ("short", 0.0)]

    def test_search_predicate(self):
        store = MemoryStore()
        store.add("core", [1.0, 0.0], MemoryType.CORE)
        store.add("user", [1.0, 0.0], MemoryType.USER)
        results = store.similarity_search([1.0, 0.0], predicate=lambda i: i.type == MemoryType.USER)
        assert [i.content for i in results] == ["user"]

    def test_item_round_trip(self):
        item = MemoryItem("x", [3.0, 4.0], MemoryType.GROUP, "t", {"k"})
        again = MemoryItem.from_dict(item.to_dict())
        assert again == item


class TestPersistence:

    @pytest.mark.asyncio
    async def test_commit_and_reload(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "nested", "memory.json")
            store = MemoryStore(path)
            item_id = store.add("remember me", [0.5, 0.5], MemoryType.CORE, "core", ["a"])
            await store.commit()

            reloaded = MemoryStore(path)
            assert len(reloaded) == 1
            item = reloaded.get(item_id)
            assert item.content == "remember me"
            assert item.type is MemoryType.CORE
            assert item.keywords == {"a"}

    @pytest.mark.asyncio
    async def test_concurrent_commits(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "memory.json")
            store = MemoryStore(path)
            for n in range(5):
                store.add(f"m{n}", [float(n), 1.0])
            await asyncio.gather(*(store.commit() for _ in range(4)))
            assert len(MemoryStore(path)) == 5

    @pytest.mark.asyncio
    async def test_commit_without_path_is_noop(self):
        store = MemoryStore()
        store.add("x", [1.0])
        await store.commit()

    def test_corrupt_file_ignored(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "memory.json")
            with open(path, "w") as f:
                f.write("{not json")
            assert len(MemoryStore(path)) == 0


# ── Service ──────────────────────────────────────────────────

class TestMemoryService:

    def _service(self):
        embedder = KeywordEmbedder()
        return MemoryService(MemoryStore(), embedder, default_limit=3), embedder

    @pytest.mark.asyncio
    async def test_core_memory_modify_and_delete(self):
        service, _ = self._service()
        item_id = await service.add_core_memory("I like cats")
        assert service.store.get(item_id).type is MemoryType.CORE

        assert await service.modify_core_memory("I like cats", "I like dogs")
        assert service.store.get(item_id).content == "I like dogs"
        assert await service.modify_core_memory("I like dogs", "")
        assert service.store.get(item_id) is None
        assert not await service.modify_core_memory("missing", "x")

    @pytest.mark.asyncio
    async def test_user_memory_scoped_by_user(self):
        service, _ = self._service()
        item_id = await service.add_user_memory("42", "loves pizza")
        assert user_keyword("42") in service.store.get(item_id).keywords
        assert not await service.modify_user_memory("7", "loves pizza", "hates pizza")
        assert await service.modify_user_memory("42", "loves pizza", "hates pizza")

    @pytest.mark.asyncio
    async def test_update_reembeds_only_on_change(self):
        service, embedder = self._service()
        item_id = await service.add_archival_memory("rain today", MemoryType.KNOWLEDGE, "weather")
        embedder.calls.clear()

        assert await service.update_memory(item_id, "rain today")
        assert embedder.calls == []
        assert await service.update_memory(item_id, "code today")
        assert embedder.calls == ["code today"]
        assert service.store.get(item_id).embedding == [0.0, 0.0, 0.0, 0.0, 1.0]

    @pytest.mark.asyncio
    async def test_archival_search_filters(self):
        service, _ = self._service()
        await service.add_archival_memory("cat facts", MemoryType.KNOWLEDGE, "pets", ["animals"])
        await service.add_archival_memory("dog facts", MemoryType.KNOWLEDGE, "pets", ["animals"])
        await service.add_archival_memory("pizza recipe", MemoryType.KNOWLEDGE, "food")

        assert (await service.search_archival_memory("cat", limit=1)) == ["cat facts"]
        pets = await service.search_archival_memory("pizza", topic="pets", limit=5)
        assert set(pets) == {"cat facts", "dog facts"}
        assert await service.search_archival_memory("cat", keywords=["nothing"]) == []
        assert await service.search_archival_memory("cat", type=MemoryType.CORE) == []

    @pytest.mark.asyncio
    async def test_archival_search_empty_store(self):
        service, embedder = self._service()
        assert await service.search_archival_memory("anything") == []
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_prompt_search_respects_owner(self):
        service, _ = self._service()
        await service.add_core_memory("I am a cat bot")
        await service.add_user_memory("42", "user 42 has a cat")
        await service.add_user_memory("7", "user 7 has a cat")
        await service.add_archival_memory("group cat rules", MemoryType.GROUP, keywords=[group_keyword("g1")])

        for_42 = await service.search("cat", owner_id="42", top_k=10)
        assert set(for_42) == {"I am a cat bot", "user 42 has a cat"}
        for_group = await service.search("cat", owner_id="g1", top_k=10)
        assert set(for_group) == {"I am a cat bot", "group cat rules"}
        assert await service.search("   ", owner_id="42") == []
