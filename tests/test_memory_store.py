"""Tests for MemoryStore: storage, hybrid retrieval, listing and deletion."""

import pytest

from conductor.memory.store import MEMORIES_PATH, MemoryStore


def _raw(memory_id: str, category: str, day: str) -> dict:
    return {
        "id": memory_id,
        "content": memory_id,
        "category": category,
        "createdAt": f"{day}T00:00:00+00:00",
    }


class _FakeEmbeddings:
    """Embedding provider backed by a fixed text → vector table."""

    def __init__(self, vectors: dict[str, list[float]] | None = None) -> None:
        self.vectors = vectors or {}

    async def embed(self, text, config):
        return self.vectors.get(text)


@pytest.fixture
def embeddings():
    return _FakeEmbeddings()


@pytest.fixture
def memories(store, embeddings, config_store):
    return MemoryStore(store, embeddings, config_store)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class TestStore:
    async def test_store_without_embedding(self, memories) -> None:
        memory = await memories.store("User likes coffee", category="preference", tags=["drinks"])

        assert memory.id.startswith("mem_")
        assert memory.category == "preference"
        assert memory.has_embedding is False

        listing = await memories.list()
        assert listing.total == 1
        entry = listing.memories[0]
        assert entry.content == "User likes coffee"
        assert entry.tags == ["drinks"]
        assert entry.has_embedding is False

    async def test_store_with_embedding(self, memories, embeddings, store) -> None:
        embeddings.vectors["User likes coffee"] = [0.1, 0.2]
        memory = await memories.store("User likes coffee")

        assert memory.has_embedding is True
        assert memory.category == "general"
        raw = await store.read(MEMORIES_PATH)
        assert raw["memories"][0]["embedding"] == [0.1, 0.2]
        assert raw["memories"][0]["accessCount"] == 0

    async def test_store_many_skips_items_without_content(self, memories) -> None:
        stored = await memories.store_many(
            [
                {"content": "one", "category": "fact"},
                {"category": "fact"},
                {"content": ""},
                {"content": "two", "tags": ["x"]},
            ]
        )
        assert stored == 2
        listing = await memories.list()
        assert sorted(m.content for m in listing.memories) == ["one", "two"]

    async def test_unreadable_entries_are_skipped(self, memories, store) -> None:
        await store.write(
            MEMORIES_PATH,
            {"memories": [{"id": "mem_ok", "content": "kept"}, {"bogus": True}]},
        )
        listing = await memories.list()
        assert [m.id for m in listing.memories] == ["mem_ok"]


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class TestSearch:
    async def test_keyword_mode_finds_preference(self, memories) -> None:
        await memories.store("The user's preferred language is Spanish", category="preference")

        result = await memories.search("what language does the user prefer")

        assert result.search_method == "keyword"
        assert result.count == 1
        hit = result.results[0]
        assert hit.content == "The user's preferred language is Spanish"
        assert hit.score > 0.05
        assert hit.score == pytest.approx(0.333)

    async def test_keyword_mode_matches_tags(self, memories) -> None:
        await memories.store("Standup is at nine", tags=["meetings"])
        result = await memories.search("meetings")
        assert result.count == 1

    async def test_vector_mode_ranks_by_cosine(self, memories, embeddings) -> None:
        embeddings.vectors.update(
            {
                "likes coffee": [1.0, 0.0],
                "likes tea": [0.0, 1.0],
                "hot drink": [0.9, 0.1],
            }
        )
        await memories.store("likes tea")
        await memories.store("likes coffee")

        result = await memories.search("hot drink")

        assert result.search_method == "vector"
        assert [r.content for r in result.results] == ["likes coffee", "likes tea"]
        assert result.results[0].score > result.results[1].score
        assert result.results[0].score == round(result.results[0].score, 3)

    async def test_memories_without_vectors_are_penalized(self, memories, embeddings) -> None:
        # Stored before the query vector exists, so it has no embedding.
        await memories.store("alpha beta")
        embeddings.vectors["alpha beta"] = [1.0, 0.0]
        result = await memories.search("alpha beta")
        assert result.search_method == "vector"
        assert result.results[0].score == pytest.approx(0.8)

    async def test_results_below_floor_are_dropped(self, memories) -> None:
        await memories.store("completely unrelated words")
        result = await memories.search("spanish")
        assert result.count == 0
        assert result.results == []

    async def test_k_limits_results(self, memories) -> None:
        for n in range(5):
            await memories.store(f"project note {n}")
        assert (await memories.search("project note", k=2)).count == 2
        assert (await memories.search("project note", k=0)).count == 0

    async def test_category_filter(self, memories) -> None:
        await memories.store("project deadline friday", category="work")
        await memories.store("project garden weekend", category="home")
        result = await memories.search("project", category="home")
        assert [r.category for r in result.results] == ["home"]

    async def test_search_bumps_access_counters(self, memories, store) -> None:
        await memories.store("User likes coffee")
        await memories.store("Completely different")

        await memories.search("coffee")

        raw = await store.read(MEMORIES_PATH)
        by_content = {m["content"]: m for m in raw["memories"]}
        assert by_content["User likes coffee"]["accessCount"] == 1
        assert by_content["User likes coffee"]["lastAccessedAt"] is not None
        assert by_content["Completely different"]["accessCount"] == 0
        assert by_content["Completely different"]["lastAccessedAt"] is None

    async def test_serialized_result_shape(self, memories) -> None:
        await memories.store("User likes coffee")
        data = (await memories.search("coffee")).to_record()
        assert data["query"] == "coffee"
        assert data["count"] == 1
        assert data["searchMethod"] == "keyword"
        assert "embedding" not in data["results"][0]


# ---------------------------------------------------------------------------
# List / delete
# ---------------------------------------------------------------------------


class TestListAndDelete:
    async def test_list_newest_first_with_category_counts(self, memories, store) -> None:
        await store.write(
            MEMORIES_PATH,
            {
                "memories": [
                    _raw("mem_a", "work", "2026-01-01"),
                    _raw("mem_b", "home", "2026-03-01"),
                    _raw("mem_c", "work", "2026-02-01"),
                ]
            },
        )

        listing = await memories.list()
        assert [m.id for m in listing.memories] == ["mem_b", "mem_c", "mem_a"]
        assert listing.categories == {"work": 2, "home": 1}

        work = await memories.list(category="work", limit=1)
        assert [m.id for m in work.memories] == ["mem_c"]
        assert work.total == 2
        assert work.categories == {"work": 2, "home": 1}

    async def test_delete(self, memories) -> None:
        memory = await memories.store("temporary")
        assert await memories.delete(memory.id) is True
        assert await memories.delete(memory.id) is False
        assert (await memories.list()).total == 0
