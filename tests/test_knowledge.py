"""Tests for the knowledge and personality stores."""

import asyncio

import pytest
from pydantic import ValidationError

from conductor.memory.knowledge import KNOWLEDGE_PATH
from conductor.memory.personality import PERSONALITY_PATH

# ---------------------------------------------------------------------------
# Knowledge
# ---------------------------------------------------------------------------


class TestKnowledge:
    async def test_insert_then_update_same_key(self, knowledge) -> None:
        first, updated = await knowledge.upsert("timezone", "UTC", category="profile")
        assert updated is False
        assert first.source == "manual"

        second, updated = await knowledge.upsert("timezone", "Europe/Madrid", category="profile")
        assert updated is True
        assert second.id == first.id
        assert second.created_at == first.created_at

        entries = await knowledge.list()
        assert len(entries) == 1
        assert entries[0].value == "Europe/Madrid"

    async def test_same_key_different_category_is_separate(self, knowledge) -> None:
        await knowledge.upsert("name", "Ada", category="profile")
        await knowledge.upsert("name", "Atlas", category="project")
        assert len(await knowledge.list()) == 2
        assert [e.value for e in await knowledge.list(category="project")] == ["Atlas"]

    async def test_default_category_and_structured_value(self, knowledge, store) -> None:
        entry, _ = await knowledge.upsert("editor", {"name": "helix", "theme": "dark"})
        assert entry.category == "general"
        raw = await store.read(KNOWLEDGE_PATH)
        assert raw["entries"][0]["value"] == {"name": "helix", "theme": "dark"}

    async def test_source_only_replaced_when_given(self, knowledge) -> None:
        await knowledge.upsert("city", "Lisbon", source="conversation")
        entry, _ = await knowledge.upsert("city", "Porto")
        assert entry.source == "conversation"

    async def test_list_keeps_insertion_order(self, knowledge) -> None:
        for key in ("b", "a", "c"):
            await knowledge.upsert(key, key)
        assert [e.key for e in await knowledge.list()] == ["b", "a", "c"]

    async def test_delete(self, knowledge) -> None:
        entry, _ = await knowledge.upsert("temp", 1)
        assert await knowledge.delete(entry.id) is True
        assert await knowledge.delete(entry.id) is False
        assert await knowledge.list() == []


# ---------------------------------------------------------------------------
# Personality
# ---------------------------------------------------------------------------


class TestPersonality:
    async def test_defaults_when_missing(self, personality) -> None:
        current = await personality.get()
        assert current.name == "Oni"
        assert current.rules
        assert current.updated_at is None

    async def test_update_merges_camel_and_snake_keys(self, personality, store) -> None:
        await personality.update({"name": "Juno", "customInstructions": "Answer in Spanish."})
        updated = await personality.update({"custom_instructions": "Answer in French."})

        assert updated.name == "Juno"
        assert updated.custom_instructions == "Answer in French."
        assert updated.updated_at is not None
        raw = await store.read(PERSONALITY_PATH)
        assert raw["customInstructions"] == "Answer in French."

    async def test_concurrent_updates_all_land(self, personality) -> None:
        await asyncio.gather(
            personality.update({"name": "Juno"}),
            personality.update({"tone": "dry"}),
            personality.update({"style": "terse"}),
            personality.update({"expertise": ["shell"]}),
        )
        current = await personality.get()
        assert (current.name, current.tone, current.style) == ("Juno", "dry", "terse")
        assert current.expertise == ["shell"]

    async def test_unknown_keys_ignored(self, personality) -> None:
        updated = await personality.update({"favouriteColour": "green"})
        assert "favouriteColour" not in updated.to_record()

    async def test_invalid_update_rejected(self, personality) -> None:
        with pytest.raises(ValidationError):
            await personality.update({"rules": "not a list"})
        assert (await personality.get()).name == "Oni"

    async def test_invalid_stored_record_falls_back(self, personality, store) -> None:
        await store.write(PERSONALITY_PATH, {"rules": 42})
        assert (await personality.get()).name == "Oni"
