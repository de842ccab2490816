"""Tests for instruction assembly."""

from unittest.mock import AsyncMock

from conductor.conversations.models import AssistantMessage, UserMessage
from conductor.llm.prompt import (
    CONTINUATION_ADDENDUM,
    OPERATING_RULES,
    build_instructions,
    format_knowledge,
    latest_user_message,
)
from conductor.memory.models import KnowledgeEntry, Personality, ScoredMemory, SearchResult


def _memory_store(*contents: str) -> AsyncMock:
    store = AsyncMock()
    store.search.return_value = SearchResult(
        query="q",
        search_method="keyword",
        results=[
            ScoredMemory(
                id=f"mem_{n}",
                content=content,
                category="preference",
                tags=[],
                metadata={},
                score=0.5,
                created_at="2026-01-01T00:00:00+00:00",
            )
            for n, content in enumerate(contents)
        ],
    )
    return store


async def test_sections_in_order() -> None:
    knowledge = [KnowledgeEntry(key="timezone", value="UTC", category="profile")]
    memories = _memory_store("The user's preferred language is Spanish")

    text = await build_instructions(
        Personality(custom_instructions="Prefer metric units."),
        knowledge,
        "what language do I like?",
        [],
        "activeWindow: Terminal",
        memories,
        continuation=True,
    )

    markers = [
        "You are Oni, AI assistant integrated into the desktop environment.",
        "## How You Work",
        "## Rules",
        "Expertise: ",
        "Prefer metric units.",
        "## Known Facts\n[profile] timezone: UTC",
        "## Relevant Memories\n- [preference] The user's preferred language is Spanish",
        "## Live Environment\nactiveWindow: Terminal",
        "## Agent Loop: Tool Results Received",
    ]
    positions = [text.index(marker) for marker in markers]
    assert positions == sorted(positions)
    assert "respond_to_user" in text
    memories.search.assert_awaited_once_with("what language do I like?", k=10)


async def test_empty_sections_omitted() -> None:
    text = await build_instructions(Personality(), [], "hello", [], None)
    assert "## Known Facts" not in text
    assert "## Relevant Memories" not in text
    assert "## Live Environment" not in text
    assert "## Agent Loop" not in text
    assert OPERATING_RULES in text


async def test_no_memories_section_when_search_finds_nothing() -> None:
    text = await build_instructions(Personality(), [], "hello", [], "  ", _memory_store())
    assert "## Relevant Memories" not in text
    assert "## Live Environment" not in text


async def test_memory_failure_is_tolerated() -> None:
    store = AsyncMock()
    store.search.side_effect = RuntimeError("index offline")
    text = await build_instructions(Personality(), [], "hello", [], None, store)
    assert "## Relevant Memories" not in text
    assert text.startswith("You are Oni")


async def test_continuation_queries_latest_user_message() -> None:
    history = [
        UserMessage(content="first question"),
        AssistantMessage(content="answer"),
        UserMessage(content="open my notes"),
    ]
    store = _memory_store()
    await build_instructions(Personality(), [], "", history, None, store, continuation=True)
    store.search.assert_awaited_once_with("open my notes", k=10)


async def test_continuation_addendum_names_escape_hatch(monkeypatch) -> None:
    monkeypatch.setattr("conductor.config.settings.escape_hatch_tool", "reply_now")
    text = await build_instructions(Personality(), [], "", [], None, continuation=True)
    assert text.endswith(CONTINUATION_ADDENDUM.format(escape_hatch="reply_now"))


async def test_workspace_files_follow_preamble(tmp_path) -> None:
    (tmp_path / "SOUL.md").write_text("Soul text\n")
    (tmp_path / "USER.md").write_text("User profile text")
    text = await build_instructions(Personality(), [], "hi", [], None, workspace_dir=tmp_path)
    assert text.index("You are Oni") < text.index("Soul text") < text.index("User profile text")
    assert text.index("User profile text") < text.index("## How You Work")


async def test_personality_fields_used() -> None:
    personality = Personality(
        name="Juno", role="research aide", tone="warm", style="terse", rules=[], expertise=[]
    )
    text = await build_instructions(personality, [], "hi", [], None)
    assert text.startswith("You are Juno, research aide.\nTone: warm. Style: terse.")
    assert "## Rules" not in text
    assert "Expertise:" not in text


def test_format_knowledge_limits_and_serializes() -> None:
    entries = [
        KnowledgeEntry(key="editor", value={"name": "helix"}),
        KnowledgeEntry(key="city", value="Lisbon", category="profile"),
        KnowledgeEntry(key="extra", value="dropped"),
    ]
    assert format_knowledge(entries, 2) == (
        '[general] editor: {"name": "helix"}\n[profile] city: Lisbon'
    )
    assert format_knowledge(entries, 0) == ""


def test_latest_user_message() -> None:
    assert latest_user_message([]) == ""
    history = [UserMessage(content="a"), AssistantMessage(content="b")]
    assert latest_user_message(history) == "a"
