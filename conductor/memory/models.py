"""Data models for memories, knowledge entries and personality."""

from typing import Any

from pydantic import Field, computed_field

from conductor.models import Record, new_id, now_iso


class Memory(Record):
    """A stored memory. Content never changes after it is written."""

    id: str = Field(default_factory=lambda: new_id("mem"))
    content: str
    category: str = "general"
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    embedding: list[float] | None = None
    created_at: str = Field(default_factory=now_iso)
    access_count: int = 0
    last_accessed_at: str | None = None

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)


class ScoredMemory(Record):
    """A search hit: the memory (without its vector) plus its score."""

    id: str
    content: str
    category: str
    tags: list[str]
    metadata: dict[str, Any]
    score: float
    created_at: str


class MemorySummary(Record):
    """A memory as shown in listings."""

    id: str
    content: str
    category: str
    tags: list[str]
    metadata: dict[str, Any]
    has_embedding: bool
    created_at: str
    access_count: int


class SearchResult(Record):
    query: str
    results: list[ScoredMemory]
    search_method: str  # "vector" or "keyword"

    @computed_field
    @property
    def count(self) -> int:
        return len(self.results)


class MemoryListing(Record):
    memories: list[MemorySummary]
    total: int
    categories: dict[str, int]


class KnowledgeEntry(Record):
    """A keyed fact. At most one entry exists per (key, category)."""

    id: str = Field(default_factory=lambda: new_id("know"))
    key: str
    value: Any
    category: str = "general"
    source: str = "manual"
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)


class Personality(Record):
    """Identity and tone the assistant presents."""

    name: str = "Oni"
    tone: str = "friendly and professional"
    style: str = "concise but thorough"
    role: str = "AI assistant integrated into the desktop environment"
    rules: list[str] = Field(
        default_factory=lambda: [
            "Be helpful and proactive",
            "Use context from open windows and recent activity when relevant",
            "Remember user preferences and past interactions",
            "Be honest about limitations",
            "Respect user privacy and never share stored data externally",
        ]
    )
    expertise: list[str] = Field(
        default_factory=lambda: [
            "task management",
            "workflow automation",
            "code assistance",
            "data analysis",
            "system navigation",
        ]
    )
    custom_instructions: str = ""
    updated_at: str | None = None
