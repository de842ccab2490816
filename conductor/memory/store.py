"""Memory store with hybrid vector / keyword retrieval.

Memories live in a single ``memories`` record. Each one may carry an
embedding; search prefers cosine similarity when the query can be embedded
and falls back to token overlap otherwise:

- Embeddings configured: memories with vectors are scored by cosine, the
  rest by keyword overlap with a penalty so vectors win ties.
- Embeddings unavailable: every memory is scored by keyword overlap over
  its content and tags.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from conductor.memory.models import (
    Memory,
    MemoryListing,
    MemorySummary,
    ScoredMemory,
    SearchResult,
)
from conductor.memory.similarity import cosine_similarity, keyword_similarity
from conductor.models import now_iso

if TYPE_CHECKING:
    from conductor.memory.embeddings import EmbeddingProvider
    from conductor.runtime import RuntimeConfigStore
    from conductor.storage import DurableStore

logger = logging.getLogger(__name__)

MEMORIES_PATH = "memories"
MIN_RELEVANCE = 0.05
KEYWORD_PENALTY = 0.8


def _empty() -> dict[str, list]:
    return {"memories": []}


class MemoryStore:
    """Stores, searches, lists and deletes memories."""

    def __init__(
        self,
        store: DurableStore,
        embeddings: EmbeddingProvider,
        config: RuntimeConfigStore,
    ) -> None:
        self._store = store
        self._embeddings = embeddings
        self._config = config

    # -- Internal helpers ------------------------------------------------------

    @staticmethod
    def _parse(raw: Any) -> list[Memory]:
        """Validate the raw record. Bad entries are skipped, not fatal."""
        items = raw.get("memories", []) if isinstance(raw, dict) else []
        memories = []
        for item in items if isinstance(items, list) else []:
            try:
                memories.append(Memory.model_validate(item))
            except ValidationError:
                logger.warning("Skipping unreadable memory record: %r", item)
        return memories

    async def _load(self) -> list[Memory]:
        return self._parse(await self._store.read(MEMORIES_PATH, _empty()))

    async def _append(self, new: list[Memory]) -> None:
        def _apply(raw: Any) -> dict[str, Any]:
            memories = self._parse(raw) + new
            return {"memories": [m.to_record() for m in memories]}

        await self._store.update(MEMORIES_PATH, _apply, _empty())

    # -- Write -----------------------------------------------------------------

    async def store(
        self,
        content: str,
        category: str | None = None,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Memory:
        """Embed (best-effort) and persist a memory. Returns the stored memory."""
        config = await self._config.load()
        embedding = await self._embeddings.embed(content, config)
        memory = Memory(
            content=content,
            category=category or "general",
            tags=tags or [],
            metadata=metadata or {},
            embedding=embedding,
        )
        await self._append([memory])
        logger.debug(
            "Stored memory %s [%s] (embedding=%s): %s",
            memory.id,
            memory.category,
            memory.has_embedding,
            content[:80],
        )
        return memory

    async def store_many(self, items: list[dict[str, Any]]) -> int:
        """Store several memories in one write. Items without content are skipped."""
        config = await self._config.load()
        batch: list[Memory] = []
        for item in items:
            content = item.get("content")
            if not content:
                continue
            batch.append(
                Memory(
                    content=content,
                    category=item.get("category") or "general",
                    tags=item.get("tags") or [],
                    metadata=item.get("metadata") or {},
                    embedding=await self._embeddings.embed(content, config),
                )
            )
        if batch:
            await self._append(batch)
        logger.info("Bulk-stored %d memories", len(batch))
        return len(batch)

    # -- Read ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        k: int = 10,
        category: str | None = None,
    ) -> SearchResult:
        """Rank memories against *query* and record the access on each hit."""
        config = await self._config.load()
        memories = await self._load()
        if category:
            memories = [m for m in memories if m.category == category]

        query_embedding = await self._embeddings.embed(query, config)

        scored: list[tuple[float, Memory]]
        if query_embedding:
            scored = []
            for m in memories:
                if m.embedding:
                    scored.append((cosine_similarity(query_embedding, m.embedding), m))
                else:
                    scored.append((keyword_similarity(query, m.content) * KEYWORD_PENALTY, m))
        else:
            scored = [
                (keyword_similarity(query, f"{m.content} {' '.join(m.tags)}"), m)
                for m in memories
            ]

        ranked = sorted(
            ((score, m) for score, m in scored if score > MIN_RELEVANCE),
            key=lambda pair: pair[0],
            reverse=True,
        )[: max(k, 0)]

        results = [
            ScoredMemory(
                id=m.id,
                content=m.content,
                category=m.category,
                tags=m.tags,
                metadata=m.metadata,
                score=round(score, 3),
                created_at=m.created_at,
            )
            for score, m in ranked
        ]
        if results:
            await self._touch({r.id for r in results})

        return SearchResult(
            query=query,
            results=results,
            search_method="vector" if query_embedding else "keyword",
        )

    async def _touch(self, ids: set[str]) -> None:
        """Bump access counters for *ids*."""
        accessed_at = now_iso()

        def _apply(raw: Any) -> dict[str, Any]:
            memories = self._parse(raw)
            for m in memories:
                if m.id in ids:
                    m.access_count += 1
                    m.last_accessed_at = accessed_at
            return {"memories": [m.to_record() for m in memories]}

        await self._store.update(MEMORIES_PATH, _apply, _empty())

    async def list(self, category: str | None = None, limit: int = 50) -> MemoryListing:
        """Newest-first listing with per-category counts across all memories."""
        memories = await self._load()
        categories = dict(Counter(m.category for m in memories))
        if category:
            memories = [m for m in memories if m.category == category]

        newest = sorted(memories, key=lambda m: m.created_at, reverse=True)[:limit]
        return MemoryListing(
            memories=[
                MemorySummary(
                    id=m.id,
                    content=m.content,
                    category=m.category,
                    tags=m.tags,
                    metadata=m.metadata,
                    has_embedding=m.has_embedding,
                    created_at=m.created_at,
                    access_count=m.access_count,
                )
                for m in newest
            ],
            total=len(memories),
            categories=categories,
        )

    # -- Delete ----------------------------------------------------------------

    async def delete(self, memory_id: str) -> bool:
        """Delete a memory by ID. Returns True if something was removed."""
        removed = False

        def _apply(raw: Any) -> dict[str, Any]:
            nonlocal removed
            memories = self._parse(raw)
            kept = [m for m in memories if m.id != memory_id]
            removed = len(kept) != len(memories)
            return {"memories": [m.to_record() for m in kept]}

        await self._store.update(MEMORIES_PATH, _apply, _empty())
        if removed:
            logger.info("Deleted memory: %s", memory_id)
        return removed
