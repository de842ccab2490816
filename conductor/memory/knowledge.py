"""Knowledge store: keyed facts, one entry per (key, category)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from conductor.memory.models import KnowledgeEntry
from conductor.models import now_iso

if TYPE_CHECKING:
    from conductor.storage import DurableStore

logger = logging.getLogger(__name__)

KNOWLEDGE_PATH = "knowledge"


def _empty() -> dict[str, list]:
    return {"entries": []}


def _parse(raw: Any) -> list[KnowledgeEntry]:
    items = raw.get("entries", []) if isinstance(raw, dict) else []
    entries = []
    for item in items if isinstance(items, list) else []:
        try:
            entries.append(KnowledgeEntry.model_validate(item))
        except ValidationError:
            logger.warning("Skipping unreadable knowledge record: %r", item)
    return entries


def _dump(entries: list[KnowledgeEntry]) -> dict[str, Any]:
    return {"entries": [e.to_record() for e in entries]}


class KnowledgeStore:
    def __init__(self, store: DurableStore) -> None:
        self._store = store

    async def upsert(
        self,
        key: str,
        value: Any,
        category: str | None = None,
        source: str | None = None,
    ) -> tuple[KnowledgeEntry, bool]:
        """Insert or update the entry for ``(key, category)``.

        Returns the stored entry and whether an existing one was updated.
        """
        category = category or "general"
        result: dict[str, Any] = {}

        def _apply(raw: Any) -> dict[str, Any]:
            entries = _parse(raw)
            for entry in entries:
                if entry.key == key and entry.category == category:
                    entry.value = value
                    entry.updated_at = now_iso()
                    if source:
                        entry.source = source
                    result.update(entry=entry, updated=True)
                    break
            else:
                entry = KnowledgeEntry(
                    key=key, value=value, category=category, source=source or "manual"
                )
                entries.append(entry)
                result.update(entry=entry, updated=False)
            return _dump(entries)

        await self._store.update(KNOWLEDGE_PATH, _apply, _empty())
        logger.info(
            "%s knowledge [%s] %s",
            "Updated" if result["updated"] else "Added",
            category,
            key,
        )
        return result["entry"], result["updated"]

    async def list(self, category: str | None = None) -> list[KnowledgeEntry]:
        """All entries in insertion order, optionally filtered by category."""
        entries = _parse(await self._store.read(KNOWLEDGE_PATH, _empty()))
        if category:
            entries = [e for e in entries if e.category == category]
        return entries

    async def delete(self, entry_id: str) -> bool:
        removed = False

        def _apply(raw: Any) -> dict[str, Any]:
            nonlocal removed
            entries = _parse(raw)
            kept = [e for e in entries if e.id != entry_id]
            removed = len(kept) != len(entries)
            return _dump(kept)

        await self._store.update(KNOWLEDGE_PATH, _apply, _empty())
        if removed:
            logger.info("Deleted knowledge entry: %s", entry_id)
        return removed
