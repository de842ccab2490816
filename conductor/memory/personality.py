"""Personality config: read-mostly, merged wholesale on update."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from conductor.memory.models import Personality
from conductor.models import now_iso

if TYPE_CHECKING:
    from conductor.storage import DurableStore

logger = logging.getLogger(__name__)

PERSONALITY_PATH = "personality"


class PersonalityStore:
    def __init__(self, store: DurableStore) -> None:
        self._store = store

    async def get(self) -> Personality:
        """Stored personality, or the built-in defaults."""
        return _parse(await self._store.read(PERSONALITY_PATH, {}))

    async def update(self, changes: dict[str, Any]) -> Personality:
        """Merge *changes* over the current personality and persist it.

        Raises ``ValidationError`` if the merged result is not a valid
        personality (e.g. ``rules`` is not a list of strings).
        """

        def _apply(raw: Any) -> dict[str, Any]:
            merged = _parse(raw).merged(changes)
            merged["updatedAt"] = now_iso()
            return Personality.model_validate(merged).to_record()

        stored = await self._store.update(PERSONALITY_PATH, _apply, {})
        logger.info("Personality updated: %s", sorted(changes))
        return Personality.model_validate(stored)


def _parse(raw: Any) -> Personality:
    try:
        return Personality.model_validate(raw if isinstance(raw, dict) else {})
    except ValidationError:
        logger.warning("Stored personality is invalid; using defaults", exc_info=True)
        return Personality()

