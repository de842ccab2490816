"""Runtime AI configuration persisted alongside the other records.

Environment settings provide the defaults; the HTTP surface can change the
stored copy without a restart (new API key, different model, embedding
endpoint).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import Field, ValidationError

from conductor.config import settings
from conductor.models import Record

if TYPE_CHECKING:
    from conductor.storage import DurableStore

logger = logging.getLogger(__name__)

CONFIG_PATH = "config"
_SECRET_FIELDS = ("api_key", "embedding_api_key")


def mask_secret(value: str) -> str:
    """``sk-abcdef1234`` → ``***1234``; empty stays empty."""
    if not value:
        return ""
    return "***" + value[-4:]


class RuntimeConfig(Record):
    api_url: str = Field(default_factory=lambda: settings.chat_completions_url)
    api_key: str = Field(default_factory=lambda: settings.openai_api_key)
    default_model: str = Field(default_factory=lambda: settings.default_model)
    embedding_api_url: str = Field(default_factory=lambda: settings.embedding_api_url)
    embedding_api_key: str = Field(default_factory=lambda: settings.embedding_api_key)
    embedding_model: str = Field(default_factory=lambda: settings.embedding_model)
    embedding_dimensions: int | None = Field(default_factory=lambda: settings.embedding_dimensions)
    max_conversation_messages: int = Field(
        default_factory=lambda: settings.max_conversation_messages, ge=1
    )
    memory_search_top_k: int = Field(default_factory=lambda: settings.memory_search_top_k, ge=1)
    knowledge_limit: int = Field(default_factory=lambda: settings.knowledge_limit, ge=0)

    @property
    def embeddings_enabled(self) -> bool:
        return bool(self.embedding_api_url and self.embedding_api_key)

    def masked(self) -> dict[str, Any]:
        """Serialized copy with API keys replaced by their hints."""
        data = self.to_record()
        data["apiKey"] = mask_secret(self.api_key)
        data["embeddingApiKey"] = mask_secret(self.embedding_api_key)
        return data


class RuntimeConfigStore:
    """Reads and merges the persisted :class:`RuntimeConfig`."""

    def __init__(self, store: DurableStore) -> None:
        self._store = store

    async def load(self) -> RuntimeConfig:
        return _parse(await self._store.read(CONFIG_PATH, {}))

    async def update(self, changes: dict[str, Any]) -> RuntimeConfig:
        """Merge *changes* (camelCase or snake_case keys) into the stored config.

        A secret field whose new value equals the masked hint of the current
        value is ignored, so a client can post back what it read. The merge
        runs under the record's lock.
        """

        def _apply(raw: Any) -> dict[str, Any]:
            current = _parse(raw)
            merged = current.to_record()
            for key, value in changes.items():
                field = _field_name(key)
                if field is None:
                    continue
                if field in _SECRET_FIELDS and value == mask_secret(getattr(current, field)):
                    continue
                merged[RuntimeConfig.model_fields[field].alias or field] = value
            return RuntimeConfig.model_validate(merged).to_record()

        stored = await self._store.update(CONFIG_PATH, _apply, {})
        logger.info("Runtime config updated: %s", sorted(changes))
        return RuntimeConfig.model_validate(stored)


def _parse(raw: Any) -> RuntimeConfig:
    try:
        return RuntimeConfig.model_validate(raw if isinstance(raw, dict) else {})
    except ValidationError:
        logger.warning("Stored runtime config is invalid; using defaults", exc_info=True)
        return RuntimeConfig()


def _field_name(key: str) -> str | None:
    """Map a camelCase or snake_case key to a RuntimeConfig field name."""
    if key in RuntimeConfig.model_fields:
        return key
    for name, info in RuntimeConfig.model_fields.items():
        if info.alias == key:
            return name
    return None
