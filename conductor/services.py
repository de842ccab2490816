"""Wiring for the core components that share one durable store."""

from __future__ import annotations

from typing import TYPE_CHECKING

from conductor.auth.manager import CredentialManager
from conductor.conversations.store import ConversationStore
from conductor.llm.client import TurnExecutor
from conductor.llm.streaming import StreamingAdapter
from conductor.memory.embeddings import EmbeddingProvider
from conductor.memory.knowledge import KnowledgeStore
from conductor.memory.personality import PersonalityStore
from conductor.memory.store import MemoryStore
from conductor.runtime import RuntimeConfigStore
from conductor.storage import DurableStore

if TYPE_CHECKING:
    from pathlib import Path

    import httpx


class Services:
    """Every store and manager, built once over a single :class:`DurableStore`.

    Singleton accessed via ``Services.get()``. Tests build their own with a
    temporary *root* and mock transports.
    """

    _instance: Services | None = None

    def __init__(
        self,
        root: Path | None = None,
        *,
        upstream_transport: httpx.AsyncBaseTransport | None = None,
        auth_transport: httpx.AsyncBaseTransport | None = None,
        embedding_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.store = DurableStore(root) if root is not None else DurableStore.get()
        self.config = RuntimeConfigStore(self.store)
        self.embeddings = EmbeddingProvider(embedding_transport)
        self.memories = MemoryStore(self.store, self.embeddings, self.config)
        self.knowledge = KnowledgeStore(self.store)
        self.personality = PersonalityStore(self.store)
        self.conversations = ConversationStore(self.store)
        self.credentials = CredentialManager(self.store, self.config, auth_transport)
        self.upstream_transport = upstream_transport
        self.executor = TurnExecutor(
            credentials=self.credentials,
            conversations=self.conversations,
            memories=self.memories,
            knowledge=self.knowledge,
            personality=self.personality,
            config=self.config,
            adapter=StreamingAdapter(upstream_transport),
        )

    @classmethod
    def get(cls) -> Services:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Clear the singleton (for tests)."""
        cls._instance = None
