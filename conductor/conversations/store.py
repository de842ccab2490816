"""Conversation store: an index record plus one message log per conversation.

Layout under the durable store root::

    conversations/index.json        {"conversations": [Conversation, ...]}
    conversations/conv-<id>.json    {"id": ..., "messages": [Message, ...]}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from conductor.conversations.models import (
    DEFAULT_TITLE,
    TITLE_LENGTH,
    AssistantMessage,
    Conversation,
    Message,
    ToolResultMessage,
    UserMessage,
    parse_message,
)
from conductor.models import now_iso

if TYPE_CHECKING:
    from collections.abc import Sequence

    from conductor.storage import DurableStore

logger = logging.getLogger(__name__)

INDEX_PATH = "conversations/index"


def _log_path(conversation_id: str) -> str:
    return f"conversations/conv-{conversation_id}"


def _parse_index(raw: Any) -> list[Conversation]:
    items = raw.get("conversations", []) if isinstance(raw, dict) else []
    conversations = []
    for item in items if isinstance(items, list) else []:
        try:
            conversations.append(Conversation.model_validate(item))
        except ValidationError:
            logger.warning("Skipping unreadable conversation index entry: %r", item)
    return conversations


def _parse_log(raw: Any) -> list[Message]:
    items = raw.get("messages", []) if isinstance(raw, dict) else []
    messages = []
    for item in items if isinstance(items, list) else []:
        try:
            messages.append(parse_message(item))
        except ValidationError:
            logger.warning("Skipping unreadable message record: %r", item)
    return messages


def _pending_call_ids(log: Sequence[Message]) -> set[str]:
    """Call ids a tool result may still answer at the end of *log*.

    Only the most recent assistant tool-calls message counts, and only if
    nothing but tool results follow it.
    """
    for message in reversed(log):
        if isinstance(message, ToolResultMessage):
            continue
        if isinstance(message, AssistantMessage) and message.tool_calls:
            return {call.id for call in message.tool_calls}
        return set()
    return set()


@dataclass
class ConversationLog:
    """A window onto a conversation's messages."""

    conversation: Conversation | None
    messages: list[Message]
    total: int

    @property
    def truncated(self) -> bool:
        return self.total > len(self.messages)


class ConversationStore:
    def __init__(self, store: DurableStore) -> None:
        self._store = store

    # -- Index -----------------------------------------------------------------

    async def create(
        self,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Conversation:
        conversation = Conversation(title=title or DEFAULT_TITLE, metadata=metadata or {})

        def _apply(raw: Any) -> dict[str, Any]:
            index = _parse_index(raw)
            index.append(conversation)
            return {"conversations": [c.to_record() for c in index]}

        await self._store.update(INDEX_PATH, _apply, {"conversations": []})
        await self._store.write(
            _log_path(conversation.id), {"id": conversation.id, "messages": []}
        )
        logger.info("Created conversation %s", conversation.id)
        return conversation

    async def list(self) -> list[Conversation]:
        """All conversations, most recently active first."""
        index = _parse_index(await self._store.read(INDEX_PATH, {"conversations": []}))
        return sorted(
            index,
            key=lambda c: c.last_message_at or c.created_at,
            reverse=True,
        )

    async def get(self, conversation_id: str, limit: int = 100) -> ConversationLog | None:
        """Index entry plus the latest *limit* messages, or None if unknown."""
        raw = await self._store.read(_log_path(conversation_id), None)
        if raw is None:
            return None
        messages = _parse_log(raw)
        index = _parse_index(await self._store.read(INDEX_PATH, {"conversations": []}))
        conversation = next((c for c in index if c.id == conversation_id), None)
        window = messages[-limit:] if limit > 0 else []
        return ConversationLog(conversation=conversation, messages=window, total=len(messages))

    async def recent_messages(self, conversation_id: str, limit: int) -> list[Message]:
        """The last *limit* messages; empty for an unknown conversation."""
        if limit <= 0:
            return []
        raw = await self._store.read(_log_path(conversation_id), {"messages": []})
        return _parse_log(raw)[-limit:]

    # -- Append ----------------------------------------------------------------

    async def append(self, conversation_id: str, messages: Sequence[Message]) -> list[Message]:
        """Append *messages* to a conversation's log and refresh its index entry.

        A tool result is dropped unless its ``tool_call_id`` belongs to the
        assistant tool-calls message immediately before it (tool results for
        the same call batch may sit in between). Appending to a conversation
        missing from the index creates the index entry. Returns the messages
        actually stored.
        """
        stored: list[Message] = []
        log_state: dict[str, Any] = {}

        def _apply_log(raw: Any) -> dict[str, Any]:
            log = _parse_log(raw)
            for message in messages:
                if isinstance(message, ToolResultMessage):
                    if message.tool_call_id not in _pending_call_ids(log):
                        logger.warning(
                            "Dropping tool result for unknown call %s in %s",
                            message.tool_call_id,
                            conversation_id,
                        )
                        continue
                log.append(message)
                stored.append(message)
            first_user = next((m for m in log if isinstance(m, UserMessage)), None)
            log_state.update(
                count=len(log),
                first_user=first_user.content if first_user else None,
            )
            return {"id": conversation_id, "messages": [m.to_record() for m in log]}

        await self._store.update(
            _log_path(conversation_id),
            _apply_log,
            {"id": conversation_id, "messages": []},
        )

        def _apply_index(raw: Any) -> dict[str, Any]:
            index = _parse_index(raw)
            entry = next((c for c in index if c.id == conversation_id), None)
            if entry is None:
                entry = Conversation(id=conversation_id)
                index.append(entry)
            entry.last_message_at = now_iso()
            entry.message_count = log_state["count"]
            if entry.title in ("", DEFAULT_TITLE) and log_state["first_user"]:
                entry.title = log_state["first_user"][:TITLE_LENGTH]
            return {"conversations": [c.to_record() for c in index]}

        await self._store.update(INDEX_PATH, _apply_index, {"conversations": []})
        logger.debug("Appended %d message(s) to %s", len(stored), conversation_id)
        return stored

    # -- Delete ----------------------------------------------------------------

    async def delete(self, conversation_id: str) -> bool:
        """Remove the log and index entry. Returns True if either existed."""
        removed_log = await self._store.delete(_log_path(conversation_id))
        removed_entry = False

        def _apply(raw: Any) -> dict[str, Any]:
            nonlocal removed_entry
            index = _parse_index(raw)
            kept = [c for c in index if c.id != conversation_id]
            removed_entry = len(kept) != len(index)
            return {"conversations": [c.to_record() for c in kept]}

        await self._store.update(INDEX_PATH, _apply, {"conversations": []})
        if removed_log or removed_entry:
            logger.info("Deleted conversation %s", conversation_id)
        return removed_log or removed_entry
