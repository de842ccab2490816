"""Conversation index and per-conversation message logs."""

from conductor.conversations.models import (
    AssistantMessage,
    Conversation,
    Message,
    ToolCall,
    ToolResultMessage,
    UserMessage,
)
from conductor.conversations.store import ConversationStore

__all__ = [
    "AssistantMessage",
    "Conversation",
    "ConversationStore",
    "Message",
    "ToolCall",
    "ToolResultMessage",
    "UserMessage",
]
