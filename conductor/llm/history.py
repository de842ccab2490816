"""History replay for outbound requests.

Prior tool calls are never replayed as structured items. The responses
protocol rejects a tool output whose call is not part of the same request,
and old call identifiers mixed with new ones break both protocols. Each
earlier tool-calling turn is therefore collapsed into its text plus a
``[called tool: X]`` note, and tool results are left out entirely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from conductor.conversations.models import AssistantMessage, UserMessage

if TYPE_CHECKING:
    from collections.abc import Iterable

    from conductor.conversations.models import Message


@dataclass(frozen=True)
class TextTurn:
    """A plain-text history entry, safe to replay on either protocol."""

    role: Literal["user", "assistant"]
    content: str


def annotate_tool_calls(message: AssistantMessage) -> str:
    notes = " ".join(f"[called tool: {call.name}]" for call in message.tool_calls or [])
    return f"{message.content or ''} {notes}".strip()


def sanitize_history(messages: Iterable[Message]) -> list[TextTurn]:
    turns: list[TextTurn] = []
    for message in messages:
        if isinstance(message, UserMessage):
            turns.append(TextTurn("user", message.content))
        elif isinstance(message, AssistantMessage):
            text = annotate_tool_calls(message) if message.tool_calls else (message.content or "")
            if text:
                turns.append(TextTurn("assistant", text))
    return turns
