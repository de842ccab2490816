"""Event vocabulary for a streamed turn.

Protocol decoders emit the canonical events (``TextDelta`` ... ``TurnFailed``).
The turn executor turns them into :class:`OutboundEvent` frames for the caller.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallOpened:
    index: int
    name: str
    call_id: str


@dataclass(frozen=True)
class ToolCallArgumentDelta:
    index: int
    fragment: str


@dataclass(frozen=True)
class ToolCallClosed:
    """Authoritative end of a tool call; emitted once per index."""

    index: int
    name: str
    arguments: str
    call_id: str


@dataclass(frozen=True)
class TurnCompleted:
    usage: dict[str, Any] | None = None
    turn_id: str | None = None


@dataclass(frozen=True)
class TurnFailed:
    error: str
    status: int | None = None


StreamEvent = (
    TextDelta | ToolCallOpened | ToolCallArgumentDelta | ToolCallClosed | TurnCompleted | TurnFailed
)


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, TurnCompleted | TurnFailed)


# -- Outbound frames -----------------------------------------------------------


@dataclass(frozen=True)
class OutboundEvent:
    """A named event sent to the caller, e.g. ``text-delta {"delta": "Hi"}``."""

    event: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.event in ("turn-done", "error")

    def encode(self) -> bytes:
        """Server-sent-events frame."""
        payload = json.dumps(self.data, ensure_ascii=False)
        return f"event: {self.event}\ndata: {payload}\n\n".encode()


def text_delta(delta: str) -> OutboundEvent:
    return OutboundEvent("text-delta", {"delta": delta})


def tool_call_delta(index: int, name: str, call_id: str, arguments_delta: str) -> OutboundEvent:
    return OutboundEvent(
        "tool-call-delta",
        {"index": index, "name": name, "callId": call_id, "argumentsDelta": arguments_delta},
    )


def tool_call_done(index: int, name: str, arguments: str, call_id: str) -> OutboundEvent:
    return OutboundEvent(
        "tool-call-done",
        {"index": index, "name": name, "arguments": arguments, "callId": call_id},
    )


def turn_done(
    usage: dict[str, Any] | None,
    turn_id: str | None,
    terminated: bool,
    tool_calls: list[dict[str, Any]],
) -> OutboundEvent:
    return OutboundEvent(
        "turn-done",
        {"usage": usage, "turnId": turn_id, "terminated": terminated, "toolCalls": tool_calls},
    )


def error(message: str, status: int | None = None) -> OutboundEvent:
    return OutboundEvent("error", {"error": message, "status": status})
