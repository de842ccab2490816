"""Conversation and message models.

Messages are a union tagged by ``role``. An assistant message either carries
plain text or a list of tool calls (with optional text alongside).
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter

from conductor.models import Record, new_id, now_iso

DEFAULT_TITLE = "New Conversation"
TITLE_LENGTH = 60


class ToolCall(Record):
    """A closed tool call: its identifier, tool name and raw JSON arguments."""

    id: str
    name: str
    arguments: str = ""


class UserMessage(Record):
    id: str = Field(default_factory=lambda: new_id("msg"))
    role: Literal["user"] = "user"
    content: str
    timestamp: str = Field(default_factory=now_iso)


class AssistantMessage(Record):
    id: str = Field(default_factory=lambda: new_id("msg"))
    role: Literal["assistant"] = "assistant"
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    timestamp: str = Field(default_factory=now_iso)

    @property
    def is_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_record(self, **kwargs: Any) -> dict[str, Any]:
        data = super().to_record(**kwargs)
        if not self.tool_calls:
            data.pop("toolCalls", None)
        return data


class ToolResultMessage(Record):
    id: str = Field(default_factory=lambda: new_id("msg"))
    role: Literal["tool"] = "tool"
    tool_call_id: str
    name: str
    content: str
    timestamp: str = Field(default_factory=now_iso)


Message = Annotated[
    UserMessage | AssistantMessage | ToolResultMessage,
    Field(discriminator="role"),
]

message_adapter: TypeAdapter[Message] = TypeAdapter(Message)


def parse_message(data: dict[str, Any]) -> Message:
    """Validate a message dict (camelCase or snake_case keys)."""
    return message_adapter.validate_python(data)


class Conversation(Record):
    """An entry in the conversation index."""

    id: str = Field(default_factory=lambda: new_id("conv"))
    title: str = DEFAULT_TITLE
    created_at: str = Field(default_factory=now_iso)
    last_message_at: str = Field(default_factory=now_iso)
    message_count: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)
