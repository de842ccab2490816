"""The two upstream wire styles behind one interface.

- :class:`ChatCompletionsProtocol`: turn-based ``/v1/chat/completions``,
  used with a static API key.
- :class:`ResponsesProtocol`: the call-id-keyed ``responses`` stream, used
  with an OAuth credential.

Each protocol builds request payloads and hands out a fresh
:class:`TurnDecoder` per turn. Decoders turn complete ``data:`` lines into
canonical events and raise :class:`MalformedEventError` for lines they
cannot read.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from conductor.auth.manager import OAuthCredential
from conductor.config import settings
from conductor.errors import MalformedEventError
from conductor.llm.events import (
    StreamEvent,
    TextDelta,
    ToolCallArgumentDelta,
    ToolCallClosed,
    ToolCallOpened,
    TurnCompleted,
    TurnFailed,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from conductor.auth.manager import Credential
    from conductor.llm.history import TextTurn
    from conductor.llm.tools import ExecutedToolCall, ToolSpec
    from conductor.runtime import RuntimeConfig

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


def _parse_data_line(line: str) -> dict[str, Any] | str | None:
    """Payload of a ``data:`` line: a dict, the done sentinel, or None to ignore."""
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:") :].strip()
    if not data:
        return None
    if data == DONE_SENTINEL:
        return DONE_SENTINEL
    try:
        event = json.loads(data)
    except ValueError as exc:
        msg = f"Unparseable stream line: {data[:200]}"
        raise MalformedEventError(msg) from exc
    if not isinstance(event, dict):
        msg = f"Stream line is not an object: {data[:200]}"
        raise MalformedEventError(msg)
    return event


def _index(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"Invalid tool call index: {value!r}"
        raise MalformedEventError(msg)
    return value


def _object(value: Any, what: str) -> dict[str, Any]:
    """*value* as a dict; missing means empty, anything else is malformed."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        msg = f"Invalid {what}: {value!r}"
        raise MalformedEventError(msg)
    return value


def _list(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        msg = f"Invalid {what}: {value!r}"
        raise MalformedEventError(msg)
    return value


def _text(value: Any, what: str) -> str:
    """*value* as a string; missing means empty, anything else is malformed."""
    if value is None:
        return ""
    if not isinstance(value, str):
        msg = f"Invalid {what}: {value!r}"
        raise MalformedEventError(msg)
    return value


def _error_message(error: Any, default: str) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or default)
    if error:
        return str(error)
    return default


@dataclass
class _PendingCall:
    name: str
    call_id: str
    fragments: list[str] = field(default_factory=list)
    closed: bool = False

    @property
    def arguments(self) -> str:
        return "".join(self.fragments)


class TurnDecoder(ABC):
    """Per-turn state machine from raw lines to canonical events."""

    def __init__(self) -> None:
        self.finished = False
        self.turn_id: str | None = None
        self._calls: dict[int, _PendingCall] = {}

    @abstractmethod
    def feed(self, line: str) -> list[StreamEvent]:
        """Decode one complete line. May raise :class:`MalformedEventError`."""

    def finish(self) -> list[StreamEvent]:
        """Called when the upstream closes. Fails a turn that never ended."""
        if self.finished:
            return []
        self.finished = True
        return [TurnFailed("Upstream stream ended before the turn completed")]

    def _open(self, index: int, name: str, call_id: str) -> list[StreamEvent]:
        self._calls[index] = _PendingCall(name=name, call_id=call_id)
        return [ToolCallOpened(index=index, name=name, call_id=call_id)]

    def _close(self, index: int, **final: str) -> list[StreamEvent]:
        call = self._calls.get(index)
        if call is None:
            call = self._calls[index] = _PendingCall(name="", call_id=f"call_{index}")
        if call.closed:
            return []
        call.closed = True
        return [
            ToolCallClosed(
                index=index,
                name=final.get("name") or call.name,
                arguments=final.get("arguments", call.arguments),
                call_id=final.get("call_id") or call.call_id,
            )
        ]

    def _complete(self, usage: dict[str, Any] | None, turn_id: str | None) -> list[StreamEvent]:
        self.finished = True
        return [TurnCompleted(usage=usage, turn_id=turn_id or self.turn_id)]

    def _fail(self, message: str) -> list[StreamEvent]:
        self.finished = True
        return [TurnFailed(message)]


class StreamProtocol(ABC):
    """Request construction and decoding for one upstream wire style."""

    name: str

    def __init__(self, url: str, token: str) -> None:
        self.url = url
        self._token = token

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    @abstractmethod
    def build_start(
        self,
        *,
        model: str,
        instructions: str,
        history: Sequence[TextTurn],
        user_message: str,
        tools: Sequence[ToolSpec],
    ) -> dict[str, Any]:
        """Payload for a turn that answers a new user message."""

    @abstractmethod
    def build_continue(
        self,
        *,
        model: str,
        instructions: str,
        history: Sequence[TextTurn],
        tool_results: Sequence[ExecutedToolCall],
        tools: Sequence[ToolSpec],
    ) -> dict[str, Any]:
        """Payload for a turn that reports just-executed tool calls."""

    @abstractmethod
    def decoder(self) -> TurnDecoder: ...


# -- Chat completions ----------------------------------------------------------


class ChatCompletionsDecoder(TurnDecoder):
    def __init__(self) -> None:
        super().__init__()
        self._usage: dict[str, Any] | None = None

    def _close_all(self) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for index in sorted(self._calls):
            events.extend(self._close(index))
        return events

    def feed(self, line: str) -> list[StreamEvent]:
        chunk = _parse_data_line(line)
        if chunk is None:
            return []
        if chunk == DONE_SENTINEL:
            return self._close_all() + self._complete(self._usage, self.turn_id)

        if chunk.get("error"):
            return self._fail(_error_message(chunk["error"], "Upstream error"))

        # Check the whole chunk before touching decoder state.
        turn_id = _text(chunk.get("id"), "chunk id")
        choices = [_object(c, "choice") for c in _list(chunk.get("choices"), "choices")]
        deltas = [_object(c.get("delta"), "delta") for c in choices]
        for delta in deltas:
            _text(delta.get("content"), "content")
            for raw in _list(delta.get("tool_calls"), "tool calls"):
                tc = _object(raw, "tool call delta")
                _index(tc.get("index", 0))
                _text(tc.get("id"), "tool call id")
                function = _object(tc.get("function"), "tool call function")
                _text(function.get("name"), "tool name")
                _text(function.get("arguments"), "tool arguments")

        self.turn_id = turn_id or self.turn_id
        if isinstance(chunk.get("usage"), dict):
            self._usage = chunk["usage"]

        events: list[StreamEvent] = []
        for choice, delta in zip(choices, deltas, strict=True):
            if delta.get("content"):
                events.append(TextDelta(delta["content"]))

            for tc in delta.get("tool_calls") or []:
                index = tc.get("index", 0)
                function = tc.get("function") or {}
                call = self._calls.get(index)
                if call is None:
                    call_id = tc.get("id") or f"call_{index}"
                    events.extend(self._open(index, function.get("name") or "", call_id))
                    call = self._calls[index]
                elif function.get("name") and not call.name:
                    call.name = function["name"]
                fragment = function.get("arguments")
                if fragment:
                    call.fragments.append(fragment)
                    events.append(ToolCallArgumentDelta(index=index, fragment=fragment))

            if choice.get("finish_reason"):
                events.extend(self._close_all())
        return events


class ChatCompletionsProtocol(StreamProtocol):
    name = "chat-completions"

    @staticmethod
    def _messages(instructions: str, history: Sequence[TextTurn]) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": instructions}]
        messages.extend({"role": turn.role, "content": turn.content} for turn in history)
        return messages

    @staticmethod
    def _base(
        model: str, messages: list[dict[str, Any]], tools: Sequence[ToolSpec]
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            payload["tools"] = [t.chat_schema() for t in tools]
        return payload

    def build_start(self, *, model, instructions, history, user_message, tools) -> dict[str, Any]:
        messages = self._messages(instructions, history)
        messages.append({"role": "user", "content": user_message})
        return self._base(model, messages, tools)

    def build_continue(
        self, *, model, instructions, history, tool_results, tools
    ) -> dict[str, Any]:
        messages = self._messages(instructions, history)
        messages.append(
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": r.call_id,
                        "type": "function",
                        "function": {"name": r.name, "arguments": r.arguments},
                    }
                    for r in tool_results
                ],
            }
        )
        messages.extend(
            {"role": "tool", "tool_call_id": r.call_id, "content": r.output} for r in tool_results
        )
        payload = self._base(model, messages, tools)
        if tools:
            payload["tool_choice"] = "auto"
        return payload

    def decoder(self) -> TurnDecoder:
        return ChatCompletionsDecoder()


# -- Responses -----------------------------------------------------------------


class ResponsesDecoder(TurnDecoder):
    def feed(self, line: str) -> list[StreamEvent]:
        event = _parse_data_line(line)
        if event is None or event == DONE_SENTINEL:
            return []

        kind = event.get("type")
        if kind == "response.created":
            response = _object(event.get("response"), "response")
            self.turn_id = _text(response.get("id"), "response id") or self.turn_id
            return []

        if kind == "response.output_text.delta":
            delta = _text(event.get("delta"), "text delta")
            return [TextDelta(delta)] if delta else []

        if kind == "response.output_item.added":
            item = _object(event.get("item"), "output item")
            if item.get("type") != "function_call":
                return []
            index = _index(event.get("output_index", 0))
            name = _text(item.get("name"), "tool name")
            call_id = _text(item.get("call_id"), "tool call id")
            return self._open(index, name, call_id or f"call_{index}")

        if kind == "response.function_call_arguments.delta":
            index = _index(event.get("output_index", 0))
            fragment = _text(event.get("delta"), "tool arguments")
            if not fragment:
                return []
            call = self._calls.get(index)
            if call is None:
                self._open(index, "", f"call_{index}")
                call = self._calls[index]
            call.fragments.append(fragment)
            return [ToolCallArgumentDelta(index=index, fragment=fragment)]

        if kind == "response.output_item.done":
            item = _object(event.get("item"), "output item")
            if item.get("type") != "function_call":
                return []
            index = _index(event.get("output_index", 0))
            final: dict[str, str] = {
                "name": _text(item.get("name"), "tool name"),
                "call_id": _text(item.get("call_id"), "tool call id"),
            }
            if isinstance(item.get("arguments"), str):
                final["arguments"] = item["arguments"]
            return self._close(index, **final)

        if kind == "response.completed":
            response = _object(event.get("response"), "response")
            usage = response.get("usage")
            return self._complete(
                usage if isinstance(usage, dict) else None,
                _text(response.get("id"), "response id") or None,
            )

        if kind == "response.failed":
            response = _object(event.get("response"), "response")
            return self._fail(_error_message(response.get("error"), "Response failed"))

        if kind == "error":
            return self._fail(
                str(event.get("message") or _error_message(event.get("error"), "Upstream error"))
            )

        return []


class ResponsesProtocol(StreamProtocol):
    name = "responses"

    @staticmethod
    def _input(history: Sequence[TextTurn]) -> list[dict[str, Any]]:
        items = []
        for turn in history:
            part_type = "input_text" if turn.role == "user" else "output_text"
            items.append(
                {
                    "type": "message",
                    "role": turn.role,
                    "content": [{"type": part_type, "text": turn.content}],
                }
            )
        return items

    @staticmethod
    def _base(
        model: str,
        instructions: str,
        items: list[dict[str, Any]],
        tools: Sequence[ToolSpec],
        tool_choice: str,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "instructions": instructions,
            "input": items,
            "stream": True,
            "store": False,
        }
        if tools:
            payload["tools"] = [t.responses_schema() for t in tools]
            payload["tool_choice"] = tool_choice
        return payload

    def build_start(self, *, model, instructions, history, user_message, tools) -> dict[str, Any]:
        items = self._input(history)
        items.append(
            {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": user_message}],
            }
        )
        offers_escape_hatch = any(t.name == settings.escape_hatch_tool for t in tools)
        return self._base(
            model, instructions, items, tools, "required" if offers_escape_hatch else "auto"
        )

    def build_continue(
        self, *, model, instructions, history, tool_results, tools
    ) -> dict[str, Any]:
        items = self._input(history)
        items.extend(
            {
                "type": "function_call",
                "call_id": r.call_id,
                "name": r.name,
                "arguments": r.arguments or "{}",
            }
            for r in tool_results
        )
        items.extend(
            {"type": "function_call_output", "call_id": r.call_id, "output": r.output}
            for r in tool_results
        )
        return self._base(model, instructions, items, tools, "auto")

    def decoder(self) -> TurnDecoder:
        return ResponsesDecoder()


def protocol_for(credential: Credential, config: RuntimeConfig) -> StreamProtocol:
    """OAuth credentials talk ``responses``; API keys talk chat completions."""
    if isinstance(credential, OAuthCredential):
        return ResponsesProtocol(settings.responses_url, credential.access_token)
    return ChatCompletionsProtocol(config.api_url, credential.key)
