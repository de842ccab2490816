"""Turn executor: the start of an agent loop and each continuation after it.

A turn resolves a credential, picks the matching wire protocol, assembles
instructions, replays sanitized history and streams the upstream answer as
outbound events. When the upstream completes the turn, its messages are
appended to the conversation. A failed turn persists nothing.

The loop itself belongs to the caller: it runs the tool calls a turn
produced and feeds the results back through :meth:`TurnExecutor.continue_turn`
until a turn reports ``terminated``.
"""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from conductor.config import settings
from conductor.conversations.models import (
    AssistantMessage,
    ToolCall,
    ToolResultMessage,
    UserMessage,
)
from conductor.errors import ConfigurationError
from conductor.llm import events as out
from conductor.llm.events import (
    TextDelta,
    ToolCallArgumentDelta,
    ToolCallClosed,
    ToolCallOpened,
    TurnCompleted,
    TurnFailed,
)
from conductor.llm.history import sanitize_history
from conductor.llm.prompt import build_instructions
from conductor.llm.protocols import protocol_for
from conductor.llm.streaming import StreamingAdapter

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from conductor.auth.manager import CredentialManager
    from conductor.conversations.models import Message
    from conductor.conversations.store import ConversationStore
    from conductor.llm.history import TextTurn
    from conductor.llm.protocols import StreamProtocol
    from conductor.llm.tools import ExecutedToolCall, ToolSpec
    from conductor.memory.knowledge import KnowledgeStore
    from conductor.memory.personality import PersonalityStore
    from conductor.memory.store import MemoryStore
    from conductor.runtime import RuntimeConfig, RuntimeConfigStore

logger = logging.getLogger(__name__)


@dataclass
class PreparedTurn:
    """Everything needed to stream one turn, built before any bytes go upstream."""

    conversation_id: str | None
    protocol: StreamProtocol
    payload: dict[str, Any]
    pending: list[Message] = field(default_factory=list)


@dataclass
class _TurnContext:
    protocol: StreamProtocol
    config: RuntimeConfig
    history: list[TextTurn]
    instructions: str


def unwrap_escape_hatch(arguments: str) -> str:
    """The ``message`` argument of an escape-hatch call, else the raw arguments."""
    try:
        parsed = json.loads(arguments or "{}")
    except ValueError:
        return arguments
    if isinstance(parsed, dict) and isinstance(parsed.get("message"), str) and parsed["message"]:
        return parsed["message"]
    return arguments


def assistant_message_for(
    text: str,
    calls: Sequence[ToolCallClosed],
) -> tuple[AssistantMessage | None, bool]:
    """The single assistant message a completed turn persists, and whether the loop ends.

    - no tool calls: plain text (nothing if the model said nothing)
    - only the escape-hatch tool: its unwrapped message as plain text
    - otherwise: a tool-calls record of every closed call
    """
    if not calls:
        return (AssistantMessage(content=text) if text else None), True
    if len(calls) == 1 and calls[0].name == settings.escape_hatch_tool:
        return AssistantMessage(content=unwrap_escape_hatch(calls[0].arguments)), True
    tool_calls = [ToolCall(id=c.call_id, name=c.name, arguments=c.arguments) for c in calls]
    return AssistantMessage(content=text or None, tool_calls=tool_calls), False


class TurnExecutor:
    """Runs start and continuation turns against the selected upstream."""

    def __init__(
        self,
        credentials: CredentialManager,
        conversations: ConversationStore,
        memories: MemoryStore,
        knowledge: KnowledgeStore,
        personality: PersonalityStore,
        config: RuntimeConfigStore,
        adapter: StreamingAdapter | None = None,
    ) -> None:
        self._credentials = credentials
        self._conversations = conversations
        self._memories = memories
        self._knowledge = knowledge
        self._personality = personality
        self._config = config
        self._adapter = adapter or StreamingAdapter()

    # -- Preparation -----------------------------------------------------------

    async def _context(
        self,
        conversation_id: str | None,
        user_message: str,
        environment: str | None,
        *,
        continuation: bool,
    ) -> _TurnContext:
        credential = await self._credentials.current_credential()
        if credential is None:
            msg = "No authentication configured. Sign in or set an API key."
            raise ConfigurationError(msg)

        config = await self._config.load()
        protocol = protocol_for(credential, config)
        history: list[Message] = []
        if conversation_id:
            history = await self._conversations.recent_messages(
                conversation_id, config.max_conversation_messages
            )
        instructions = await build_instructions(
            await self._personality.get(),
            await self._knowledge.list(),
            user_message,
            history,
            environment,
            self._memories,
            top_k=config.memory_search_top_k,
            knowledge_limit=config.knowledge_limit,
            continuation=continuation,
        )
        return _TurnContext(protocol, config, sanitize_history(history), instructions)

    async def prepare_start(
        self,
        conversation_id: str | None,
        user_message: str,
        tools: Sequence[ToolSpec] = (),
        environment: str | None = None,
        model: str | None = None,
    ) -> PreparedTurn:
        """Build the request for a new user message.

        Raises:
            ConfigurationError: no OAuth credential and no API key.
        """
        ctx = await self._context(conversation_id, user_message, environment, continuation=False)
        payload = ctx.protocol.build_start(
            model=model or ctx.config.default_model,
            instructions=ctx.instructions,
            history=ctx.history,
            user_message=user_message,
            tools=tools,
        )
        return PreparedTurn(
            conversation_id=conversation_id,
            protocol=ctx.protocol,
            payload=payload,
            pending=[UserMessage(content=user_message)],
        )

    async def prepare_continue(
        self,
        conversation_id: str | None,
        tool_results: Sequence[ExecutedToolCall],
        tools: Sequence[ToolSpec] = (),
        environment: str | None = None,
        model: str | None = None,
    ) -> PreparedTurn:
        """Build the request reporting the tool calls the caller just ran.

        Only these results travel as structured tool items; every earlier
        tool call is already collapsed into text by history sanitization.

        Raises:
            ValueError: ``tool_results`` is empty.
            ConfigurationError: no OAuth credential and no API key.
        """
        if not tool_results:
            msg = "toolResults required"
            raise ValueError(msg)
        ctx = await self._context(conversation_id, "", environment, continuation=True)
        payload = ctx.protocol.build_continue(
            model=model or ctx.config.default_model,
            instructions=ctx.instructions,
            history=ctx.history,
            tool_results=tool_results,
            tools=tools,
        )
        pending: list[Message] = [
            ToolResultMessage(tool_call_id=r.call_id, name=r.name, content=r.output)
            for r in tool_results
        ]
        return PreparedTurn(
            conversation_id=conversation_id,
            protocol=ctx.protocol,
            payload=payload,
            pending=pending,
        )

    # -- Streaming -------------------------------------------------------------

    async def run(self, turn: PreparedTurn) -> AsyncIterator[out.OutboundEvent]:
        """Stream a prepared turn. The last event is ``turn-done`` or ``error``."""
        text_parts: list[str] = []
        opened: dict[int, ToolCallOpened] = {}
        closed: dict[int, ToolCallClosed] = {}

        async with aclosing(self._adapter.stream(turn.protocol, turn.payload)) as stream:
            async for event in stream:
                if isinstance(event, TextDelta):
                    text_parts.append(event.text)
                    yield out.text_delta(event.text)

                elif isinstance(event, ToolCallOpened):
                    opened[event.index] = event
                    yield out.tool_call_delta(event.index, event.name, event.call_id, "")

                elif isinstance(event, ToolCallArgumentDelta):
                    start = opened.get(event.index)
                    yield out.tool_call_delta(
                        event.index,
                        start.name if start else "",
                        start.call_id if start else "",
                        event.fragment,
                    )

                elif isinstance(event, ToolCallClosed):
                    if event.index in closed:
                        continue
                    closed[event.index] = event
                    yield out.tool_call_done(
                        event.index, event.name, event.arguments, event.call_id
                    )

                elif isinstance(event, TurnFailed):
                    logger.warning("Turn failed (%s): %s", turn.protocol.name, event.error)
                    yield out.error(event.error, event.status)
                    return

                elif isinstance(event, TurnCompleted):
                    calls = [closed[i] for i in sorted(closed)]
                    assistant, terminated = assistant_message_for("".join(text_parts), calls)
                    await self._persist(turn, assistant)
                    logger.info(
                        "Turn complete: %d tool call(s)%s",
                        len(calls),
                        ", loop terminated" if terminated else "",
                    )
                    yield out.turn_done(
                        event.usage,
                        event.turn_id,
                        terminated,
                        [
                            {
                                "index": c.index,
                                "name": c.name,
                                "arguments": c.arguments,
                                "callId": c.call_id,
                            }
                            for c in calls
                        ],
                    )
                    return

        # Adapter ended without a terminal event.
        yield out.error("Upstream stream ended without a result")

    async def _persist(self, turn: PreparedTurn, assistant: AssistantMessage | None) -> None:
        if not turn.conversation_id:
            return
        messages: list[Message] = list(turn.pending)
        if assistant is not None:
            messages.append(assistant)
        try:
            await self._conversations.append(turn.conversation_id, messages)
        except Exception:
            logger.exception("Failed to persist turn for %s", turn.conversation_id)

    # -- Entry points ----------------------------------------------------------

    async def start_turn(
        self,
        conversation_id: str | None,
        user_message: str,
        tools: Sequence[ToolSpec] = (),
        environment: str | None = None,
        model: str | None = None,
    ) -> AsyncIterator[out.OutboundEvent]:
        turn = await self.prepare_start(conversation_id, user_message, tools, environment, model)
        async for event in self.run(turn):
            yield event

    async def continue_turn(
        self,
        conversation_id: str | None,
        tool_results: Sequence[ExecutedToolCall],
        tools: Sequence[ToolSpec] = (),
        environment: str | None = None,
        model: str | None = None,
    ) -> AsyncIterator[out.OutboundEvent]:
        turn = await self.prepare_continue(
            conversation_id, tool_results, tools, environment, model
        )
        async for event in self.run(turn):
            yield event
