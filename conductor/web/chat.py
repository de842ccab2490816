"""Turn endpoints streamed as server-sent events."""

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import TYPE_CHECKING, Any

from aiohttp import web
from pydantic import TypeAdapter

from conductor.llm.tools import ExecutedToolCall, ToolSpec
from conductor.web.common import RequestError, read_body, require, services

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from conductor.llm.events import OutboundEvent

logger = logging.getLogger(__name__)

_tool_specs = TypeAdapter(list[ToolSpec])
_tool_results = TypeAdapter(list[ExecutedToolCall])

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def environment_text(raw: Any) -> str | None:
    """Caller snapshot as text. Objects become ``key: value`` lines."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict):
        return "\n".join(f"{key}: {value}" for key, value in raw.items() if value not in (None, ""))
    msg = "environment must be a string or an object"
    raise RequestError(msg)


async def _stream(request: web.Request, events: AsyncIterator[OutboundEvent]) -> web.StreamResponse:
    """Write each event as an SSE frame. Stops the turn if the client goes away."""
    resp = web.StreamResponse(headers=SSE_HEADERS)
    await resp.prepare(request)
    async with aclosing(events) as stream:
        try:
            async for event in stream:
                await resp.write(event.encode())
        except ConnectionResetError:
            logger.info("Client disconnected mid-turn; aborting upstream request")
            return resp
    await resp.write_eof()
    return resp


async def _handle_chat(request: web.Request) -> web.StreamResponse:
    """POST /api/chat: start a turn for a new user message."""
    body = await read_body(request)
    require(body, "userMessage")
    executor = services(request).executor
    turn = await executor.prepare_start(
        conversation_id=body.get("conversationId"),
        user_message=body["userMessage"],
        tools=_tool_specs.validate_python(body.get("tools") or []),
        environment=environment_text(body.get("environment")),
        model=body.get("model"),
    )
    return await _stream(request, executor.run(turn))


async def _handle_continue(request: web.Request) -> web.StreamResponse:
    """POST /api/chat/continue: report executed tool calls and stream the next turn."""
    body = await read_body(request)
    results = _tool_results.validate_python(body.get("toolResults") or [])
    if not results:
        msg = "toolResults required"
        raise RequestError(msg)
    executor = services(request).executor
    turn = await executor.prepare_continue(
        conversation_id=body.get("conversationId"),
        tool_results=results,
        tools=_tool_specs.validate_python(body.get("tools") or []),
        environment=environment_text(body.get("environment")),
        model=body.get("model"),
    )
    return await _stream(request, executor.run(turn))


def setup_routes(app: web.Application) -> None:
    app.router.add_post("/api/chat", _handle_chat)
    app.router.add_post("/api/chat/continue", _handle_continue)
