"""Streaming adapter: one upstream HTTP stream in, canonical events out."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

from conductor.config import settings
from conductor.errors import MalformedEventError, UpstreamError
from conductor.llm.events import TurnFailed, is_terminal

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from conductor.llm.events import StreamEvent
    from conductor.llm.protocols import StreamProtocol, TurnDecoder

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 15.0
ERROR_BODY_LIMIT = 2000


class LineBuffer:
    """Accumulates decoded chunks and releases only complete lines.

    A trailing partial line stays buffered until the chunk that finishes it
    arrives (or the stream ends and :meth:`flush` is called).
    """

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, chunk: str) -> list[str]:
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        rest, self._pending = self._pending.rstrip("\r"), ""
        return [rest] if rest.strip() else []


def _decode(decoder: TurnDecoder, line: str) -> list[StreamEvent]:
    try:
        return decoder.feed(line)
    except MalformedEventError as exc:
        logger.warning("Skipping malformed stream line: %s", exc)
        return []


class StreamingAdapter:
    """Posts a payload and yields canonical events as the response streams.

    The upstream response is closed as soon as the consumer stops iterating,
    so an abandoned turn aborts its upstream request.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        self._transport = transport
        self._timeout = timeout

    async def stream(
        self,
        protocol: StreamProtocol,
        payload: dict[str, Any],
    ) -> AsyncIterator[StreamEvent]:
        """Yield events for one turn, ending with exactly one terminal event."""
        timeout = self._timeout or settings.turn_timeout_seconds
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        decoder = protocol.decoder()

        logger.info(
            "Upstream %s turn → %s (model=%s)", protocol.name, protocol.url, payload.get("model")
        )
        try:
            async with (
                httpx.AsyncClient(
                    timeout=httpx.Timeout(timeout, connect=CONNECT_TIMEOUT),
                    transport=self._transport,
                ) as client,
                client.stream(
                    "POST", protocol.url, json=payload, headers=protocol.headers()
                ) as resp,
            ):
                if not resp.is_success:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    err = UpstreamError(resp.status_code, body[:ERROR_BODY_LIMIT])
                    logger.warning("%s", err)
                    yield TurnFailed(str(err), status=err.status)
                    return

                buffer = LineBuffer()
                chunks = resp.aiter_text()
                while True:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        raise TimeoutError
                    try:
                        chunk = await asyncio.wait_for(anext(chunks), remaining)
                    except StopAsyncIteration:
                        break
                    for line in buffer.feed(chunk):
                        for event in _decode(decoder, line):
                            yield event
                            if is_terminal(event):
                                return

                for line in buffer.flush():
                    for event in _decode(decoder, line):
                        yield event
                        if is_terminal(event):
                            return
                for event in decoder.finish():
                    yield event
        except TimeoutError:
            logger.warning("Upstream turn exceeded %.0fs", timeout)
            yield TurnFailed(f"Turn timed out after {timeout:.0f}s")
        except httpx.HTTPError as exc:
            logger.warning("Upstream request failed: %s", exc)
            yield TurnFailed(f"Upstream request failed: {exc}")
