"""Shared test fixtures."""

import asyncio
import base64
import json

import httpx
import pytest

from conductor.conversations.store import ConversationStore
from conductor.memory.knowledge import KnowledgeStore
from conductor.memory.personality import PersonalityStore
from conductor.runtime import RuntimeConfigStore
from conductor.services import Services
from conductor.storage import DurableStore


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests away from real credentials and the working directory."""
    monkeypatch.setattr("conductor.config.settings.data_dir", tmp_path / "data")
    monkeypatch.setattr("conductor.config.settings.workspace_dir", None)
    monkeypatch.setattr("conductor.config.settings.openai_api_key", "")
    monkeypatch.setattr("conductor.config.settings.embedding_api_url", "")
    monkeypatch.setattr("conductor.config.settings.embedding_api_key", "")
    monkeypatch.setattr("conductor.config.settings.embedding_dimensions", None)


@pytest.fixture
def store(tmp_path):
    """Create a DurableStore rooted in a temporary directory."""
    DurableStore._reset()
    s = DurableStore(root=tmp_path / "data")
    DurableStore._instance = s
    yield s
    DurableStore._reset()


@pytest.fixture
def config_store(store):
    return RuntimeConfigStore(store)


@pytest.fixture
def knowledge(store):
    return KnowledgeStore(store)


@pytest.fixture
def personality(store):
    return PersonalityStore(store)


@pytest.fixture
def conversations(store):
    return ConversationStore(store)


@pytest.fixture
def upstream():
    """Scripted upstream model endpoint. Queue responses with ``upstream.reply(...)``."""
    return FakeUpstream()


@pytest.fixture
def services(store, upstream):
    Services._reset()
    svc = Services(store.root, upstream_transport=upstream.transport)
    Services._instance = svc
    yield svc
    Services._reset()


# -- Helpers -------------------------------------------------------------------


def make_jwt(claims: dict) -> str:
    """Unsigned JWT with the given payload claims."""

    def _part(data: dict) -> str:
        return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()

    return f"{_part({'alg': 'none'})}.{_part(claims)}.sig"


def sse(*events: dict | str) -> list[bytes]:
    """Encode events as ``data:`` lines, one chunk per event."""
    chunks = []
    for event in events:
        payload = event if isinstance(event, str) else json.dumps(event)
        chunks.append(f"data: {payload}\n\n".encode())
    return chunks


def chat_text(text: str) -> dict:
    return {"id": "chatcmpl-1", "choices": [{"index": 0, "delta": {"content": text}}]}


def chat_tool(
    index: int, fragment: str, name: str | None = None, call_id: str | None = None
) -> dict:
    call: dict = {"index": index, "function": {"arguments": fragment}}
    if name:
        call["function"]["name"] = name
    if call_id:
        call["id"] = call_id
    return {"id": "chatcmpl-1", "choices": [{"index": 0, "delta": {"tool_calls": [call]}}]}


def chat_finish(reason: str = "stop") -> dict:
    return {"id": "chatcmpl-1", "choices": [{"index": 0, "delta": {}, "finish_reason": reason}]}


class UpstreamBody(httpx.AsyncByteStream):
    """Streamed response body that records whether the client closed it."""

    def __init__(self, chunks: list[bytes], hold: bool = False) -> None:
        self.chunks = chunks
        self.hold = hold
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.hold:
            await asyncio.sleep(60)

    async def aclose(self) -> None:
        self.closed = True


class FakeUpstream:
    """httpx transport that replays queued streaming responses and records requests."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.bodies: list[UpstreamBody] = []
        self._replies: list[tuple[int, UpstreamBody]] = []
        self.transport = httpx.MockTransport(self._handle)

    def reply(self, chunks: list[bytes], status: int = 200, hold: bool = False) -> None:
        """Queue a response. With *hold*, the stream stays open after its chunks."""
        self._replies.append((status, UpstreamBody(chunks, hold)))

    @property
    def payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self._replies.pop(0)
        self.bodies.append(body)
        return httpx.Response(
            status, stream=body, headers={"Content-Type": "text/event-stream"}
        )

