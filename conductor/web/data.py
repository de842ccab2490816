"""Data endpoints: memories, knowledge, conversations, personality and config.

Pure reads and writes against the stores. Nothing here calls the model.
"""

from __future__ import annotations

from collections import Counter

from aiohttp import web
from pydantic import TypeAdapter

from conductor.conversations.models import Message, parse_message
from conductor.llm.prompt import build_instructions
from conductor.web.chat import environment_text
from conductor.web.common import RequestError, int_param, read_body, require, services

_messages = TypeAdapter(list[Message])


# -- Memories ------------------------------------------------------------------


async def _store_memory(request: web.Request) -> web.Response:
    body = await read_body(request)
    require(body, "content")
    memory = await services(request).memories.store(
        body["content"],
        category=body.get("category"),
        tags=body.get("tags"),
        metadata=body.get("metadata"),
    )
    return web.json_response(
        {
            "ok": True,
            "memory": {
                "id": memory.id,
                "category": memory.category,
                "hasEmbedding": memory.has_embedding,
            },
        }
    )


async def _store_memories(request: web.Request) -> web.Response:
    body = await read_body(request)
    items = body.get("memories")
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        msg = "memories must be a list of objects"
        raise RequestError(msg)
    stored = await services(request).memories.store_many(items)
    return web.json_response({"ok": True, "stored": stored})


async def _search_memories(request: web.Request) -> web.Response:
    query = request.query.get("q", "").strip()
    if not query:
        msg = "q required"
        raise RequestError(msg)
    svc = services(request)
    config = await svc.config.load()
    result = await svc.memories.search(
        query,
        k=int_param(request, "k", config.memory_search_top_k),
        category=request.query.get("category") or None,
    )
    return web.json_response(result.to_record())


async def _list_memories(request: web.Request) -> web.Response:
    listing = await services(request).memories.list(
        category=request.query.get("category") or None,
        limit=int_param(request, "limit", 50),
    )
    return web.json_response(listing.to_record())


async def _delete_memory(request: web.Request) -> web.Response:
    deleted = await services(request).memories.delete(request.match_info["memory_id"])
    return web.json_response({"ok": True, "deleted": deleted})


# -- Knowledge -----------------------------------------------------------------


async def _list_knowledge(request: web.Request) -> web.Response:
    knowledge = services(request).knowledge
    everything = await knowledge.list()
    category = request.query.get("category") or None
    entries = [e for e in everything if e.category == category] if category else everything
    return web.json_response(
        {
            "entries": [e.to_record() for e in entries],
            "total": len(entries),
            "categories": dict(Counter(e.category for e in everything)),
        }
    )


async def _upsert_knowledge(request: web.Request) -> web.Response:
    body = await read_body(request)
    if not body.get("key") or "value" not in body:
        msg = "key and value required"
        raise RequestError(msg)
    entry, updated = await services(request).knowledge.upsert(
        body["key"],
        body["value"],
        category=body.get("category"),
        source=body.get("source"),
    )
    return web.json_response({"ok": True, "entry": entry.to_record(), "updated": updated})


async def _delete_knowledge(request: web.Request) -> web.Response:
    deleted = await services(request).knowledge.delete(request.match_info["entry_id"])
    return web.json_response({"ok": True, "deleted": deleted})


# -- Conversations -------------------------------------------------------------


async def _list_conversations(request: web.Request) -> web.Response:
    conversations = await services(request).conversations.list()
    return web.json_response({"conversations": [c.to_record() for c in conversations]})


async def _create_conversation(request: web.Request) -> web.Response:
    body = await read_body(request)
    conversation = await services(request).conversations.create(
        title=body.get("title"), metadata=body.get("metadata")
    )
    return web.json_response({"ok": True, "conversation": conversation.to_record()})


async def _get_conversation(request: web.Request) -> web.Response:
    conversation_id = request.match_info["conversation_id"]
    log = await services(request).conversations.get(
        conversation_id, limit=int_param(request, "limit", 100)
    )
    if log is None:
        return web.json_response({"error": "Conversation not found"}, status=404)
    return web.json_response(
        {
            "id": conversation_id,
            "conversation": log.conversation.to_record() if log.conversation else None,
            "messages": [m.to_record() for m in log.messages],
            "totalMessages": log.total,
            "truncated": log.truncated,
        }
    )


async def _delete_conversation(request: web.Request) -> web.Response:
    deleted = await services(request).conversations.delete(request.match_info["conversation_id"])
    return web.json_response({"ok": True, "deleted": deleted})


async def _append_messages(request: web.Request) -> web.Response:
    """Append one message (the body itself) or several (``{"messages": [...]}``)."""
    body = await read_body(request)
    if "messages" in body:
        messages = _messages.validate_python(body["messages"])
    else:
        messages = [parse_message(body)]
    stored = await services(request).conversations.append(
        request.match_info["conversation_id"], messages
    )
    return web.json_response({"ok": True, "stored": [m.to_record() for m in stored]})


# -- Personality & config ------------------------------------------------------


async def _get_personality(request: web.Request) -> web.Response:
    personality = await services(request).personality.get()
    return web.json_response({"personality": personality.to_record()})


async def _update_personality(request: web.Request) -> web.Response:
    body = await read_body(request)
    personality = await services(request).personality.update(body)
    return web.json_response({"ok": True, "personality": personality.to_record()})


async def _get_config(request: web.Request) -> web.Response:
    config = await services(request).config.load()
    return web.json_response({"config": config.masked()})


async def _update_config(request: web.Request) -> web.Response:
    body = await read_body(request)
    config = await services(request).config.update(body)
    return web.json_response({"ok": True, "config": config.masked()})


# -- Diagnostics ---------------------------------------------------------------


async def _embed(request: web.Request) -> web.Response:
    """POST /api/embed: probe the embedding service with a piece of text."""
    body = await read_body(request)
    require(body, "text")
    svc = services(request)
    vector = await svc.embeddings.embed(body["text"], await svc.config.load())
    return web.json_response(
        {
            "available": vector is not None,
            "dimensions": len(vector) if vector else 0,
            "embedding": vector,
        }
    )


async def _context(request: web.Request) -> web.Response:
    """GET /api/context: the instructions a turn would be given right now."""
    svc = services(request)
    config = await svc.config.load()
    conversation_id = request.query.get("conversationId")
    history = (
        await svc.conversations.recent_messages(conversation_id, config.max_conversation_messages)
        if conversation_id
        else []
    )
    instructions = await build_instructions(
        await svc.personality.get(),
        await svc.knowledge.list(),
        request.query.get("message", ""),
        history,
        environment_text(request.query.get("environment")),
        svc.memories,
        top_k=config.memory_search_top_k,
        knowledge_limit=config.knowledge_limit,
    )
    return web.json_response({"instructions": instructions})


def setup_routes(app: web.Application) -> None:
    router = app.router
    router.add_post("/api/memory", _store_memory)
    router.add_post("/api/memory/bulk", _store_memories)
    router.add_get("/api/memory/search", _search_memories)
    router.add_get("/api/memory", _list_memories)
    router.add_delete("/api/memory/{memory_id}", _delete_memory)

    router.add_get("/api/knowledge", _list_knowledge)
    router.add_post("/api/knowledge", _upsert_knowledge)
    router.add_delete("/api/knowledge/{entry_id}", _delete_knowledge)

    router.add_get("/api/conversations", _list_conversations)
    router.add_post("/api/conversations", _create_conversation)
    router.add_get("/api/conversations/{conversation_id}", _get_conversation)
    router.add_delete("/api/conversations/{conversation_id}", _delete_conversation)
    router.add_post("/api/conversations/{conversation_id}/messages", _append_messages)

    router.add_get("/api/personality", _get_personality)
    router.add_post("/api/personality", _update_personality)
    router.add_get("/api/config", _get_config)
    router.add_post("/api/config", _update_config)

    router.add_post("/api/embed", _embed)
    router.add_get("/api/context", _context)
