"""Instruction assembly for a turn.

Sections always appear in this order, and empty ones are left out:

1. identity preamble, then any workspace files
2. operating rules, personality rules, expertise, custom instructions
3. ``## Known Facts``
4. ``## Relevant Memories``
5. ``## Live Environment``
6. the agent-loop addendum (continuations only)
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from conductor.config import settings
from conductor.conversations.models import UserMessage

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from conductor.conversations.models import Message
    from conductor.memory.models import KnowledgeEntry, Personality
    from conductor.memory.store import MemoryStore

logger = logging.getLogger(__name__)

WORKSPACE_FILES = ("SOUL.md", "USER.md", "TOOLS.md", "AGENTS.md")

OPERATING_RULES = """\
## How You Work
You have SKILLS (tools) that perform real actions in the desktop environment. \
When you call a skill, the action runs for real and you get the result back.

1. When asked to DO something, call the appropriate skill. Do not just describe it.
2. Only use the skills provided to you. Do not invent capabilities.
3. If no skill fits, say so honestly.
4. For multi-step tasks, call several skills in sequence.
5. Keep text brief while executing skills.
6. If a skill fails, explain the error and suggest an alternative.
7. Use the exact parameter names and types each skill declares."""

CONTINUATION_ADDENDUM = """\
## Agent Loop: Tool Results Received
The tools you called have been executed. Their results are included below.

NOW EVALUATE:
1. Did each tool succeed? Check every result for errors.
2. Is the user's ORIGINAL GOAL fully achieved?
3. If yes, reply with a brief, natural summary of what was done using {escape_hatch}.
4. If not, call more tools to keep working toward the goal.
5. If a tool failed, try another approach or explain what went wrong.

You may call more tools here. Do not stop early if steps remain."""


def _read_workspace_file(directory: Path, filename: str) -> str:
    """Raw text of a workspace file, or empty string if missing."""
    path = directory / filename
    if path.is_file():
        try:
            return path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError):
            logger.warning("Could not read workspace file %s", path, exc_info=True)
    return ""


def _workspace_sections(directory: Path | None) -> list[str]:
    if directory is None:
        return []
    return [text for name in WORKSPACE_FILES if (text := _read_workspace_file(directory, name))]


def format_knowledge(entries: Sequence[KnowledgeEntry], limit: int) -> str:
    lines = []
    for entry in list(entries)[:limit]:
        value = entry.value if isinstance(entry.value, str) else json.dumps(entry.value)
        lines.append(f"[{entry.category}] {entry.key}: {value}")
    return "\n".join(lines)


async def _memory_section(memory_store: MemoryStore | None, query: str, top_k: int) -> str:
    """Bullet list of memories relevant to *query*; empty on any failure."""
    if memory_store is None or not query.strip():
        return ""
    try:
        result = await memory_store.search(query, k=top_k)
    except Exception:
        logger.exception("Memory retrieval failed")
        return ""
    return "\n".join(f"- [{m.category}] {m.content}" for m in result.results)


def latest_user_message(history: Sequence[Message]) -> str:
    for message in reversed(history):
        if isinstance(message, UserMessage):
            return message.content
    return ""


async def build_instructions(
    personality: Personality,
    knowledge: Sequence[KnowledgeEntry],
    user_message: str,
    history: Sequence[Message],
    environment: str | None,
    memory_store: MemoryStore | None = None,
    *,
    top_k: int = 10,
    knowledge_limit: int = 30,
    continuation: bool = False,
    workspace_dir: Path | None = None,
) -> str:
    """Assemble the instructions block for one turn.

    Args:
        personality: Identity, tone and rules.
        knowledge: Known facts; the first ``knowledge_limit`` are included.
        user_message: The message memories are retrieved for. On a
            continuation, pass an empty string to use the latest user
            message in ``history``.
        history: Recent conversation messages.
        environment: Caller-supplied snapshot, included verbatim.
        memory_store: Source of relevant memories; None skips retrieval.
        continuation: Append the agent-loop evaluation addendum.
        workspace_dir: Defaults to ``settings.workspace_dir``.
    """
    parts: list[str] = []

    preamble = [
        f"You are {personality.name}, {personality.role}.",
        f"Tone: {personality.tone}. Style: {personality.style}.",
    ]
    parts.append("\n".join(preamble))
    parts.extend(_workspace_sections(workspace_dir or settings.workspace_dir))

    parts.append(OPERATING_RULES)
    if personality.rules:
        parts.append("## Rules\n" + "\n".join(f"- {rule}" for rule in personality.rules))
    if personality.expertise:
        parts.append("Expertise: " + ", ".join(personality.expertise))
    if personality.custom_instructions.strip():
        parts.append(personality.custom_instructions.strip())

    facts = format_knowledge(knowledge, knowledge_limit)
    if facts:
        parts.append(f"## Known Facts\n{facts}")

    query = user_message or latest_user_message(history)
    memories = await _memory_section(memory_store, query, top_k)
    if memories:
        parts.append(f"## Relevant Memories\n{memories}")

    if environment and environment.strip():
        parts.append(f"## Live Environment\n{environment}")

    if continuation:
        parts.append(CONTINUATION_ADDENDUM.format(escape_hatch=settings.escape_hatch_tool))

    return "\n\n".join(parts)
