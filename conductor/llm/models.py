"""Model catalog: live from the models endpoint for API keys, presets otherwise."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from conductor.auth.manager import ApiKeyCredential
from conductor.config import settings

if TYPE_CHECKING:
    from conductor.auth.manager import Credential

logger = logging.getLogger(__name__)

PRESET_GROUPS: dict[str, list[str]] = {
    "Flagship": [
        "gpt-5.2",
        "gpt-5.2-pro",
        "gpt-5.1",
        "gpt-5",
        "gpt-5-pro",
        "gpt-5-mini",
        "gpt-5-nano",
    ],
    "Codex": [
        "gpt-5.3-codex",
        "gpt-5.2-codex",
        "gpt-5.1-codex",
        "gpt-5.1-codex-max",
        "gpt-5.1-codex-mini",
        "gpt-5-codex",
    ],
    "Reasoning": ["o4-mini", "o3", "o3-pro", "o3-mini", "o1", "o1-pro"],
    "GPT-4.1": ["gpt-4.1", "gpt-4.1-mini", "gpt-4.1-nano"],
    "GPT-4o": ["gpt-4o", "gpt-4o-mini"],
}

PRESET_MODELS: list[dict[str, str]] = [
    {"id": model_id, "owned_by": "openai", "group": group}
    for group, ids in PRESET_GROUPS.items()
    for model_id in ids
]

CHAT_MODEL_PREFIXES = ("gpt-", "o1", "o3", "o4", "chatgpt-")


def _catalog(models: list[dict[str, Any]], source: str) -> dict[str, Any]:
    return {"models": models, "total": len(models), "source": source}


async def list_models(
    credential: Credential,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """Chat-capable models for *credential*.

    OAuth tokens cannot read the models endpoint, so they always get the
    presets. An API key gets the live list, newest first, falling back to
    the presets if the request fails.
    """
    if not isinstance(credential, ApiKeyCredential):
        return _catalog(PRESET_MODELS, "presets")

    try:
        async with httpx.AsyncClient(timeout=15, transport=transport) as client:
            resp = await client.get(
                settings.models_url,
                headers={"Authorization": f"Bearer {credential.key}"},
            )
        resp.raise_for_status()
        data = resp.json().get("data") or []
    except (httpx.HTTPError, ValueError, AttributeError) as exc:
        logger.warning("Live model fetch failed, using presets: %s", exc)
        return _catalog(PRESET_MODELS, "presets")

    models = [
        {"id": m["id"], "owned_by": m.get("owned_by"), "created": m.get("created")}
        for m in data
        if isinstance(m, dict) and str(m.get("id", "")).startswith(CHAT_MODEL_PREFIXES)
    ]
    models.sort(key=lambda m: m.get("created") or 0, reverse=True)
    return _catalog(models, "live")
