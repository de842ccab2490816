"""Tests for the model catalog."""

from datetime import UTC, datetime, timedelta

import httpx

from conductor.auth.manager import ApiKeyCredential, OAuthCredential
from conductor.llm.models import PRESET_MODELS, list_models


async def test_oauth_gets_presets_without_request() -> None:
    def handler(request):
        raise AssertionError("no request expected")

    expires_at = datetime.now(UTC) + timedelta(hours=1)
    credential = OAuthCredential(access_token="at", expires_at=expires_at)
    catalog = await list_models(credential, httpx.MockTransport(handler))

    assert catalog["source"] == "presets"
    assert catalog["total"] == len(PRESET_MODELS)
    assert {"id": "gpt-4o-mini", "owned_by": "openai", "group": "GPT-4o"} in catalog["models"]


async def test_api_key_gets_live_chat_models_newest_first() -> None:
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "data": [
                    {"id": "gpt-4o", "owned_by": "openai", "created": 100},
                    {"id": "text-embedding-3-small", "owned_by": "openai", "created": 300},
                    {"id": "o3-mini", "owned_by": "openai", "created": 200},
                    {"id": "whisper-1", "owned_by": "openai", "created": 50},
                ]
            },
        )

    catalog = await list_models(ApiKeyCredential(key="sk-1"), httpx.MockTransport(handler))

    assert seen[0].headers["Authorization"] == "Bearer sk-1"
    assert catalog["source"] == "live"
    assert [m["id"] for m in catalog["models"]] == ["o3-mini", "gpt-4o"]
    assert catalog["total"] == 2


async def test_live_failure_falls_back_to_presets() -> None:
    def handler(request):
        return httpx.Response(401, json={"error": "bad key"})

    catalog = await list_models(ApiKeyCredential(key="sk-1"), httpx.MockTransport(handler))
    assert catalog["source"] == "presets"
