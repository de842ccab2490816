"""Optional embedding service client.

Any embedding endpoint that speaks the OpenAI ``/v1/embeddings`` shape works.
When no endpoint or key is configured, every call returns ``None`` and memory
search falls back to keyword overlap.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from conductor.runtime import RuntimeConfig

logger = logging.getLogger(__name__)

MAX_INPUT_CHARS = 8000
EMBEDDING_TIMEOUT = 30.0


class EmbeddingProvider:
    """Fetches a vector for a piece of text, or ``None`` when unavailable."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    async def embed(self, text: str, config: RuntimeConfig) -> list[float] | None:
        if not config.embeddings_enabled:
            return None

        try:
            async with httpx.AsyncClient(
                timeout=EMBEDDING_TIMEOUT, transport=self._transport
            ) as client:
                resp = await client.post(
                    config.embedding_api_url,
                    headers={"Authorization": f"Bearer {config.embedding_api_key}"},
                    json={"model": config.embedding_model, "input": text[:MAX_INPUT_CHARS]},
                )
        except httpx.HTTPError as exc:
            logger.warning("Embedding request failed: %s", exc)
            return None

        if resp.status_code != 200:
            logger.warning(
                "Embedding request rejected (%d): %s", resp.status_code, resp.text[:200]
            )
            return None

        try:
            vector = resp.json()["data"][0]["embedding"]
            vector = [float(x) for x in vector]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("Embedding response had an unexpected shape")
            return None

        if not vector:
            return None
        expected = config.embedding_dimensions
        if expected and len(vector) != expected:
            logger.warning(
                "Embedding has %d dimensions, expected %d; ignoring", len(vector), expected
            )
            return None
        return vector
