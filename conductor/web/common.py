"""Request helpers shared by the route modules."""

from __future__ import annotations

from typing import Any

from aiohttp import web

from conductor.errors import ConductorError
from conductor.services import Services

SERVICES = web.AppKey("services", Services)


class RequestError(ConductorError):
    """The request body or query string is unusable (HTTP 400)."""


def services(request: web.Request) -> Services:
    return request.app[SERVICES]


def json_error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


async def read_body(request: web.Request) -> dict[str, Any]:
    """Parse a JSON object body. An empty body counts as ``{}``."""
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except (ValueError, UnicodeDecodeError) as exc:
        msg = "invalid JSON"
        raise RequestError(msg) from exc
    if not isinstance(body, dict):
        msg = "JSON body must be an object"
        raise RequestError(msg)
    return body


def require(body: dict[str, Any], *names: str) -> None:
    missing = [n for n in names if body.get(n) in (None, "")]
    if missing:
        msg = f"{', '.join(missing)} required"
        raise RequestError(msg)


def int_param(request: web.Request, name: str, default: int) -> int:
    raw = request.query.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError as exc:
        msg = f"{name} must be an integer"
        raise RequestError(msg) from exc
