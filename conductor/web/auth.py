"""Credential endpoints: PKCE sign-in, refresh, status, logout and models."""

from __future__ import annotations

from aiohttp import web

from conductor.llm.models import list_models
from conductor.web.common import json_error, read_body, require, services


async def _start(request: web.Request) -> web.Response:
    session = services(request).credentials.begin_auth()
    return web.json_response({"authUrl": session.authorization_url, "state": session.state})


async def _exchange(request: web.Request) -> web.Response:
    body = await read_body(request)
    require(body, "callbackUrl")
    credential = await services(request).credentials.complete_auth(body["callbackUrl"])
    return web.json_response(
        {
            "ok": True,
            "account": credential.account.to_record(),
            "expiresAt": credential.expires_at.isoformat(),
        }
    )


async def _refresh(request: web.Request) -> web.Response:
    credential = await services(request).credentials.refresh()
    return web.json_response({"ok": True, "expiresAt": credential.expires_at.isoformat()})


async def _status(request: web.Request) -> web.Response:
    return web.json_response(await services(request).credentials.status())


async def _models(request: web.Request) -> web.Response:
    svc = services(request)
    credential = await svc.credentials.current_credential()
    if credential is None:
        return json_error("No authentication. Sign in or set an API key first.", 401)
    return web.json_response(await list_models(credential, svc.upstream_transport))


async def _logout(request: web.Request) -> web.Response:
    await services(request).credentials.logout()
    return web.json_response({"ok": True, "message": "Auth cleared"})


def setup_routes(app: web.Application) -> None:
    app.router.add_post("/api/auth/start", _start)
    app.router.add_post("/api/auth/exchange", _exchange)
    app.router.add_post("/api/auth/refresh", _refresh)
    app.router.add_get("/api/auth/status", _status)
    app.router.add_get("/api/auth/models", _models)
    app.router.add_delete("/api/auth", _logout)
