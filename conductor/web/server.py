"""aiohttp application for the conductor HTTP surface.

Uses aiohttp's AppRunner/TCPSite for non-blocking start/stop, so the server
can share an event loop with the rest of the shell.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from aiohttp import web
from pydantic import ValidationError

from conductor.config import settings
from conductor.errors import AuthError, ConfigurationError
from conductor.services import Services
from conductor.web import auth, chat, data
from conductor.web.common import SERVICES, RequestError, json_error

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    detail = first.get("msg", "invalid value")
    return f"{location}: {detail}" if location else detail


@web.middleware
async def _error_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Map core exceptions to JSON error responses."""
    try:
        return await handler(request)
    except RequestError as exc:
        return json_error(str(exc), 400)
    except ValidationError as exc:
        return json_error(_validation_message(exc), 400)
    except ConfigurationError as exc:
        return json_error(str(exc), 401)
    except AuthError as exc:
        logger.warning("Auth request failed: %s", exc)
        return json_error(str(exc), 400)


async def _health(request: web.Request) -> web.Response:
    """GET /health: basic liveness check."""
    return web.json_response({"status": "ok"})


def create_app(services: Services | None = None) -> web.Application:
    """Build the aiohttp Application with every route registered."""
    app = web.Application(middlewares=[_error_middleware])
    app[SERVICES] = services or Services.get()
    app.router.add_get("/health", _health)
    chat.setup_routes(app)
    auth.setup_routes(app)
    data.setup_routes(app)
    return app


class ApiServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        services: Services | None = None,
    ) -> None:
        self.host = host or settings.api_host
        self.port = port or settings.api_port
        self._services = services
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        app = create_app(self._services)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Conductor API listening on http://%s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Conductor API stopped")
