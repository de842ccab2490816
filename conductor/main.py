"""Conductor entry point."""

import asyncio
import logging

from conductor.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


async def _serve() -> None:
    from conductor.web.server import ApiServer

    server = ApiServer()
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()


def main() -> None:
    """Start the HTTP API and serve until interrupted."""
    logger.info("Data directory: %s", settings.data_dir.resolve())
    if settings.workspace_dir:
        logger.info("Workspace directory: %s", settings.workspace_dir)
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
