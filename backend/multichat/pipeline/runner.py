"""Application runner: starts the API server and keeps the chat pool warm."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Optional

from loguru import logger

from ..api.server import create_api
from ..config.settings import Settings
from ..core.errors import ChatConnectionError
from ..core.logging import setup_logging
from .builder import build_chat_service


class AppRunner:
    """Coordinates settings, the chat service and the API lifecycle."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings.load()
        self.service = build_chat_service(self.settings)
        # The API lifespan runs the message pump and closes the pool.
        self.api = create_api(self.service)

    async def run(self) -> None:
        """Run FastAPI (Uvicorn) until cancelled, with an eager IRC connect and heartbeat."""
        setup_logging()

        import uvicorn  # local import to avoid hard dependency at import time

        server = uvicorn.Server(
            uvicorn.Config(self.api, host=self.settings.host, port=self.settings.port, log_level="info")
        )
        server_task = asyncio.create_task(server.serve())

        # Connect up front; if this fails the first join retries.
        try:
            await self.service.pool.connect()
        except ChatConnectionError as exc:
            logger.warning(f"Initial Twitch IRC connect failed: {exc}")

        async def _heartbeat():
            while True:
                try:
                    pool, manager = self.service.pool, self.service.manager
                    logger.debug(
                        f"Heartbeat state={pool.connection_state.value} joined={len(pool.joined_channels)} "
                        f"sessions={manager.subscriber_count} published={self.service.bus.published}"
                    )
                    await asyncio.sleep(30.0)
                except asyncio.CancelledError:
                    break
                except Exception as exc:  # pragma: no cover
                    logger.warning(f"Heartbeat error: {exc}")
                    await asyncio.sleep(30.0)

        heartbeat_task = asyncio.create_task(_heartbeat())

        try:
            await server_task
        finally:
            heartbeat_task.cancel()
            with contextlib.suppress(Exception):
                await heartbeat_task
            await self.service.pool.close()
