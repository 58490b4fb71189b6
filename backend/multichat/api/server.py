"""FastAPI app setup and dependency wiring."""

from __future__ import annotations

import asyncio
import contextlib

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from ..pipeline.builder import ChatService
from .routes import build_router
from .websocket import handle_chat_ws


async def pump_messages(service: ChatService) -> None:
    """Forward pool messages to the event bus in receipt order until the pool closes."""
    async for message in service.pool.messages():
        try:
            service.bus.publish(message)
        except Exception as exc:  # pragma: no cover - resiliency
            logger.warning(f"Fan-out failed for message {message.id}: {exc}")
    logger.debug("Message pump stopped")


def create_api(service: ChatService) -> FastAPI:
    """Create FastAPI app with routes, the chat WebSocket endpoint and the pump lifecycle."""

    @contextlib.asynccontextmanager
    async def lifespan(_: FastAPI):
        pump_task = asyncio.create_task(pump_messages(service))
        try:
            yield
        finally:
            await service.pool.close()
            with contextlib.suppress(Exception, asyncio.CancelledError):
                await asyncio.wait_for(pump_task, timeout=5.0)
            logger.info("Chat service stopped")

    api = FastAPI(title="multichat", lifespan=lifespan)

    api.add_middleware(
        CORSMiddleware,
        allow_origins=service.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["Content-Type", "Authorization"],
    )

    # Add HTTP routes
    api.include_router(build_router(service))

    # Register WS handler
    @api.websocket("/ws/chat")
    async def ws_chat(ws: WebSocket):  # noqa: D401
        await handle_chat_ws(ws, service.manager, service.bus)

    logger.info("API created")
    return api
