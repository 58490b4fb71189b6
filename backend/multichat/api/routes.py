"""HTTP routes for health and chat introspection."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from ..chat.models import canonical_channel
from ..core.errors import InvalidChannelError
from ..pipeline.builder import ChatService


def build_router(service: ChatService) -> APIRouter:
    router = APIRouter()
    pool, manager, bus = service.pool, service.manager, service.bus

    @router.get("/healthz")
    async def healthz() -> JSONResponse:
        return JSONResponse(
            {
                "ok": True,
                "state": pool.connection_state.value,
                "joined": sorted(pool.joined_channels),
                "subscribers": manager.subscriber_count,
            }
        )

    @router.get("/api/chat/channels")
    async def list_channels() -> JSONResponse:
        return JSONResponse(
            [{"channel": channel, "subscribers": count} for channel, count in manager.channels().items()]
        )

    @router.get("/api/chat/channels/{channel}/history")
    async def channel_history(channel: str) -> JSONResponse:
        try:
            name = canonical_channel(channel)
        except InvalidChannelError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        return JSONResponse({"channel": name, "messages": bus.history(name)})

    return router
