"""WebSocket endpoint handlers and helpers."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Iterable, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect
from loguru import logger

from ..chat.subscriptions import Subscriber, SubscriptionManager
from .events import ChatEventBus, build_event

# Session cleanups still running after their handler was cancelled
_cleanups: Set[asyncio.Task] = set()


async def handle_chat_ws(ws: WebSocket, manager: SubscriptionManager, bus: ChatEventBus) -> None:
    """Accept a chat session, process join/leave requests, clean up on close.

    Each client event runs in its own task so a JOIN waiting on the server
    never holds up the receive loop; same-channel requests are still ordered
    by the subscription manager's per-channel lock.
    """
    await ws.accept()
    subscriber = manager.register()
    sid = subscriber.session_id
    logger.info(f"Chat client connected: {sid}")
    sender = asyncio.create_task(_drain_outbox(ws, subscriber))
    pending: Set[asyncio.Task] = set()

    def _finished(task: asyncio.Task) -> None:
        pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.opt(exception=task.exception()).warning(f"Chat event failed ({sid})")

    try:
        subscriber.deliver(build_event("hello", {"sessionId": sid}))
        while True:
            raw = await ws.receive_text()
            try:
                payload = json.loads(raw)
            except ValueError:
                subscriber.deliver(build_event("error", {"message": "invalid JSON"}))
                continue
            task = asyncio.create_task(handle_client_event(payload, subscriber, manager, bus))
            pending.add(task)
            task.add_done_callback(_finished)
    except WebSocketDisconnect:
        logger.info(f"Chat client disconnected: {sid}")
    except Exception as exc:  # pragma: no cover
        logger.exception(f"WS error: {exc}")
    finally:
        cleanup = asyncio.create_task(_close_session(sid, [*pending, sender], manager))
        _cleanups.add(cleanup)
        cleanup.add_done_callback(_cleanups.discard)
        await asyncio.shield(cleanup)


async def _close_session(sid: str, tasks: Iterable[asyncio.Task], manager: SubscriptionManager) -> None:
    """Cancel the session's in-flight work, then release its channels."""
    tasks = list(tasks)
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await manager.disconnect_subscriber(sid)


async def handle_client_event(
    payload: Any, subscriber: Subscriber, manager: SubscriptionManager, bus: ChatEventBus
) -> None:
    """Dispatch one client → server event."""
    if not isinstance(payload, dict):
        subscriber.deliver(build_event("error", {"message": "event must be a JSON object"}))
        return

    type_ = payload.get("type")
    if type_ == "join-channel-chat":
        result = await manager.subscribe(subscriber.session_id, _channel_arg(payload))
        bus.send_status(subscriber, result.channel, result.status, result.message)
        if result.status == "connected" and result.changed:
            bus.replay(subscriber, result.channel)
    elif type_ == "leave-channel-chat":
        result = await manager.unsubscribe(subscriber.session_id, _channel_arg(payload))
        bus.send_status(subscriber, result.channel, result.status, result.message)
    elif type_ == "ping":
        subscriber.deliver(build_event("pong"))
    else:
        subscriber.deliver(build_event("error", {"message": f"unknown event type: {type_!r}"}))


def _channel_arg(payload: Dict[str, Any]) -> Optional[str]:
    data = payload.get("data")
    if isinstance(data, str):
        return data
    if isinstance(data, dict) and "channel" in data:
        return data["channel"]
    return payload.get("channel")


async def _drain_outbox(ws: WebSocket, subscriber: Subscriber) -> None:
    while True:
        evt = await subscriber.outbox.get()
        try:
            await ws.send_json(evt)
        except Exception as exc:  # pragma: no cover - network failure is best-effort
            logger.warning(f"Chat client send failed ({subscriber.session_id}): {exc}")
            return
