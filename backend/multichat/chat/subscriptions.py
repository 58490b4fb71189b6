"""Subscription lifecycle: per-session channel wants and shared refcounts.

Each browser session is a Subscriber with its own set of wanted channels.
The refcount of a channel is the number of live subscribers wanting it; the
pool is asked to join on 0->1 and to leave on 1->0. Both the refcount
decision and the pool call run under a per-channel lock, so two sessions
racing for the same new channel produce exactly one JOIN.

Invariant: refcount(c) > 0 iff c is in the pool's joined set.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from loguru import logger

from ..core.errors import ChatConnectionError, InvalidChannelError
from ..core.locks import KeyedLock
from .models import canonical_channel
from .pool import ConnectionPool


@dataclass(frozen=True)
class SubscriptionResult:
    """Outcome of a subscribe/unsubscribe, shaped like a chat-status notice."""

    channel: str
    status: str  # connected | disconnected | failed | error
    message: str
    changed: bool = False

    def as_status(self) -> Dict[str, str]:
        return {"channel": self.channel, "status": self.status, "message": self.message}


class Subscriber:
    """One downstream session: wanted channels plus a bounded outbound queue.

    `deliver()` never blocks. When the queue is full the oldest pending event
    is dropped so a slow client cannot stall fan-out to the others.
    """

    def __init__(self, session_id: str, queue_size: int = 256) -> None:
        self.session_id = session_id
        self.wanted: Set[str] = set()
        self.closed = False
        self.dropped = 0
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

    def wants(self, channel: str) -> bool:
        return channel in self.wanted

    def deliver(self, event: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            self.outbox.put_nowait(event)
        except asyncio.QueueFull:
            try:
                self.outbox.get_nowait()
            except asyncio.QueueEmpty:  # pragma: no cover - single-threaded loop
                pass
            self.outbox.put_nowait(event)
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.log("FANOUT", f"Slow consumer {self.session_id}: dropped {self.dropped} event(s)")
        return True


class SubscriptionManager:
    """Reconciles subscriber wants with the pool's joined channels."""

    def __init__(self, pool: ConnectionPool, queue_size: int = 256) -> None:
        self.pool = pool
        self.queue_size = queue_size
        self._subscribers: Dict[str, Subscriber] = {}
        self._audience: Dict[str, Set[str]] = {}
        self._locks = KeyedLock()

    # ---------------------------------------------------------------- queries

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def get(self, session_id: str) -> Optional[Subscriber]:
        return self._subscribers.get(session_id)

    def refcount(self, channel: str) -> int:
        try:
            channel = canonical_channel(channel)
        except InvalidChannelError:
            return 0
        return len(self._audience.get(channel, ()))

    def channels(self) -> Dict[str, int]:
        """Channel -> refcount for every channel with at least one subscriber."""
        return {channel: len(ids) for channel, ids in sorted(self._audience.items())}

    def subscribers_for(self, channel: str) -> List[Subscriber]:
        ids = self._audience.get(channel, ())
        return [self._subscribers[sid] for sid in ids if sid in self._subscribers]

    # -------------------------------------------------------------- lifecycle

    def register(self, session_id: Optional[str] = None) -> Subscriber:
        session_id = session_id or uuid.uuid4().hex
        if session_id in self._subscribers:
            raise ValueError(f"session {session_id} already registered")
        subscriber = Subscriber(session_id, self.queue_size)
        self._subscribers[session_id] = subscriber
        logger.log("SUB", f"Session {session_id} registered")
        return subscriber

    async def subscribe(self, session_id: str, name: Any) -> SubscriptionResult:
        try:
            channel = canonical_channel(name)
        except InvalidChannelError as exc:
            return SubscriptionResult(str(name), "failed", str(exc))

        subscriber = self._subscribers.get(session_id)
        if subscriber is None or subscriber.closed:
            return SubscriptionResult(channel, "failed", f"Unknown session {session_id}")

        async with self._locks.hold(channel):
            if subscriber.wants(channel):
                return SubscriptionResult(channel, "connected", f"Already connected to {channel} chat")

            first = not self._audience.get(channel)
            if first:
                try:
                    await self.pool.connect()
                except ChatConnectionError as exc:
                    logger.warning(f"Cannot join #{channel}: {exc}")
                    return SubscriptionResult(channel, "error", f"Error connecting to {channel}: {exc}")
                if not await self.pool.join_channel(channel):
                    return SubscriptionResult(channel, "failed", f"Failed to connect to {channel} chat")

            if subscriber.closed:
                # Session went away while the JOIN was in flight.
                if first:
                    await self._release(channel)
                return SubscriptionResult(channel, "failed", "Session closed")

            audience = self._audience.setdefault(channel, set())
            audience.add(session_id)
            subscriber.wanted.add(channel)
            logger.log("SUB", f"{session_id} +#{channel} (refcount={len(audience)})")
            return SubscriptionResult(channel, "connected", f"Connected to {channel} chat", changed=True)

    async def unsubscribe(self, session_id: str, name: Any) -> SubscriptionResult:
        try:
            channel = canonical_channel(name)
        except InvalidChannelError as exc:
            return SubscriptionResult(str(name), "failed", str(exc))

        subscriber = self._subscribers.get(session_id)
        if subscriber is None:
            return SubscriptionResult(channel, "failed", f"Unknown session {session_id}")

        async with self._locks.hold(channel):
            if not subscriber.wants(channel):
                return SubscriptionResult(channel, "disconnected", f"Not connected to {channel} chat")

            audience = self._audience.get(channel, set())
            if audience == {session_id}:
                if not await self.pool.leave_channel(channel):
                    if not subscriber.closed:
                        return SubscriptionResult(
                            channel, "failed", f"Failed to disconnect from {channel} chat"
                        )
                    await self.pool.discard_channel(channel)

            audience.discard(session_id)
            if not audience:
                self._audience.pop(channel, None)
            subscriber.wanted.discard(channel)
            logger.log("SUB", f"{session_id} -#{channel} (refcount={len(audience)})")
            return SubscriptionResult(channel, "disconnected", f"Disconnected from {channel} chat", changed=True)

    async def disconnect_subscriber(self, session_id: str) -> None:
        """Drop every want of a session, then forget the session."""
        subscriber = self._subscribers.get(session_id)
        if subscriber is None:
            return
        subscriber.closed = True
        while subscriber.wanted:
            await self.unsubscribe(session_id, min(subscriber.wanted))
        self._subscribers.pop(session_id, None)
        logger.log("SUB", f"Session {session_id} removed")

    async def _release(self, channel: str) -> None:
        if not await self.pool.leave_channel(channel):
            await self.pool.discard_channel(channel)
