"""Chat event bus for server → browser WebSocket fan-out.

Every event is JSON with shape { v: 1, type, data, ts, id }. Chat messages go
only to sessions whose wanted set contains the message's channel; delivery is
a non-blocking enqueue on each session's outbox, drained by that session's
own sender task.
"""

from __future__ import annotations

import time
import uuid
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from loguru import logger

from ..chat.models import ChatMessage
from ..chat.subscriptions import Subscriber, SubscriptionManager


def build_event(type_: str, data: Optional[Any] = None) -> Dict[str, Any]:
    """Wrap a payload in the versioned event envelope."""
    return {
        "v": 1,
        "type": type_,
        "data": data if data is not None else {},
        "ts": int(time.time() * 1000),
        "id": str(uuid.uuid4()),
    }


class ChatEventBus:
    """In-memory filtered fan-out with per-channel recent history."""

    def __init__(self, manager: SubscriptionManager, history_size: int = 50) -> None:
        self.manager = manager
        self.history_size = history_size
        self.published = 0
        self._history: Dict[str, Deque[Dict[str, Any]]] = {}

    def publish(self, message: ChatMessage) -> int:
        """Send a chat message to every interested session; return the count."""
        evt = build_event("chat-message", message.to_dict())
        if self.history_size:
            ring = self._history.get(message.channel)
            if ring is None:
                ring = self._history[message.channel] = deque(maxlen=self.history_size)
            ring.append(evt)

        delivered = 0
        for subscriber in self.manager.subscribers_for(message.channel):
            if subscriber.deliver(evt):
                delivered += 1
        self.published += 1
        return delivered

    def send_status(self, subscriber: Subscriber, channel: str, status: str, message: str) -> bool:
        """Send a chat-status notice to one session."""
        return subscriber.deliver(
            build_event("chat-status", {"channel": channel, "status": status, "message": message})
        )

    def broadcast_status(self, channel: str, status: str, message: str) -> int:
        """Send a chat-status notice to every session watching a channel."""
        evt = build_event("chat-status", {"channel": channel, "status": status, "message": message})
        sent = sum(1 for s in self.manager.subscribers_for(channel) if s.deliver(evt))
        logger.log("FANOUT", f"chat-status {status} for #{channel} → {sent} session(s)")
        return sent

    def history(self, channel: str) -> List[Dict[str, Any]]:
        """Buffered chat-message payloads for a channel, oldest first."""
        return [evt["data"] for evt in self._history.get(channel, ())]

    def replay(self, subscriber: Subscriber, channel: str) -> int:
        """Re-send buffered messages to a session that just joined."""
        ring = self._history.get(channel, ())
        for evt in ring:
            subscriber.deliver(evt)
        return len(ring)

    def forget(self, channel: str) -> None:
        self._history.pop(channel, None)
