"""Composition root: pool → normalizer → subscriptions → event bus.

The pool is created here, once per service, and handed to everything that
needs it. Nothing in the chat core reaches for a module-level client.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..api.events import ChatEventBus
from ..chat.pool import ConnectionPool, TransportFactory
from ..chat.subscriptions import SubscriptionManager
from ..config.settings import Settings
from .handlers import register_handlers


@dataclass
class ChatService:
    settings: Settings
    pool: ConnectionPool
    manager: SubscriptionManager
    bus: ChatEventBus


def build_chat_service(settings: Settings, transport_factory: Optional[TransportFactory] = None) -> ChatService:
    """Create the pool, subscription manager and event bus and wire them."""
    pool = ConnectionPool(settings, transport_factory=transport_factory)
    manager = SubscriptionManager(pool, queue_size=settings.subscriber_queue_size)
    bus = ChatEventBus(manager, history_size=settings.history_size)
    register_handlers(pool.state, manager, bus)
    return ChatService(settings=settings, pool=pool, manager=manager, bus=bus)
