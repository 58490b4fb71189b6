"""Pool state handlers: relay connection changes and refused rejoins to watching sessions."""

from __future__ import annotations

from typing import Any

from loguru import logger

from ..api.events import ChatEventBus
from ..chat.subscriptions import SubscriptionManager
from ..core.state import ConnectionState, PoolState


def register_handlers(state: PoolState, manager: SubscriptionManager, bus: ChatEventBus) -> None:
    """Wire pool state notifications to chat-status broadcasts."""
    seen = {"connected": False, "lost": False}

    def _on_state(event: str, value: Any) -> None:
        if event == "channel_left":
            bus.forget(value)
            return
        if event == "channel_rejected":
            channel, reason = value
            bus.broadcast_status(channel, "error", f"Twitch refused {channel} chat: {reason}")
            return
        if event != "state_changed":
            return

        if value is ConnectionState.CONNECTED:
            if seen["lost"]:
                for channel in manager.channels():
                    bus.broadcast_status(channel, "connected", f"Reconnected to {channel} chat")
            seen["connected"], seen["lost"] = True, False
        elif value is ConnectionState.DISCONNECTED and seen["connected"] and not seen["lost"]:
            seen["lost"] = True
            channels = manager.channels()
            if channels:
                logger.warning(f"Chat connection lost; notifying watchers of {len(channels)} channel(s)")
            for channel in channels:
                bus.broadcast_status(channel, "error", f"Lost connection to {channel} chat; reconnecting")

    state.add_listener(_on_state)
