"""Connection pool state and change notifications.

Tracks the lifecycle of the shared IRC connection (disconnected, connecting,
connected) and the set of joined channels. Provides a simple event listener
mechanism so the API layer can react to state changes without the pool
knowing about WebSockets.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Set

from loguru import logger


StateListener = Callable[[str, Any], None]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class PoolState:
    """Container for the pool's mutable state with change notifications."""

    connection: ConnectionState = ConnectionState.DISCONNECTED
    joined: Set[str] = field(default_factory=set)

    _listeners: List[StateListener] = field(default_factory=list)

    def add_listener(self, listener: StateListener) -> None:
        """Register a listener for state change notifications."""
        self._listeners.append(listener)

    def _notify(self, event: str, value: Any) -> None:
        """Notify all listeners of a state change event."""
        for listener in list(self._listeners):
            try:
                listener(event, value)
            except Exception as exc:  # pragma: no cover - defensive
                logger.warning(f"State listener error: {exc}")

    def set_connection(self, value: ConnectionState) -> None:
        prev = self.connection
        self.connection = value
        if prev != self.connection:
            logger.log("IRC", f"connection {prev.value} -> {self.connection.value}")
            self._notify("state_changed", self.connection)

    def add_channel(self, channel: str) -> None:
        if channel not in self.joined:
            self.joined.add(channel)
            self._notify("channel_joined", channel)

    def remove_channel(self, channel: str) -> None:
        if channel in self.joined:
            self.joined.discard(channel)
            self._notify("channel_left", channel)

    def reject_channel(self, channel: str, reason: str) -> None:
        """Report that the server refused a joined channel on rejoin."""
        if channel in self.joined:
            self._notify("channel_rejected", (channel, reason))

    def clear_channels(self) -> None:
        for channel in sorted(self.joined):
            self.remove_channel(channel)
