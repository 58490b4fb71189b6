"""Error taxonomy for the chat core.

None of these escape to the event loop: the pool and the subscription layer
catch them and turn them into booleans or `chat-status` notices.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for chat core failures."""


class ChatConnectionError(ChatError, ConnectionError):
    """The shared IRC connection could not be established or was lost."""


class AckTimeoutError(ChatError, TimeoutError):
    """The server did not acknowledge a JOIN/PART in time."""

    def __init__(self, command: str, channel: str, timeout: float) -> None:
        super().__init__(f"{command} #{channel} not acknowledged within {timeout:g}s")
        self.command = command
        self.channel = channel
        self.timeout = timeout


class JoinTimeoutError(AckTimeoutError):
    def __init__(self, channel: str, timeout: float) -> None:
        super().__init__("JOIN", channel, timeout)


class LeaveTimeoutError(AckTimeoutError):
    def __init__(self, channel: str, timeout: float) -> None:
        super().__init__("PART", channel, timeout)


class JoinRejectedError(ChatError):
    """Twitch refused the join (suspended, banned or unknown channel)."""

    def __init__(self, channel: str, reason: str) -> None:
        super().__init__(f"JOIN #{channel} rejected: {reason}")
        self.channel = channel
        self.reason = reason


class MalformedMessageError(ChatError, ValueError):
    """A raw PRIVMSG is missing fields required to build a ChatMessage."""


class InvalidChannelError(ChatError, ValueError):
    """A channel name cannot be canonicalized."""
