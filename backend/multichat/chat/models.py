"""Data models for the chat core."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

from ..core.errors import InvalidChannelError

_CHANNEL_RE = re.compile(r"^[a-z0-9_]{1,25}$")


def canonical_channel(name: str) -> str:
    """Canonicalize a channel name: strip `#` and whitespace, lowercase.

    Raises InvalidChannelError when the result is not a Twitch login.
    """
    if not isinstance(name, str):
        raise InvalidChannelError(f"channel name must be a string, got {type(name).__name__}")
    channel = name.strip().lstrip("#").lower()
    if not _CHANNEL_RE.match(channel):
        raise InvalidChannelError(f"invalid channel name: {name!r}")
    return channel


@dataclass(frozen=True)
class Badge:
    """A chat badge, e.g. subscriber/12."""

    name: str
    version: str


@dataclass(frozen=True)
class EmotePositions:
    """One emote id and every (start, end) range it occupies in the text.

    Ranges are inclusive character offsets, as Twitch sends them.
    """

    id: str
    ranges: Tuple[Tuple[int, int], ...]


@dataclass(frozen=True)
class MessageFlags:
    is_subscriber: bool = False
    is_moderator: bool = False
    is_vip: bool = False


@dataclass(frozen=True)
class ChatMessage:
    """Represents a single normalized chat message. Never mutated."""

    id: str
    channel: str
    username: str
    text: str
    color_hex: str
    sent_at: int  # epoch milliseconds
    badges: Tuple[Badge, ...] = ()
    emotes: Tuple[EmotePositions, ...] = ()
    flags: MessageFlags = field(default_factory=MessageFlags)
    login: str = ""
    user_type: str = "viewer"
    is_action: bool = False  # /me messages

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape pushed to browser sessions."""
        return {
            "id": self.id,
            "channel": self.channel,
            "username": self.username,
            "login": self.login,
            "text": self.text,
            "color": self.color_hex,
            "badges": [{"name": b.name, "version": b.version} for b in self.badges],
            "emotes": [
                {"id": e.id, "ranges": [[start, end] for start, end in e.ranges]}
                for e in self.emotes
            ],
            "sentAt": self.sent_at,
            "isSubscriber": self.flags.is_subscriber,
            "isModerator": self.flags.is_moderator,
            "isVip": self.flags.is_vip,
            "userType": self.user_type,
            "isAction": self.is_action,
        }
