"""Twitch IRC line parsing and the WebSocket transport underneath the pool."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Protocol

import aiohttp
from loguru import logger

from ..core.errors import ChatConnectionError

# IRC capabilities to request
IRC_CAPS = ("twitch.tv/tags", "twitch.tv/commands", "twitch.tv/membership")

_TAG_ESCAPES = {":": ";", "s": " ", "\\": "\\", "r": "\r", "n": "\n"}


def unescape_tag_value(value: str) -> str:
    """Undo IRCv3 tag value escaping in a single pass."""
    if "\\" not in value:
        return value
    out: List[str] = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "\\" and i + 1 < len(value):
            nxt = value[i + 1]
            out.append(_TAG_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        if ch != "\\":
            out.append(ch)
        i += 1
    return "".join(out)


def parse_irc_tags(tag_string: str) -> Dict[str, str]:
    """Parse IRC tags string into a dictionary.

    Tags format: @key1=value1;key2=value2;...
    """
    tags: Dict[str, str] = {}
    if not tag_string:
        return tags

    if tag_string.startswith("@"):
        tag_string = tag_string[1:]

    for pair in tag_string.split(";"):
        if not pair:
            continue
        if "=" in pair:
            key, value = pair.split("=", 1)
            tags[key] = unescape_tag_value(value)
        else:
            tags[pair] = ""

    return tags


@dataclass
class IrcMessage:
    """One parsed IRC line."""

    command: str = ""
    tags: Dict[str, str] = field(default_factory=dict)
    prefix: str = ""
    params: List[str] = field(default_factory=list)
    trailing: Optional[str] = None

    @property
    def nick(self) -> str:
        """Nick portion of `nick!user@host`, lowercased; empty for server prefixes."""
        if "!" in self.prefix:
            return self.prefix.split("!", 1)[0].lower()
        return ""

    @property
    def channel(self) -> str:
        """First `#channel` param without the `#`, lowercased."""
        for param in self.params:
            if param.startswith("#"):
                return param[1:].lower()
        return ""


def parse_irc_message(raw: str) -> IrcMessage:
    """Parse a raw IRC line into an IrcMessage.

    Unparseable input yields a message with an empty command.
    """
    result = IrcMessage()
    raw = raw.rstrip("\r\n")
    pos = 0

    if raw.startswith("@"):
        space_idx = raw.find(" ")
        if space_idx < 0:
            return result
        result.tags = parse_irc_tags(raw[:space_idx])
        pos = space_idx + 1

    while pos < len(raw) and raw[pos] == " ":
        pos += 1
    if pos >= len(raw):
        return result

    if raw[pos] == ":":
        space_idx = raw.find(" ", pos)
        if space_idx < 0:
            return result
        result.prefix = raw[pos + 1 : space_idx]
        pos = space_idx + 1

    # Trailing starts at the first " :" after the command
    trailing_idx = raw.find(" :", pos)
    if trailing_idx >= 0:
        result.trailing = raw[trailing_idx + 2 :]
        remaining = raw[pos:trailing_idx]
    else:
        remaining = raw[pos:]

    parts = [p for p in remaining.split(" ") if p]
    if not parts:
        return result
    result.command = parts[0].upper()
    result.params = parts[1:]
    return result


# Exponential backoff constants for reconnection
RECONNECT_BACKOFF_FACTOR = 2.0
RECONNECT_JITTER = 0.1  # 10% jitter to prevent thundering herd


class Backoff:
    """Exponential reconnect delay with jitter."""

    def __init__(self, initial: float = 1.0, maximum: float = 60.0) -> None:
        self.initial = initial
        self.maximum = maximum
        self._delay = initial

    @property
    def current(self) -> float:
        return self._delay

    def reset(self) -> None:
        self._delay = self.initial

    def next_delay(self) -> float:
        """Return the next delay (with jitter) and grow the base delay."""
        delay = self._delay
        jitter = delay * RECONNECT_JITTER * (2 * random.random() - 1)
        self._delay = min(max(self._delay, 0.001) * RECONNECT_BACKOFF_FACTOR, self.maximum)
        return max(0.0, delay + jitter)


class IrcTransport(Protocol):
    """Line-oriented connection to the chat network."""

    async def open(self) -> None: ...

    async def send(self, line: str) -> None: ...

    def lines(self) -> AsyncIterator[str]: ...

    async def close(self) -> None: ...


class WebSocketTransport:
    """Twitch IRC over WebSocket using aiohttp.

    One instance per connection attempt; the pool creates a fresh one on
    every reconnect.
    """

    def __init__(self, url: str, heartbeat: float = 60.0) -> None:
        self.url = url
        self.heartbeat = heartbeat
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    async def open(self) -> None:
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(self.url, heartbeat=self.heartbeat)
        except (aiohttp.ClientError, OSError) as exc:
            await self.close()
            raise ChatConnectionError(f"Could not open {self.url}: {exc}") from exc
        logger.log("IRC", f"WebSocket open to {self.url}")

    async def send(self, line: str) -> None:
        if self._ws is None or self._ws.closed:
            raise ChatConnectionError("IRC WebSocket is not open")
        try:
            await self._ws.send_str(line)
        except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as exc:
            raise ChatConnectionError(f"Send failed: {exc}") from exc

    async def lines(self) -> AsyncIterator[str]:
        if self._ws is None:
            raise ChatConnectionError("IRC WebSocket is not open")
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                for line in msg.data.split("\r\n"):
                    if line:
                        yield line
            elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                logger.warning(f"IRC WebSocket ended: {msg.type.name} {self._ws.exception() or ''}")
                break

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
