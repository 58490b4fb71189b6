"""ConnectionPool: the single shared IRC connection to Twitch chat.

One pool per service. It owns the transport, the set of joined channels and
the reconnect loop. Channel membership is idempotent (joining a joined
channel or leaving an unjoined one is a no-op) and every JOIN/PART waits for
the server's acknowledgment, bounded by `ack_timeout_secs`.

Twitch does not keep channel membership across connections, so every new
session re-sends JOIN for all joined channels before the read loop resumes
delivering messages.

Normalized messages are exposed through `messages()`, an async iterator per
consumer, in the order the transport delivered them.
"""

from __future__ import annotations

import asyncio
import contextlib
import random
from typing import AsyncIterator, Callable, Dict, FrozenSet, List, Optional, Tuple

from loguru import logger

from ..config.settings import Settings
from ..core.errors import (
    AckTimeoutError,
    ChatConnectionError,
    InvalidChannelError,
    JoinRejectedError,
    JoinTimeoutError,
    LeaveTimeoutError,
    MalformedMessageError,
)
from ..core.locks import KeyedLock
from ..core.state import ConnectionState, PoolState
from .irc import IRC_CAPS, Backoff, IrcMessage, IrcTransport, WebSocketTransport, parse_irc_message
from .models import ChatMessage, canonical_channel
from .normalizer import normalize

# NOTICE msg-ids that mean a JOIN will never be acknowledged
JOIN_REJECTIONS = frozenset(
    {
        "msg_channel_suspended",
        "msg_banned",
        "tos_ban",
        "msg_room_not_found",
        "invalid_user",
    }
)

TransportFactory = Callable[[], IrcTransport]
Normalizer = Callable[[IrcMessage], ChatMessage]


class ConnectionPool:
    """Shared anonymous IRC connection with reference-free join/leave.

    Reference counting lives in SubscriptionManager; the pool only keeps the
    joined set consistent with the server.
    """

    def __init__(
        self,
        settings: Settings,
        transport_factory: Optional[TransportFactory] = None,
        normalizer: Normalizer = normalize,
        state: Optional[PoolState] = None,
    ) -> None:
        self.settings = settings
        self.state = state or PoolState()
        self._factory: TransportFactory = transport_factory or (lambda: WebSocketTransport(settings.irc_url))
        self._normalize = normalizer
        self._backoff = Backoff(settings.reconnect_initial_delay, settings.reconnect_max_delay)

        self._transport: Optional[IrcTransport] = None
        self._nick = ""
        self._closing = False
        self._connecting: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        self._locks = KeyedLock()
        self._waiters: Dict[Tuple[str, str], asyncio.Future] = {}
        self._consumers: List[asyncio.Queue] = []

    # ------------------------------------------------------------------ state

    @property
    def connection_state(self) -> ConnectionState:
        return self.state.connection

    @property
    def joined_channels(self) -> FrozenSet[str]:
        return frozenset(self.state.joined)

    @property
    def nick(self) -> str:
        return self._nick

    @property
    def is_closed(self) -> bool:
        return self._closing

    # ------------------------------------------------------------- lifecycle

    async def connect(self) -> None:
        """Open the shared connection unless it is already open or opening.

        Raises ChatConnectionError on failure; the pool stays disconnected
        and a later call retries.
        """
        if self._closing:
            raise ChatConnectionError("connection pool is closed")
        if self.state.connection is ConnectionState.CONNECTED:
            return
        if self._connecting is None or self._connecting.done():
            self._connecting = asyncio.create_task(self._open_session())
        await asyncio.shield(self._connecting)

    async def close(self) -> None:
        """Stop reconnecting, drop the connection and end all message iterators."""
        if self._closing:
            return
        self._closing = True
        current = asyncio.current_task()
        for task in (self._reconnect_task, self._connecting, self._reader_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task

        transport, self._transport = self._transport, None
        if transport is not None:
            with contextlib.suppress(Exception):
                await transport.close()

        self._fail_waiters(ChatConnectionError("connection pool closed"))
        self.state.clear_channels()
        self.state.set_connection(ConnectionState.DISCONNECTED)
        for queue in list(self._consumers):
            queue.put_nowait(None)
        logger.info("Connection pool closed")

    async def _open_session(self) -> None:
        self.state.set_connection(ConnectionState.CONNECTING)
        transport = self._factory()
        nick = f"justinfan{random.randint(10000, 99999)}"
        try:
            await transport.open()
            lines = transport.lines().__aiter__()
            await asyncio.wait_for(
                self._handshake(transport, lines, nick), self.settings.connect_timeout_secs
            )
            # Membership does not survive a new session; re-issue every JOIN
            # before the read loop starts delivering messages.
            for channel in sorted(self.state.joined):
                await transport.send(f"JOIN #{channel}")
                logger.log("IRC", f"Rejoin sent for #{channel}")
        except Exception as exc:
            with contextlib.suppress(Exception):
                await transport.close()
            self.state.set_connection(ConnectionState.DISCONNECTED)
            if isinstance(exc, ChatConnectionError):
                raise
            if isinstance(exc, asyncio.TimeoutError):
                raise ChatConnectionError(
                    f"IRC handshake timed out after {self.settings.connect_timeout_secs:g}s"
                ) from exc
            raise ChatConnectionError(f"IRC connect failed: {exc}") from exc

        if self._closing:
            with contextlib.suppress(Exception):
                await transport.close()
            raise ChatConnectionError("connection pool is closed")

        self._transport = transport
        self._nick = nick
        self._backoff.reset()
        self.state.set_connection(ConnectionState.CONNECTED)
        self._reader_task = asyncio.create_task(self._read_loop(transport, lines))
        logger.success(f"Connected to Twitch IRC as {nick}")

    async def _handshake(self, transport: IrcTransport, lines: AsyncIterator[str], nick: str) -> None:
        await transport.send(f"CAP REQ :{' '.join(IRC_CAPS)}")
        await transport.send("PASS SCHMOOPIIE")
        await transport.send(f"NICK {nick}")
        async for line in lines:
            msg = parse_irc_message(line)
            if msg.command == "001":
                return
            if msg.command == "PING":
                await transport.send(f"PONG :{msg.trailing or 'tmi.twitch.tv'}")
            elif msg.command == "NOTICE":
                raise ChatConnectionError(f"IRC login rejected: {msg.trailing}")
        raise ChatConnectionError("IRC connection closed during handshake")

    async def _read_loop(self, transport: IrcTransport, lines: AsyncIterator[str]) -> None:
        reason = "connection closed by server"
        try:
            async for line in lines:
                await self._handle_line(transport, line)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            reason = str(exc) or exc.__class__.__name__
        if self._closing or self._transport is not transport:
            return
        logger.warning(f"Twitch IRC disconnected: {reason}")
        await self._connection_lost(transport)

    async def _connection_lost(self, transport: IrcTransport) -> None:
        self._transport = None
        self.state.set_connection(ConnectionState.DISCONNECTED)
        self._fail_waiters(ChatConnectionError("connection lost"))
        with contextlib.suppress(Exception):
            await transport.close()
        if not self._closing:
            self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while not self._closing:
            delay = self._backoff.next_delay()
            logger.info(f"Reconnecting to Twitch IRC in {delay:.1f}s (next delay: {self._backoff.current:.1f}s)")
            await asyncio.sleep(delay)
            if self._closing or self.state.connection is ConnectionState.CONNECTED:
                return
            try:
                await self.connect()
            except ChatConnectionError as exc:
                logger.warning(f"Reconnect attempt failed: {exc}")
                continue
            logger.info(f"Reconnected; rejoined {len(self.state.joined)} channel(s)")
            return

    # -------------------------------------------------------------- protocol

    async def _handle_line(self, transport: IrcTransport, line: str) -> None:
        msg = parse_irc_message(line)
        command = msg.command

        if command == "PRIVMSG":
            self._dispatch(msg)
        elif command == "PING":
            await transport.send(f"PONG :{msg.trailing or 'tmi.twitch.tv'}")
        elif command == "JOIN" and msg.nick == self._nick:
            self._resolve(("JOIN", msg.channel))
        elif command == "ROOMSTATE":
            self._resolve(("JOIN", msg.channel))
        elif command == "PART" and msg.nick == self._nick:
            self._resolve(("PART", msg.channel))
        elif command == "NOTICE":
            msg_id = msg.tags.get("msg-id", "")
            if msg_id in JOIN_REJECTIONS and msg.channel:
                self._join_rejected(JoinRejectedError(msg.channel, msg.trailing or msg_id))
            else:
                logger.log("IRC", f"NOTICE #{msg.channel or '*'} [{msg_id}]: {msg.trailing}")
        elif command == "RECONNECT":
            raise ChatConnectionError("server requested reconnect")

    def _dispatch(self, msg: IrcMessage) -> None:
        try:
            message = self._normalize(msg)
        except MalformedMessageError as exc:
            logger.warning(f"Dropped malformed PRIVMSG: {exc}")
            return
        logger.log("CHAT", f"[{message.channel}] <{message.username}> {message.text}")
        for queue in list(self._consumers):
            queue.put_nowait(message)

    def _resolve(self, key: Tuple[str, str]) -> None:
        waiter = self._waiters.get(key)
        if waiter is not None and not waiter.done():
            waiter.set_result(True)

    def _join_rejected(self, exc: JoinRejectedError) -> None:
        waiter = self._waiters.get(("JOIN", exc.channel))
        if waiter is not None and not waiter.done():
            waiter.set_exception(exc)
            return
        logger.warning(str(exc))
        # Refused rejoin: stays joined and is retried on the next session.
        if exc.channel in self.state.joined:
            self.state.reject_channel(exc.channel, exc.reason)

    def _fail_waiters(self, exc: Exception) -> None:
        for waiter in list(self._waiters.values()):
            if not waiter.done():
                waiter.set_exception(exc)

    async def _request(self, command: str, channel: str) -> None:
        """Send JOIN/PART and wait for the matching acknowledgment."""
        transport = self._transport
        if transport is None:
            raise ChatConnectionError("not connected")
        key = (command, channel)
        waiter = asyncio.get_running_loop().create_future()
        self._waiters[key] = waiter
        timeout = self.settings.ack_timeout_secs
        try:
            await transport.send(f"{command} #{channel}")
            try:
                await asyncio.wait_for(waiter, timeout)
            except asyncio.TimeoutError:
                if command == "JOIN":
                    raise JoinTimeoutError(channel, timeout) from None
                raise LeaveTimeoutError(channel, timeout) from None
        finally:
            if self._waiters.get(key) is waiter:
                del self._waiters[key]

    # -------------------------------------------------------------- channels

    async def join_channel(self, name: str) -> bool:
        """Join a channel; True when joined (now or already), False on failure."""
        try:
            channel = canonical_channel(name)
        except InvalidChannelError as exc:
            logger.warning(str(exc))
            return False

        async with self._locks.hold(channel):
            if channel in self.state.joined:
                logger.debug(f"Already joined #{channel}")
                return True
            try:
                await self.connect()
                await self._request("JOIN", channel)
            except (ChatConnectionError, AckTimeoutError, JoinRejectedError) as exc:
                logger.warning(f"Failed to join #{channel}: {exc}")
                return False
            self.state.add_channel(channel)
            logger.log("IRC", f"Joined #{channel}")
            return True

    async def leave_channel(self, name: str) -> bool:
        """Leave a channel; True when left (now or already), False on timeout."""
        try:
            channel = canonical_channel(name)
        except InvalidChannelError as exc:
            logger.warning(str(exc))
            return False

        async with self._locks.hold(channel):
            if channel not in self.state.joined:
                return True
            if self._transport is not None:
                try:
                    await self._request("PART", channel)
                except AckTimeoutError as exc:
                    logger.warning(f"Failed to leave #{channel}: {exc}")
                    return False
                except ChatConnectionError:
                    # The dead session took the membership with it.
                    pass
            self.state.remove_channel(channel)
            logger.log("IRC", f"Left #{channel}")
            return True

    async def discard_channel(self, name: str) -> None:
        """Forget a channel locally after an unacknowledged PART.

        It will not be rejoined on reconnect; stray messages have no audience.
        """
        channel = canonical_channel(name)
        async with self._locks.hold(channel):
            if channel in self.state.joined:
                logger.warning(f"Discarding #{channel} without PART acknowledgment")
                self.state.remove_channel(channel)

    # --------------------------------------------------------------- output

    def messages(self) -> AsyncIterator[ChatMessage]:
        """Return an async iterator of normalized messages for one consumer.

        The consumer is registered immediately; iteration ends on `close()`.
        """
        queue: asyncio.Queue = asyncio.Queue()
        if self._closing:
            queue.put_nowait(None)
        else:
            self._consumers.append(queue)
        return self._drain(queue)

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[ChatMessage]:
        try:
            while True:
                item = await queue.get()
                if item is None:
                    return
                yield item
        finally:
            if queue in self._consumers:
                self._consumers.remove(queue)
