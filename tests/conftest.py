"""Shared test fixtures: a scripted in-memory Twitch IRC endpoint."""

import asyncio
from typing import Dict, List, Optional, Set

import pytest
import pytest_asyncio

from multichat.chat.pool import ConnectionPool
from multichat.chat.subscriptions import SubscriptionManager
from multichat.config.settings import Settings
from multichat.core.errors import ChatConnectionError


class FakeTransport:
    """One connection to the fake server; records every line the pool sends."""

    def __init__(self, server: "FakeIrcServer") -> None:
        self.server = server
        self.sent: List[str] = []
        self.nick = ""
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def open(self) -> None:
        if self.server.fail_opens > 0:
            self.server.fail_opens -= 1
            raise ChatConnectionError("connection refused")

    async def send(self, line: str) -> None:
        if self.closed:
            raise ChatConnectionError("transport closed")
        self.sent.append(line)
        command, _, arg = line.partition(" ")
        if command == "NICK":
            self.nick = arg
            if self.server.welcome:
                self.push(f":tmi.twitch.tv 001 {arg} :Welcome, GLHF!")
        elif command == "JOIN" and self.server.auto_ack:
            channel = arg.lstrip("#")
            if channel in self.server.silent:
                return
            if channel in self.server.rejected:
                self.push(
                    f"@msg-id={self.server.rejected[channel]} :tmi.twitch.tv NOTICE #{channel} "
                    ":This channel has been suspended."
                )
            else:
                self.push(f":{self.nick}!{self.nick}@{self.nick}.tmi.twitch.tv JOIN #{channel}")
        elif command == "PART" and self.server.auto_ack:
            channel = arg.lstrip("#")
            self.push(f":{self.nick}!{self.nick}@{self.nick}.tmi.twitch.tv PART #{channel}")

    def push(self, line: str) -> None:
        self._inbox.put_nowait(line)

    def privmsg(self, channel: str, text: str, user: str = "viewer1", **tags: str) -> None:
        tag_str = ";".join(f"{k.replace('_', '-')}={v}" for k, v in tags.items())
        prefix = f"@{tag_str} " if tag_str else ""
        self.push(f"{prefix}:{user}!{user}@{user}.tmi.twitch.tv PRIVMSG #{channel} :{text}")

    def drop(self) -> None:
        """Simulate the network connection going away."""
        self._inbox.put_nowait(None)

    def commands(self, command: str) -> List[str]:
        return [line for line in self.sent if line.startswith(f"{command} ")]

    async def lines(self):
        while True:
            line = await self._inbox.get()
            if line is None:
                return
            yield line

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)


class FakeIrcServer:
    """Factory for FakeTransport plus knobs for scripted server behavior."""

    def __init__(self) -> None:
        self.transports: List[FakeTransport] = []
        self.auto_ack = True
        self.welcome = True
        self.fail_opens = 0
        self.rejected: Dict[str, str] = {}
        self.silent: Set[str] = set()

    def factory(self) -> FakeTransport:
        transport = FakeTransport(self)
        self.transports.append(transport)
        return transport

    @property
    def current(self) -> Optional[FakeTransport]:
        return self.transports[-1] if self.transports else None

    def all_commands(self, command: str) -> List[str]:
        return [line for t in self.transports for line in t.commands(command)]


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll until predicate() is truthy or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def settings():
    return Settings(
        connect_timeout_secs=1.0,
        ack_timeout_secs=0.2,
        reconnect_initial_delay=0.0,
        reconnect_max_delay=0.01,
        history_size=5,
        subscriber_queue_size=4,
    )


@pytest.fixture
def irc_server():
    return FakeIrcServer()


@pytest_asyncio.fixture
async def pool(settings, irc_server):
    pool = ConnectionPool(settings, transport_factory=irc_server.factory)
    yield pool
    await pool.close()


@pytest.fixture
def manager(pool, settings):
    return SubscriptionManager(pool, queue_size=settings.subscriber_queue_size)


class RecordingPool:
    """Stand-in pool that records join/leave calls and can be told to fail."""

    def __init__(self) -> None:
        self.joined = set()
        self.calls: List[tuple] = []
        self.fail_join = set()
        self.fail_leave = set()
        self.connect_error: Optional[Exception] = None
        self.join_delay = 0.0

    async def connect(self) -> None:
        self.calls.append(("connect",))
        if self.connect_error is not None:
            raise self.connect_error

    async def join_channel(self, name: str) -> bool:
        self.calls.append(("join", name))
        if self.join_delay:
            await asyncio.sleep(self.join_delay)
        if name in self.fail_join:
            return False
        self.joined.add(name)
        return True

    async def leave_channel(self, name: str) -> bool:
        self.calls.append(("leave", name))
        if name in self.fail_leave:
            return False
        self.joined.discard(name)
        return True

    async def discard_channel(self, name: str) -> None:
        self.calls.append(("discard", name))
        self.joined.discard(name)

    def count(self, op: str, name: str) -> int:
        return sum(1 for call in self.calls if call == (op, name))


@pytest.fixture
def recording_pool():
    return RecordingPool()
