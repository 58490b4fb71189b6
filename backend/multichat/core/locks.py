"""Per-channel asyncio locks.

An entry exists only while some task holds or waits on it, so the map stays
as small as the set of channels with an operation in flight.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncIterator, Dict


class KeyedLock:
    """One asyncio.Lock per key, created on first use and dropped when idle."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: object) -> bool:
        return key in self._locks

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]
