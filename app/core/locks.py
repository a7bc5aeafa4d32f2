"""Keyed asyncio locks for per-provider scheduling critical sections."""

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager


class KeyedLockRegistry:
    """
    Hand out one ``asyncio.Lock`` per key and drop it once nobody holds or waits on it.

    Serializes overlap-check-then-write sequences for the same
    ``(provider_id, date)`` inside a single process. Separate worker processes
    do not share these locks.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


# Process-wide registry used by the scheduling workflow
schedule_locks = KeyedLockRegistry()
