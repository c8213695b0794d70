"""Plantwatch — Per-machine locks.

Every read-modify-write of a machine row (control commands and simulator
ticks alike) runs while holding that machine's lock, so two writers never
interleave on the same machine. Different machines proceed concurrently.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class MachineLockRegistry:
    """Reference-counted ``asyncio.Lock`` per machine id.

    A lock is created on first use and dropped once no task holds or waits
    for it, so the registry does not grow with deleted machines.

    Example:
        async with machine_locks.hold(machine_id):
            machine = await db.get(Machine, machine_id, populate_existing=True)
            ...
            await db.commit()
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, machine_id: int) -> AsyncIterator[None]:
        lock = self._locks.get(machine_id)
        if lock is None:
            lock = self._locks[machine_id] = asyncio.Lock()
        self._users[machine_id] = self._users.get(machine_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[machine_id] - 1
            if remaining:
                self._users[machine_id] = remaining
            else:
                del self._users[machine_id]
                del self._locks[machine_id]

    def is_locked(self, machine_id: int) -> bool:
        lock = self._locks.get(machine_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


machine_locks = MachineLockRegistry()
