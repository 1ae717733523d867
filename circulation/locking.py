"""
Mutual exclusion for mutations.

Two layers:
- EntityLocks: one asyncio.Lock per book and per member, taken in sorted
  key order and held across validate, store write and cache update.
- ResyncGate: mutations hold it shared, resync holds it exclusive. A
  resync never sees a half-applied mutation and never overlaps another
  resync.

Single process only; these are asyncio primitives.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


def book_key(book_id: str) -> str:
    return f"book:{book_id}"


def member_key(member_id: str) -> str:
    return f"member:{member_id}"


class EntityLocks:
    """
    Per-entity locks, created on first use.

    A lock is dropped once no task holds or waits for it, so the table only
    holds keys that are in use.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def _check_out(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _check_in(self, key: str) -> None:
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        """Acquire every key's lock in sorted order; release in reverse."""
        ordered = sorted(set(keys))
        checked_out: list[str] = []
        acquired: list[asyncio.Lock] = []
        try:
            for key in ordered:
                lock = self._check_out(key)
                checked_out.append(key)
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in checked_out:
                self._check_in(key)

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


class ResyncGate:
    """
    Shared/exclusive gate.

    A waiting exclusive holder blocks new shared holders so a resync is not
    starved by a steady stream of mutations.
    """

    def __init__(self):
        self._condition = asyncio.Condition()
        self._shared = 0
        self._exclusive = False
        self._exclusive_waiting = 0

    @asynccontextmanager
    async def shared(self) -> AsyncIterator[None]:
        async with self._condition:
            await self._condition.wait_for(
                lambda: not self._exclusive and self._exclusive_waiting == 0
            )
            self._shared += 1
        try:
            yield
        finally:
            async with self._condition:
                self._shared -= 1
                self._condition.notify_all()

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        async with self._condition:
            self._exclusive_waiting += 1
            try:
                await self._condition.wait_for(
                    lambda: not self._exclusive and self._shared == 0
                )
            finally:
                self._exclusive_waiting -= 1
                self._condition.notify_all()
            self._exclusive = True
        try:
            yield
        finally:
            async with self._condition:
                self._exclusive = False
                self._condition.notify_all()
