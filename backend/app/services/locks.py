from __future__ import annotations

from asyncio import Lock
from collections.abc import Iterable
from contextlib import asynccontextmanager
from typing import AsyncIterator


class SettlementLocks:
    """Per-player async locks for serialising settlements.

    The rating pipeline assumes at most one in-flight settlement per player
    and does not lock anything itself. Callers that cannot guarantee that
    upstream can wrap each settlement in :meth:`hold`.

    Locks are always taken in sorted id order, so two settlements sharing
    several players cannot deadlock. Entries are dropped once no settlement
    holds or waits on them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, player_id: str) -> bool:
        lock = self._locks.get(player_id)
        return lock is not None and lock.locked()

    def _checkout(self, player_id: str) -> Lock:
        lock = self._locks.get(player_id)
        if lock is None:
            lock = self._locks[player_id] = Lock()
        self._users[player_id] = self._users.get(player_id, 0) + 1
        return lock

    def _checkin(self, player_id: str) -> None:
        remaining = self._users.get(player_id, 0) - 1
        if remaining <= 0:
            self._users.pop(player_id, None)
            self._locks.pop(player_id, None)
        else:
            self._users[player_id] = remaining

    @asynccontextmanager
    async def hold(self, player_ids: Iterable[str | None]) -> AsyncIterator[None]:
        ids = sorted({pid for pid in player_ids if pid})
        locks = [(pid, self._checkout(pid)) for pid in ids]
        acquired: list[Lock] = []
        try:
            for _, lock in locks:
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for pid, _ in locks:
                self._checkin(pid)
