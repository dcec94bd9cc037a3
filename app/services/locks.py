"""Per-visit serialization for attachment writes."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class VisitLocks:
    """Hands out one asyncio.Lock per visit id.

    Entries are dropped once nobody holds or waits on them, so the map only
    ever contains visits with an operation in flight. Locks serialize work
    inside one process; separate worker processes are not coordinated.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, visit_id: int) -> bool:
        lock = self._locks.get(visit_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, visit_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(visit_id, asyncio.Lock())
        self._users[visit_id] = self._users.get(visit_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[visit_id] -= 1
            if self._users[visit_id] == 0:
                del self._users[visit_id]
                del self._locks[visit_id]


_visit_locks: VisitLocks | None = None


def get_visit_locks() -> VisitLocks:
    """Process-wide lock table shared by uploads and deletions."""
    global _visit_locks
    if _visit_locks is None:
        _visit_locks = VisitLocks()
    return _visit_locks
