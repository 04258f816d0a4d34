"""Per-document asyncio locks.

Every state-mutating operation on a document (status transition, hold
create/release, archive) runs under that document's lock, so a hold can
never land between an archive's protection check and its status change.
Locks are dropped once nobody holds or waits on them.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from collections.abc import AsyncIterator


class DocumentLocks:
    def __init__(self) -> None:
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}
        self._users: dict[uuid.UUID, int] = {}

    @contextlib.asynccontextmanager
    async def acquire(self, document_id: uuid.UUID) -> AsyncIterator[None]:
        lock = self._locks.setdefault(document_id, asyncio.Lock())
        self._users[document_id] = self._users.get(document_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[document_id] -= 1
            if self._users[document_id] == 0:
                del self._users[document_id]
                self._locks.pop(document_id, None)

    def locked(self, document_id: uuid.UUID) -> bool:
        lock = self._locks.get(document_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


# Module-level singleton shared by the lifecycle, hold registry and archive manager
document_locks = DocumentLocks()
