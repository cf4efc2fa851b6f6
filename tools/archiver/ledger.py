"""Per-thread last-fetch ledger used to build conditional requests."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator


class RWLock:
    """asyncio reader/writer lock.

    Any number of readers may hold the lock together; a writer holds it
    alone. A waiting writer blocks new readers so writes are not starved.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and not self._writers_waiting)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and not self._readers)
            except BaseException:
                self._writers_waiting -= 1
                self._cond.notify_all()
                raise
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()

    @property
    def readers(self) -> int:
        return self._readers


class CacheLedger:
    """Thread number → time of the last full (non-304) fetch.

    In-memory only; after a restart the remote simply serves full bodies
    until the ledger warms up again.
    """

    def __init__(self) -> None:
        self._entries: dict[int, datetime] = {}
        self._lock = RWLock()

    async def get(self, thread_no: int) -> datetime | None:
        async with self._lock.read():
            return self._entries.get(thread_no)

    async def set(self, thread_no: int, fetched_at: datetime) -> None:
        async with self._lock.write():
            self._entries[thread_no] = fetched_at

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, thread_no: object) -> bool:
        return thread_no in self._entries
