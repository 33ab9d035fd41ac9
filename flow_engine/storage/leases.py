"""
Per-run leases.

At most one engine step may be in flight per run. Every step runs inside
``async with leases.acquire(run_id)``; a timer firing and an external
resume or cancel for the same run therefore never interleave.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator
from uuid import UUID

from flow_engine.core.errors import LeaseUnavailable

logger = logging.getLogger(__name__)


class RunLeaseManager(ABC):
    """Grants exclusive, scoped access to a single run."""

    @abstractmethod
    def acquire(self, run_id: UUID) -> AbstractAsyncContextManager[None]:
        """
        Async context manager holding the lease for ``run_id``.

        Raises:
            LeaseUnavailable: If the lease could not be obtained in time.
        """


class LocalLeaseManager(RunLeaseManager):
    """
    Leases for a single process.

    Keeps one asyncio.Lock per run id. Entries are created on demand and
    dropped when the last holder or waiter leaves, so the arena only holds
    runs that are being stepped right now.
    """

    def __init__(self, acquire_timeout: float = 10.0):
        self.acquire_timeout = acquire_timeout
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._users: dict[UUID, int] = {}

    @asynccontextmanager
    async def acquire(self, run_id: UUID) -> AsyncIterator[None]:
        lock = self._locks.setdefault(run_id, asyncio.Lock())
        self._users[run_id] = self._users.get(run_id, 0) + 1
        try:
            try:
                async with asyncio.timeout(self.acquire_timeout):
                    await lock.acquire()
            except TimeoutError:
                logger.warning(f"Lease for run {run_id} busy for {self.acquire_timeout}s")
                raise LeaseUnavailable(run_id, self.acquire_timeout) from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[run_id] -= 1
            if self._users[run_id] == 0:
                del self._users[run_id]
                self._locks.pop(run_id, None)

    def is_held(self, run_id: UUID) -> bool:
        lock = self._locks.get(run_id)
        return lock is not None and lock.locked()

    @property
    def active_count(self) -> int:
        return len(self._locks)
