"""
Timer service contract.

A timer service arranges for the engine's resume entry point to be called
for a run at or after a given instant. It guarantees "not before", never an
exact deadline.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from flow_engine.core.clock import Clock

logger = logging.getLogger(__name__)

ResumeCallback = Callable[[UUID], Awaitable[Any]]


class TimerService(ABC):
    """
    Base class for timer services.

    Subclasses store schedules and implement fire_due(); the optional
    polling loop lives here.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        poll_interval: Optional[float] = None,
        batch_size: int = 100,
    ):
        self.clock = clock or Clock()
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self._callback: Optional[ResumeCallback] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._running = False

    @abstractmethod
    async def schedule_resume(self, run_id: UUID, resume_at: datetime) -> None:
        """Schedule (or re-schedule) the resume of a run."""

    @abstractmethod
    async def cancel(self, run_id: UUID) -> None:
        """Drop any pending resume for a run."""

    @abstractmethod
    async def _claim_due(self, now: datetime) -> list[UUID]:
        """Remove and return runs due at ``now``, each claimed exactly once."""

    async def start(self, callback: ResumeCallback) -> None:
        """Register the resume callback and start polling if configured."""
        self._callback = callback
        if self._running:
            return
        self._running = True
        if self.poll_interval:
            self._poll_task = asyncio.create_task(self._poll_loop())
            logger.info(f"{type(self).__name__} polling every {self.poll_interval}s")

    async def stop(self) -> None:
        """Stop polling."""
        self._running = False
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

    async def fire_due(self) -> list[UUID]:
        """
        Invoke the callback for every run whose resume time has passed.

        Returns:
            IDs of the runs that were fired
        """
        if self._callback is None:
            raise RuntimeError("Timer service not started. Call start() first.")

        fired = await self._claim_due(self.clock.now())
        for run_id in fired:
            try:
                await self._callback(run_id)
            except Exception as e:
                logger.error(f"Resume callback failed for run {run_id}: {e}", exc_info=True)
        return fired

    async def _poll_loop(self) -> None:
        """Fire due timers until stopped."""
        while self._running:
            try:
                await self.fire_due()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Timer poll failed: {e}", exc_info=True)

            await asyncio.sleep(self.poll_interval)
