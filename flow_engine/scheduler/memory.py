"""In-process timer service."""

from datetime import datetime
from uuid import UUID

from flow_engine.scheduler.base import TimerService


class InMemoryTimerService(TimerService):
    """
    Keeps pending resumes in a dict.

    Without a poll interval nothing fires on its own; call fire_due() after
    moving the clock forward.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._pending: dict[UUID, datetime] = {}

    async def schedule_resume(self, run_id: UUID, resume_at: datetime) -> None:
        self._pending[run_id] = resume_at

    async def cancel(self, run_id: UUID) -> None:
        self._pending.pop(run_id, None)

    async def _claim_due(self, now: datetime) -> list[UUID]:
        due = sorted(
            (resume_at, str(run_id), run_id)
            for run_id, resume_at in self._pending.items()
            if resume_at <= now
        )[: self.batch_size]
        for _, _, run_id in due:
            del self._pending[run_id]
        return [run_id for _, _, run_id in due]

    def pending(self) -> dict[UUID, datetime]:
        """Snapshot of scheduled resumes."""
        return dict(self._pending)
