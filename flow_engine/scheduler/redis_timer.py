"""
Redis-backed timer service.

Schedules live in a sorted set scored by resume timestamp. Several engine
processes may poll the same set; ZREM decides which one owns a due entry,
so each schedule fires once.
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

import redis.asyncio as redis

from flow_engine.core.clock import Clock
from flow_engine.scheduler.base import TimerService

logger = logging.getLogger(__name__)


class RedisTimerService(TimerService):
    """Timer service shared across processes through Redis."""

    TIMERS_KEY = "timers"

    def __init__(
        self,
        redis_client: redis.Redis,
        clock: Optional[Clock] = None,
        poll_interval: Optional[float] = 1.0,
        batch_size: int = 100,
        key_prefix: str = "flow:",
    ):
        super().__init__(clock=clock, poll_interval=poll_interval, batch_size=batch_size)
        self.redis = redis_client
        self.key = f"{key_prefix}{self.TIMERS_KEY}"

    async def schedule_resume(self, run_id: UUID, resume_at: datetime) -> None:
        await self.redis.zadd(self.key, {str(run_id): resume_at.timestamp()})
        logger.debug(f"Scheduled resume of run {run_id} at {resume_at.isoformat()}")

    async def cancel(self, run_id: UUID) -> None:
        await self.redis.zrem(self.key, str(run_id))

    async def _claim_due(self, now: datetime) -> list[UUID]:
        members = await self.redis.zrangebyscore(
            self.key,
            "-inf",
            now.timestamp(),
            start=0,
            num=self.batch_size,
        )
        claimed = []
        for member in members:
            # Another process may have claimed it between the read and here
            if await self.redis.zrem(self.key, member):
                if isinstance(member, bytes):
                    member = member.decode()
                claimed.append(UUID(member))
        return claimed

    async def pending_count(self) -> int:
        return await self.redis.zcard(self.key)
