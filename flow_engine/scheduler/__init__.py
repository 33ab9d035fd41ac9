"""Timer services that resume runs parked at Delay nodes."""

from flow_engine.scheduler.base import ResumeCallback, TimerService
from flow_engine.scheduler.memory import InMemoryTimerService
from flow_engine.scheduler.redis_timer import RedisTimerService

__all__ = [
    "ResumeCallback",
    "TimerService",
    "InMemoryTimerService",
    "RedisTimerService",
]
