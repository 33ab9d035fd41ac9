"""Redis-backed leases and connection management."""

from flow_engine.storage.redis.connection import RedisConnection
from flow_engine.storage.redis.lease import RedisLeaseManager

__all__ = [
    "RedisConnection",
    "RedisLeaseManager",
]
