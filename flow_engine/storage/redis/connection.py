"""
Shared Redis client for run leases and the timer queue.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from flow_engine.config import get_settings
from flow_engine.config.settings import RedisSettings

logger = logging.getLogger(__name__)


class RedisConnection:
    """
    Pooled client used by RedisLeaseManager and RedisTimerService.

    Responses are decoded to str, which the lease tokens and timer members
    (run ids) rely on.
    """

    def __init__(self, settings: Optional[RedisSettings] = None):
        self.settings = settings or get_settings().redis
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None

    async def init(self) -> None:
        self._pool = ConnectionPool(
            host=self.settings.host,
            port=self.settings.port,
            db=self.settings.db,
            password=self.settings.password,
            max_connections=self.settings.max_connections,
            socket_timeout=self.settings.socket_timeout,
            socket_connect_timeout=self.settings.socket_connect_timeout,
            decode_responses=True,
        )
        self._client = redis.Redis(connection_pool=self._pool)

        # Fail fast on a bad address
        await self._client.ping()
        logger.info(
            f"Lease and timer backend ready at {self.settings.host}:{self.settings.port}"
            f" db={self.settings.db}"
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis backend is not connected; await init() before use")
        return self._client

    async def health_check(self) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.ping()
        except RedisError as e:
            logger.warning(f"Redis backend unreachable: {e}")
            return False
        return True
