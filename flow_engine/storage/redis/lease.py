"""
Distributed per-run leases on Redis.

A lease is a key set with NX and a millisecond expiry holding a random
token. Release goes through a Lua script so a holder whose lease already
expired cannot delete a lease that another process has since taken.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID, uuid4

import redis.asyncio as redis

from flow_engine.core.errors import LeaseUnavailable
from flow_engine.storage.leases import RunLeaseManager

logger = logging.getLogger(__name__)


# Lua script for compare-and-delete release
# Returns 1 if the caller's token was deleted, 0 if the lease was lost
RELEASE_LEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class RedisLeaseManager(RunLeaseManager):
    """
    Leases shared by every engine process pointing at the same Redis.

    The TTL bounds how long a crashed holder blocks a run.
    """

    LEASE_PREFIX = "lease:run:"

    def __init__(
        self,
        redis_client: redis.Redis,
        ttl: float = 30.0,
        acquire_timeout: float = 10.0,
        retry_interval: float = 0.05,
        key_prefix: str = "flow:",
    ):
        self.redis = redis_client
        self.ttl = ttl
        self.acquire_timeout = acquire_timeout
        self.retry_interval = retry_interval
        self.key_prefix = key_prefix
        self._release_script = self.redis.register_script(RELEASE_LEASE_SCRIPT)

    def _lease_key(self, run_id: UUID) -> str:
        return f"{self.key_prefix}{self.LEASE_PREFIX}{run_id}"

    @asynccontextmanager
    async def acquire(self, run_id: UUID) -> AsyncIterator[None]:
        key = self._lease_key(run_id)
        token = uuid4().hex
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.acquire_timeout

        while not await self.redis.set(key, token, nx=True, px=int(self.ttl * 1000)):
            if loop.time() >= deadline:
                logger.warning(f"Lease for run {run_id} busy for {self.acquire_timeout}s")
                raise LeaseUnavailable(run_id, self.acquire_timeout)
            await asyncio.sleep(self.retry_interval)

        try:
            yield
        finally:
            released = await self._release_script(keys=[key], args=[token])
            if not released:
                logger.warning(
                    f"Lease for run {run_id} expired before release; "
                    f"step took longer than {self.ttl}s"
                )
