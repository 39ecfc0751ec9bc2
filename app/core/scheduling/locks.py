"""
Per-tenant booking lock.

Conflict checks are read-then-decide, so the check-and-persist sequence of a
booking must not interleave with another booking for the same tenant.

Two layers:
- asyncio.Lock per tenant serializes coroutines in this process
- Redis lock serializes across processes when Redis is reachable

Without Redis, cross-worker safety rests on the overlap re-check the SQL
meeting store runs under a Postgres advisory lock.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import LockError, RedisError

from app.config import get_settings
from app.core.scheduling.errors import LockUnavailable
from app.infra.redis import APP_PREFIX, get_redis

logger = logging.getLogger(__name__)

LOCK_PREFIX = f"{APP_PREFIX}booking-lock:"

RedisGetter = Callable[[], Awaitable[Optional[Redis]]]


class TenantBookingLock:
    """Serializes booking commits per tenant."""

    def __init__(
        self,
        redis_getter: Optional[RedisGetter] = get_redis,
        timeout: Optional[float] = None,
    ):
        """Initialize lock manager.

        Args:
            redis_getter: Returns a Redis client or None; None disables the distributed layer
            timeout: Seconds to wait for the lock before giving up
        """
        self._redis_getter = redis_getter
        self._timeout = timeout or get_settings().booking_lock_timeout_seconds
        # tenant_id -> (lock, holders and waiters)
        self._local: dict[str, tuple[asyncio.Lock, int]] = {}

    def _checkout(self, tenant_id: str) -> asyncio.Lock:
        lock, users = self._local.get(tenant_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._local[tenant_id] = (lock, users + 1)
        return lock

    def _checkin(self, tenant_id: str) -> None:
        lock, users = self._local[tenant_id]
        if users <= 1:
            del self._local[tenant_id]
        else:
            self._local[tenant_id] = (lock, users - 1)

    @property
    def tracked_tenants(self) -> int:
        """Tenants with a booking in progress or waiting."""
        return len(self._local)

    @asynccontextmanager
    async def hold(self, tenant_id: str) -> AsyncIterator[None]:
        """Hold the tenant's booking lock for the duration of the block.

        Raises:
            LockUnavailable: If the lock is not acquired within the timeout
        """
        local = self._checkout(tenant_id)
        try:
            try:
                await asyncio.wait_for(local.acquire(), timeout=self._timeout)
            except asyncio.TimeoutError as e:
                raise LockUnavailable(f"Booking lock busy for tenant {tenant_id}") from e

            try:
                distributed = await self._acquire_distributed(tenant_id)
                try:
                    yield
                finally:
                    if distributed is not None:
                        try:
                            await distributed.release()
                        except (LockError, RedisError) as e:
                            logger.warning(f"Failed to release booking lock for {tenant_id}: {e}")
            finally:
                local.release()
        finally:
            self._checkin(tenant_id)

    async def _acquire_distributed(self, tenant_id: str):
        """Acquire the Redis lock, or return None when Redis is unavailable."""
        if self._redis_getter is None:
            return None

        redis = await self._redis_getter()
        if redis is None:
            logger.error(
                f"Redis unreachable; booking for {tenant_id} is serialized in this process only"
            )
            return None

        distributed = redis.lock(
            f"{LOCK_PREFIX}{tenant_id}",
            timeout=self._timeout * 2,
            blocking_timeout=self._timeout,
        )
        try:
            acquired = await distributed.acquire()
        except RedisError as e:
            logger.error(
                f"Redis lock unavailable for {tenant_id}; serialized in this process only: {e}"
            )
            return None

        if not acquired:
            raise LockUnavailable(f"Distributed booking lock busy for tenant {tenant_id}")
        return distributed
