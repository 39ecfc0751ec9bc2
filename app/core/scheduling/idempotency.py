"""
Idempotency records for booking submissions.

Callers send a client-generated key with each booking. A successful booking
is remembered under that key; a repeat within the TTL replays the stored
result instead of booking again.

Key pattern: receptionist:v1:booking:idempotency:{tenant_id}:{key}

Gracefully handles Redis unavailability with in-memory fallback.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from redis.exceptions import RedisError

from app.config import get_settings
from app.core.scheduling.locks import RedisGetter
from app.core.scheduling.types import BookingResult, utcnow
from app.infra.redis import APP_PREFIX, get_redis

logger = logging.getLogger(__name__)

IDEMPOTENCY_PREFIX = f"{APP_PREFIX}booking:idempotency:"


@dataclass(frozen=True)
class Fresh:
    """No earlier booking under this key."""
    pass


@dataclass(frozen=True)
class Duplicate:
    """Key already produced a booking."""

    booking_id: Optional[str]
    result: BookingResult


IdempotencyStatus = Union[Fresh, Duplicate]


class IdempotencyStore:
    """Remembers booked results by tenant and idempotency key."""

    def __init__(
        self,
        redis_getter: Optional[RedisGetter] = get_redis,
        ttl_seconds: Optional[int] = None,
    ):
        self._redis_getter = redis_getter
        self._ttl = ttl_seconds or get_settings().idempotency_ttl_seconds
        self._in_memory_fallback: dict[str, tuple[str, datetime]] = {}

    def _key(self, tenant_id: str, key: str) -> str:
        return f"{IDEMPOTENCY_PREFIX}{tenant_id}:{key}"

    async def check(self, tenant_id: str, key: str) -> IdempotencyStatus:
        """Look up a key.

        Returns:
            Duplicate with the stored result, or Fresh
        """
        raw = await self._load(self._key(tenant_id, key))
        if raw is None:
            return Fresh()

        try:
            result = BookingResult.from_dict(json.loads(raw))
        except (ValueError, KeyError) as e:
            logger.error(f"Corrupt idempotency record for {tenant_id}/{key}: {e}")
            return Fresh()

        return Duplicate(
            booking_id=result.meeting.id if result.meeting else None,
            result=result,
        )

    async def remember(self, tenant_id: str, key: str, result: BookingResult) -> None:
        """Store a result for later replay."""
        payload = json.dumps(result.to_dict())
        redis_key = self._key(tenant_id, key)

        redis = await self._redis()
        if redis is not None:
            try:
                await redis.setex(redis_key, timedelta(seconds=self._ttl), payload)
                return
            except RedisError as e:
                logger.error(f"Failed to store idempotency record {redis_key}: {e}")

        self._purge_expired()
        self._in_memory_fallback[redis_key] = (payload, utcnow() + timedelta(seconds=self._ttl))

    async def _redis(self):
        return await self._redis_getter() if self._redis_getter else None

    async def _load(self, redis_key: str) -> Optional[str]:
        redis = await self._redis()
        if redis is not None:
            try:
                data = await redis.get(redis_key)
                if data is not None:
                    return data
            except RedisError as e:
                logger.error(f"Failed to read idempotency record {redis_key}: {e}")

        entry = self._in_memory_fallback.get(redis_key)
        if entry is None:
            return None
        payload, expires_at = entry
        if expires_at <= utcnow():
            del self._in_memory_fallback[redis_key]
            return None
        return payload

    def _purge_expired(self) -> None:
        now = utcnow()
        expired = [k for k, (_, exp) in self._in_memory_fallback.items() if exp <= now]
        for key in expired:
            del self._in_memory_fallback[key]
