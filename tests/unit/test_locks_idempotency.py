"""Tests for the tenant booking lock and idempotency records."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import RedisError

from app.core.scheduling.errors import LockUnavailable
from app.core.scheduling.idempotency import IDEMPOTENCY_PREFIX, Duplicate, Fresh, IdempotencyStore
from app.core.scheduling.locks import LOCK_PREFIX, TenantBookingLock
from app.core.scheduling.types import BookingOutcome, BookingResult
from tests.unit.conftest import TENANT, local, make_meeting


def redis_getter(client):
    return AsyncMock(return_value=client)


def booked_result():
    meeting = make_meeting(local(2024, 1, 16, 15), local(2024, 1, 16, 15, 30))
    meeting.id = "meeting-1"
    return BookingResult(BookingOutcome.BOOKED_LOCAL_ONLY, "Booked", meeting=meeting)


class TestTenantBookingLock:
    """Test per-tenant serialization."""

    @pytest.mark.asyncio
    async def test_serializes_same_tenant(self, booking_lock):
        order = []

        async def worker(name):
            async with booking_lock.hold(TENANT):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.asyncio
    async def test_tenants_do_not_block_each_other(self):
        lock = TenantBookingLock(redis_getter=None, timeout=0.05)

        async with lock.hold(TENANT):
            async with lock.hold("tenant-2"):
                pass

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        lock = TenantBookingLock(redis_getter=None, timeout=0.01)

        async with lock.hold(TENANT):
            with pytest.raises(LockUnavailable):
                async with lock.hold(TENANT):
                    pass

    @pytest.mark.asyncio
    async def test_released_after_error(self, booking_lock):
        with pytest.raises(RuntimeError):
            async with booking_lock.hold(TENANT):
                raise RuntimeError("boom")

        async with booking_lock.hold(TENANT):
            pass

    @pytest.mark.asyncio
    async def test_distributed_lock_acquired_and_released(self):
        distributed = MagicMock()
        distributed.acquire = AsyncMock(return_value=True)
        distributed.release = AsyncMock()
        client = MagicMock()
        client.lock.return_value = distributed
        lock = TenantBookingLock(redis_getter=redis_getter(client), timeout=1.0)

        async with lock.hold(TENANT):
            distributed.release.assert_not_awaited()

        assert client.lock.call_args.args[0] == f"{LOCK_PREFIX}{TENANT}"
        distributed.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_distributed_lock_busy(self):
        distributed = MagicMock()
        distributed.acquire = AsyncMock(return_value=False)
        client = MagicMock()
        client.lock.return_value = distributed
        lock = TenantBookingLock(redis_getter=redis_getter(client), timeout=0.1)

        with pytest.raises(LockUnavailable):
            async with lock.hold(TENANT):
                pass

        # In-process lock was released on the way out
        lock._redis_getter = None
        async with lock.hold(TENANT):
            pass

    @pytest.mark.asyncio
    async def test_redis_error_keeps_local_lock(self):
        distributed = MagicMock()
        distributed.acquire = AsyncMock(side_effect=RedisError("connection reset"))
        client = MagicMock()
        client.lock.return_value = distributed
        lock = TenantBookingLock(redis_getter=redis_getter(client), timeout=0.1)
        entered = False

        async with lock.hold(TENANT):
            entered = True

        assert entered

    @pytest.mark.asyncio
    async def test_redis_down_logged_as_error(self, caplog):
        lock = TenantBookingLock(redis_getter=redis_getter(None), timeout=0.1)

        with caplog.at_level("ERROR", logger="app.core.scheduling.locks"):
            async with lock.hold(TENANT):
                pass

        assert "serialized in this process only" in caplog.text

    @pytest.mark.asyncio
    async def test_idle_tenant_locks_are_dropped(self):
        lock = TenantBookingLock(redis_getter=None, timeout=1.0)

        for i in range(50):
            async with lock.hold(f"tenant-{i}"):
                assert lock.tracked_tenants == 1

        assert lock.tracked_tenants == 0

    @pytest.mark.asyncio
    async def test_waiter_keeps_lock_entry(self):
        lock = TenantBookingLock(redis_getter=None, timeout=1.0)
        order = []

        async def second():
            async with lock.hold(TENANT):
                order.append("second")

        async with lock.hold(TENANT):
            waiter = asyncio.create_task(second())
            await asyncio.sleep(0.01)
            assert lock.tracked_tenants == 1
            order.append("first")

        await waiter
        assert order == ["first", "second"]
        assert lock.tracked_tenants == 0

    @pytest.mark.asyncio
    async def test_timed_out_waiter_is_dropped(self):
        lock = TenantBookingLock(redis_getter=None, timeout=0.01)

        async with lock.hold(TENANT):
            with pytest.raises(LockUnavailable):
                async with lock.hold(TENANT):
                    pass

        assert lock.tracked_tenants == 0


class TestIdempotencyStore:
    """Test remembering and replaying booking results."""

    @pytest.mark.asyncio
    async def test_unknown_key_is_fresh(self, idempotency_store):
        assert await idempotency_store.check(TENANT, "k1") == Fresh()

    @pytest.mark.asyncio
    async def test_remembered_key_is_duplicate(self, idempotency_store):
        await idempotency_store.remember(TENANT, "k1", booked_result())

        status = await idempotency_store.check(TENANT, "k1")

        assert isinstance(status, Duplicate)
        assert status.booking_id == "meeting-1"
        assert status.result.outcome == BookingOutcome.BOOKED_LOCAL_ONLY
        assert status.result.meeting.start_time == local(2024, 1, 16, 15)

    @pytest.mark.asyncio
    async def test_keys_are_tenant_scoped(self, idempotency_store):
        await idempotency_store.remember(TENANT, "k1", booked_result())

        assert isinstance(await idempotency_store.check("tenant-2", "k1"), Fresh)

    @pytest.mark.asyncio
    async def test_expired_record_is_fresh(self, idempotency_store):
        idempotency_store._ttl = 0
        await idempotency_store.remember(TENANT, "k1", booked_result())

        assert isinstance(await idempotency_store.check(TENANT, "k1"), Fresh)

    @pytest.mark.asyncio
    async def test_uses_redis_when_available(self):
        client = MagicMock()
        client.setex = AsyncMock()
        store = IdempotencyStore(redis_getter=redis_getter(client), ttl_seconds=600)

        await store.remember(TENANT, "k1", booked_result())

        key, ttl, payload = client.setex.call_args.args
        assert key == f"{IDEMPOTENCY_PREFIX}{TENANT}:k1"
        assert ttl.total_seconds() == 600
        assert json.loads(payload)["meeting"]["id"] == "meeting-1"

        client.get = AsyncMock(return_value=payload)
        status = await store.check(TENANT, "k1")
        assert isinstance(status, Duplicate)

    @pytest.mark.asyncio
    async def test_redis_failure_falls_back_to_memory(self):
        client = MagicMock()
        client.setex = AsyncMock(side_effect=RedisError("down"))
        client.get = AsyncMock(side_effect=RedisError("down"))
        store = IdempotencyStore(redis_getter=redis_getter(client), ttl_seconds=600)

        await store.remember(TENANT, "k1", booked_result())

        assert isinstance(await store.check(TENANT, "k1"), Duplicate)

    @pytest.mark.asyncio
    async def test_corrupt_record_is_fresh(self):
        client = MagicMock()
        client.get = AsyncMock(return_value="{not json")
        store = IdempotencyStore(redis_getter=redis_getter(client), ttl_seconds=600)

        assert isinstance(await store.check(TENANT, "k1"), Fresh)
