from __future__ import annotations

import asyncio

import pytest

from support_core.errors import LockStoreUnavailable
from support_core.locks import LockService, build_tool_fingerprint, canonical_json
from tests.utils import InMemoryRedis, UnavailableRedis


class LaggyRedis(InMemoryRedis):
    """Yields to the event loop before every SET, like a network round trip."""

    async def set(self, key, value, ex=None, nx=False):
        await asyncio.sleep(0)
        return await super().set(key, value, ex=ex, nx=nx)


def test_fingerprint_ignores_argument_order_and_tool_name_case():
    a = build_tool_fingerprint("conv-1", "Book_Appointment", {"date": "2025-03-01", "time": "10:00"})
    b = build_tool_fingerprint("conv-1", "book_appointment", {"time": "10:00", "date": "2025-03-01"})
    assert a == b
    assert a.startswith("tool:conv-1:book_appointment:")


def test_fingerprint_differs_per_conversation_and_arguments():
    base = build_tool_fingerprint("conv-1", "lookup", {"id": "1"})
    assert build_tool_fingerprint("conv-2", "lookup", {"id": "1"}) != base
    assert build_tool_fingerprint("conv-1", "lookup", {"id": "2"}) != base


def test_canonical_json_is_compact_and_sorted():
    assert canonical_json({"b": 1, "a": "ü"}) == '{"a":"ü","b":1}'


@pytest.mark.asyncio
async def test_second_acquire_fails_until_release(redis):
    locks = LockService(redis, default_ttl_seconds=30, max_ttl_seconds=300)

    assert await locks.acquire("k") is True
    assert await locks.acquire("k") is False
    assert await locks.is_locked("k") is True

    assert await locks.release("k") is True
    assert await locks.release("k") is False
    assert await locks.acquire("k") is True


@pytest.mark.asyncio
async def test_lock_expires_after_ttl(redis):
    locks = LockService(redis, default_ttl_seconds=30, max_ttl_seconds=300)
    assert await locks.acquire("k", ttl_seconds=5)

    redis.clock.advance(4)
    assert await locks.acquire("k") is False
    redis.clock.advance(2)
    assert await locks.acquire("k") is True


@pytest.mark.asyncio
async def test_requested_ttl_is_clamped_to_max(redis):
    locks = LockService(redis, default_ttl_seconds=30, max_ttl_seconds=60)
    await locks.acquire("k", ttl_seconds=10_000)
    assert await redis.ttl("support:lock:k") == 60


@pytest.mark.asyncio
async def test_extend_respects_max_ttl_and_missing_keys(redis):
    locks = LockService(redis, default_ttl_seconds=30, max_ttl_seconds=60)
    assert await locks.extend("missing", 10) is False

    await locks.acquire("k", ttl_seconds=30)
    assert await locks.extend("k", 20) is True
    assert await redis.ttl("support:lock:k") == 50
    assert await locks.extend("k", 100) is True
    assert await redis.ttl("support:lock:k") == 60


@pytest.mark.asyncio
async def test_hold_releases_only_when_acquired(redis):
    locks = LockService(redis)
    async with locks.hold("k") as first:
        assert first is True
        async with locks.hold("k") as second:
            assert second is False
        # The inner failed attempt must not have released the outer lock.
        assert await locks.is_locked("k") is True
    assert await locks.is_locked("k") is False


@pytest.mark.asyncio
async def test_hold_releases_when_body_raises(redis):
    locks = LockService(redis)
    with pytest.raises(RuntimeError):
        async with locks.hold("k"):
            raise RuntimeError("boom")
    assert await locks.is_locked("k") is False


@pytest.mark.asyncio
async def test_unreachable_store_is_reported_not_treated_as_acquired():
    locks = LockService(UnavailableRedis())

    with pytest.raises(LockStoreUnavailable):
        await locks.acquire("k")
    with pytest.raises(LockStoreUnavailable):
        await locks.is_locked("k")
    assert await locks.release("k") is False
    assert await locks.extend("k", 10) is False


@pytest.mark.asyncio
async def test_concurrent_acquire_has_exactly_one_winner():
    locks = LockService(LaggyRedis())

    results = await asyncio.gather(*(locks.acquire("k") for _ in range(10)))

    assert sum(results) == 1
    assert await locks.is_locked("k") is True


@pytest.mark.asyncio
async def test_expired_holder_does_not_release_the_next_holders_lock(redis):
    locks = LockService(redis, default_ttl_seconds=5, max_ttl_seconds=60)

    async with locks.hold("k") as first:
        assert first is True
        redis.clock.advance(6)
        # The first lock expired; someone else takes the fingerprint.
        assert await locks.acquire("k") is True

    assert await locks.is_locked("k") is True


@pytest.mark.asyncio
async def test_release_with_someone_elses_token_keeps_the_lock(redis):
    locks = LockService(redis)
    assert await locks.acquire("k") is True

    assert await locks.release("k", "not-my-token") is False
    assert await locks.is_locked("k") is True
