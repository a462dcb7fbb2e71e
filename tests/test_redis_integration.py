"""Tests running the Lua script on a real Redis.

Skipped unless a Redis server answers at REDIS_URL (default
redis://localhost:6379/15). Keys are namespaced per test run and removed
afterwards; the database is never flushed.
"""

import asyncio
import os
import uuid

import pytest
import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError

from rategate.services.gcra import NOT_APPLICABLE, Limit, Limiter

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/15")
LIMIT = Limit(rate=10, period=1.0, burst=10)


async def _limiter_or_skip():
    client = aioredis.from_url(REDIS_URL)
    try:
        await client.ping()
    except (RedisConnectionError, OSError):
        await client.aclose()
        pytest.skip(f"Redis not available at {REDIS_URL}")
    prefix = f"rategate-test:{uuid.uuid4().hex}:"
    return client, Limiter(redis_client=client, prefix=prefix)


async def _cleanup(client, limiter):
    keys = [key async for key in client.scan_iter(match=limiter.prefix + "*")]
    if keys:
        await client.delete(*keys)
    await client.aclose()


class TestRedisGcra:
    """End-to-end checks of the Lua script."""

    @pytest.mark.asyncio
    async def test_sequence(self):
        client, limiter = await _limiter_or_skip()
        try:
            result = await limiter.allow("seq", LIMIT)
            assert result.allowed == 1
            assert result.remaining == 9
            assert result.retry_after == NOT_APPLICABLE
            assert result.reset_after == pytest.approx(0.1, abs=0.05)

            result = await limiter.allow_n("seq", LIMIT, 2)
            assert result.allowed == 2
            assert result.remaining == 7
            assert result.reset_after == pytest.approx(0.3, abs=0.05)

            result = await limiter.allow_n("seq", LIMIT, 7)
            assert result.allowed == 7
            assert result.remaining == 0
            assert result.reset_after == pytest.approx(1.0, abs=0.05)

            result = await limiter.allow_n("seq", LIMIT, 1000)
            assert result.allowed == 0
            assert result.remaining == 0
            assert result.retry_after == pytest.approx(100.0, abs=0.5)
        finally:
            await _cleanup(client, limiter)

    @pytest.mark.asyncio
    async def test_at_most_and_peek(self):
        client, limiter = await _limiter_or_skip()
        try:
            result = await limiter.allow_at_most("am", LIMIT, 1000)
            assert 9 <= result.allowed <= 10

            peeked = await limiter.peek("am", LIMIT)
            again = await limiter.peek("am", LIMIT)
            assert peeked.allowed == again.allowed == 0
            assert again.remaining <= 1
        finally:
            await _cleanup(client, limiter)

    @pytest.mark.asyncio
    async def test_key_has_ttl(self):
        client, limiter = await _limiter_or_skip()
        try:
            await limiter.allow("ttl", LIMIT)
            ttl = await client.ttl(limiter.prefix + "ttl")
            assert 1 <= ttl <= 1 + limiter.ttl_margin

            await limiter.reset("ttl")
            assert await client.exists(limiter.prefix + "ttl") == 0
        finally:
            await _cleanup(client, limiter)

    @pytest.mark.asyncio
    async def test_recovers_from_script_flush(self):
        client, limiter = await _limiter_or_skip()
        try:
            await limiter.load()
            await client.script_flush()

            result = await limiter.allow("flush", LIMIT)
            assert result.allowed == 1
        finally:
            await _cleanup(client, limiter)

    @pytest.mark.asyncio
    async def test_parallel_callers(self):
        client, limiter = await _limiter_or_skip()
        slow = Limit(rate=1, period=60.0, burst=10)
        try:
            results = await asyncio.gather(*(limiter.allow("hot", slow) for _ in range(50)))
            assert sum(r.allowed for r in results) == 10
        finally:
            await _cleanup(client, limiter)

    @pytest.mark.asyncio
    async def test_multi(self):
        client, limiter = await _limiter_or_skip()
        limits = {
            "a": Limit(rate=1, period=60.0, burst=3),
            "b": Limit(rate=1, period=60.0, burst=5),
        }
        try:
            results = await limiter.allow_multi(limits)
            assert results["a"].remaining == 2
            assert results["b"].remaining == 4
        finally:
            await _cleanup(client, limiter)
