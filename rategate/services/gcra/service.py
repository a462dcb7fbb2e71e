"""GCRA rate limiting using Redis for multi-process deployments.

Every decision is taken inside Redis by one atomic script call, so any
number of processes that share a Redis instance and a key name share one
limit. Batches of independent keys travel in a single pipeline. When Redis
cannot be reached and a local fallback limiter is configured, decisions are
taken from process memory instead.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from rategate.core.config import settings
from rategate.core.logging import get_log_context, get_logger
from rategate.exceptions import MalformedReplyError, StoreError, StoreUnavailableError

from .fallback import LocalLimiter
from .keys import decode_reply, encode_args, store_key
from .models import Limit, Mode, Result
from .redis_lua import GCRA_SCRIPT
from .scripts import ScriptCache

logger = get_logger(__name__)

TRANSPORT_ERRORS = (RedisConnectionError, RedisTimeoutError)


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """Translate redis-py errors into the limiter's error taxonomy."""
    try:
        yield
    except TRANSPORT_ERRORS as e:
        raise StoreUnavailableError(f"Redis unavailable during {action}: {e}") from e
    except RedisError as e:
        raise StoreError(f"Redis error during {action}: {e}") from e


@dataclass
class _PendingCall:
    """One key of a batch, recorded at submission time.

    Pipeline replies come back in submission order and are paired with
    these records, never with the caller's mapping.
    """
    name: str
    limit: Limit
    key: str
    args: List[Union[int, str]]


class Limiter:
    """Distributed rate limiter backed by a Redis GCRA script.

    Provides:
    - All-or-nothing and at-most admission for a single key
    - Batched evaluation of independent keys in one round trip
    - Automatic script reload when Redis forgets it (bounded)
    - Optional local fallback when Redis is unavailable

    Redis key format:
    - {prefix}{name} - theoretical arrival time of limiter ``name``
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        prefix: Optional[str] = None,
        fallback: Optional[LocalLimiter] = None,
        max_script_reloads: Optional[int] = None,
        ttl_margin: Optional[int] = None,
    ) -> None:
        self._redis = redis_client
        self._owns_redis = False
        self._redis_url = redis_url or settings.redis_url
        self.prefix = settings.key_prefix if prefix is None else prefix
        self.fallback = fallback
        self.ttl_margin = settings.key_ttl_margin_seconds if ttl_margin is None else ttl_margin
        self._scripts = ScriptCache(
            GCRA_SCRIPT,
            max_reloads=max_script_reloads or settings.script_max_reloads,
        )

    def _get_redis(self) -> Any:
        """Get or create the Redis client."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
            self._owns_redis = True
        return self._redis

    async def load(self) -> None:
        """Register the GCRA script with Redis ahead of the first call."""
        with _store_errors("script load"):
            await self._scripts.load(self._get_redis())

    async def allow(self, key: str, limit: Limit) -> Result:
        """Admit one unit for ``key``."""
        return await self.allow_n(key, limit, 1)

    async def allow_n(self, key: str, limit: Limit, n: int) -> Result:
        """Admit exactly ``n`` units or none of them.

        ``n == 0`` only reports the current state of the key.
        """
        return await self._evaluate(key, limit, n, Mode.ALL_OR_NOTHING)

    async def allow_at_most(self, key: str, limit: Limit, n: int) -> Result:
        """Admit as many of ``n`` units as the limit currently allows."""
        return await self._evaluate(key, limit, n, Mode.AT_MOST)

    async def peek(self, key: str, limit: Limit) -> Result:
        """Report remaining capacity without consuming any."""
        return await self.allow_n(key, limit, 0)

    async def allow_per_second(self, key: str, n: int) -> Result:
        """Shorthand for ``allow(key, Limit.per_second(n))``."""
        return await self.allow(key, Limit.per_second(n))

    async def allow_per_minute(self, key: str, n: int) -> Result:
        """Shorthand for ``allow(key, Limit.per_minute(n))``."""
        return await self.allow(key, Limit.per_minute(n))

    async def allow_per_hour(self, key: str, n: int) -> Result:
        """Shorthand for ``allow(key, Limit.per_hour(n))``."""
        return await self.allow(key, Limit.per_hour(n))

    async def reset(self, key: str) -> None:
        """Forget all usage of ``key``. Idempotent."""
        with _store_errors("delete"):
            await self._get_redis().delete(store_key(key, self.prefix))
        logger.debug(f"Reset rate limit for {key}", extra=get_log_context(key=key))

    async def allow_multi(self, limits: Mapping[str, Limit], n: int = 1) -> Dict[str, Result]:
        """Admit ``n`` units for each of several independent keys.

        All keys are evaluated in one pipeline. Each key is atomic on its
        own; the batch is not a transaction. If any key fails, the whole
        call fails. Once the script is known to be registered the batch is
        a single round trip; a NOSCRIPT reply reloads and resends it whole.

        Returns:
            Mapping of limiter name to its Result.
        """
        _check_cost(n)
        pending = [
            _PendingCall(
                name=name,
                limit=limit,
                key=store_key(name, self.prefix),
                args=encode_args(limit, n, Mode.ALL_OR_NOTHING, self.ttl_margin),
            )
            for name, limit in limits.items()
        ]
        if not pending:
            return {}

        redis = self._get_redis()

        async def call() -> List[Any]:
            async with redis.pipeline(transaction=False) as pipe:
                for p in pending:
                    pipe.evalsha(self._scripts.sha, 1, p.key, *p.args)
                return await pipe.execute()

        try:
            with _store_errors("pipeline"):
                await self._scripts.ensure_loaded(redis)
                replies = await self._scripts.run(redis, call)
        except StoreUnavailableError as e:
            if self.fallback is None:
                raise
            return {
                p.name: self._fallback_result(p.name, p.limit, n, Mode.ALL_OR_NOTHING, e)
                for p in pending
            }

        if len(replies) != len(pending):
            raise MalformedReplyError(
                replies, f"expected {len(pending)} pipeline replies, got {len(replies)}"
            )

        results: Dict[str, Result] = {}
        for p, reply in zip(pending, replies):
            results[p.name] = Result.from_decision(p.name, p.limit, decode_reply(reply))
        return results

    async def _evaluate(self, key: str, limit: Limit, n: int, mode: Mode) -> Result:
        _check_cost(n)
        rkey = store_key(key, self.prefix)
        args = encode_args(limit, n, mode, self.ttl_margin)
        redis = self._get_redis()

        async def call() -> Any:
            return await redis.evalsha(self._scripts.sha, 1, rkey, *args)

        try:
            with _store_errors("evalsha"):
                reply = await self._scripts.run(redis, call)
        except StoreUnavailableError as e:
            if self.fallback is None:
                raise
            return self._fallback_result(key, limit, n, mode, e)

        result = Result.from_decision(key, limit, decode_reply(reply))
        if result.denied and n > 0:
            logger.debug(
                f"Rate limited {key}: {limit}, retry after {result.retry_after:.3f}s",
                extra=get_log_context(key=key, cost=n, mode=mode.name.lower()),
            )
        return result

    def _fallback_result(
        self, key: str, limit: Limit, n: int, mode: Mode, error: Exception
    ) -> Result:
        logger.warning(
            f"Redis unavailable ({error}); using local fallback limiter for {key}",
            extra=get_log_context(key=key, source="fallback", cost=n, mode=mode.name.lower()),
        )
        decision = self.fallback.take(n, mode)
        return Result.from_decision(key, limit, decision, source="fallback")

    async def close(self) -> None:
        """Close the Redis client if this limiter created it."""
        if self._redis is not None and self._owns_redis:
            await self._redis.aclose()
            self._redis = None
            self._owns_redis = False


def _check_cost(n: int) -> None:
    if isinstance(n, bool) or not isinstance(n, int):
        raise TypeError("n must be an integer")
    if n < 0:
        raise ValueError("n must be >= 0")


_limiter: Optional[Limiter] = None


def get_limiter(
    redis_client: Optional[Any] = None,
    redis_url: Optional[str] = None,
) -> Limiter:
    """Get the process-wide limiter, creating it from settings on first use."""
    global _limiter
    if _limiter is None:
        fallback = LocalLimiter.from_settings() if settings.fallback_enabled else None
        _limiter = Limiter(
            redis_client=redis_client,
            redis_url=redis_url,
            fallback=fallback,
        )
    return _limiter


def reset_limiter() -> None:
    """Drop the process-wide limiter instance."""
    global _limiter
    _limiter = None
