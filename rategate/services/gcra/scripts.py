"""Registration of the GCRA script with Redis.

Calls go through EVALSHA so the script text is sent once per Redis
instance rather than on every request. Redis may forget scripts (restart,
failover, SCRIPT FLUSH); a NOSCRIPT reply triggers a reload and a retry of
the original call, a bounded number of times.
"""

import asyncio
import hashlib
from typing import Any, Awaitable, Callable, TypeVar

from redis.exceptions import NoScriptError

from rategate.core.logging import get_logger
from rategate.exceptions import ScriptLoadError

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RELOADS = 10


class ScriptCache:
    """Tracks whether a Lua script is registered and recovers when it is not.

    The ``loaded`` flag is only a hint: it is set after a load or a
    successful call and cleared whenever Redis answers NOSCRIPT. Correctness comes from
    the reactive reload in ``run``.
    """

    def __init__(self, script: str, max_reloads: int = DEFAULT_MAX_RELOADS) -> None:
        if max_reloads < 1:
            raise ValueError("max_reloads must be >= 1")
        self.script = script
        # Redis derives the handle the same way, so it is known before loading
        self.sha = hashlib.sha1(script.encode("utf-8")).hexdigest()
        self.max_reloads = max_reloads
        self.loaded = False
        self._generation = 0
        self._lock = asyncio.Lock()

    async def load(self, redis: Any) -> str:
        """Register the script. Idempotent; safe to call at startup."""
        async with self._lock:
            await self._load(redis)
        return self.sha

    async def _load(self, redis: Any) -> None:
        sha = await redis.script_load(self.script)
        if isinstance(sha, bytes):
            sha = sha.decode("ascii")
        if sha != self.sha:
            logger.warning(f"Redis returned script handle {sha}, expected {self.sha}")
            self.sha = sha
        self.loaded = True
        self._generation += 1
        logger.debug(f"Loaded GCRA script {self.sha}")

    async def _reload(self, redis: Any, seen_generation: int) -> None:
        async with self._lock:
            # Another task already reloaded after our call failed
            if self._generation != seen_generation and self.loaded:
                return
            await self._load(redis)

    async def ensure_loaded(self, redis: Any) -> None:
        """Check registration with one SCRIPT EXISTS and load on a miss.

        Does nothing once the script is known to be loaded; a stale flag is
        corrected by the NOSCRIPT handling in ``run``.
        """
        if self.loaded:
            return
        exists = await redis.script_exists(self.sha)
        if exists and exists[0]:
            self.loaded = True
            return
        self.loaded = False
        await self.load(redis)

    async def run(self, redis: Any, call: Callable[[], Awaitable[T]]) -> T:
        """Await ``call()``, reloading and retrying on NOSCRIPT.

        ``call`` is invoked again from scratch after each reload, so it must
        read ``self.sha`` when it runs rather than capture it up front.

        Raises:
            ScriptLoadError: If Redis still answers NOSCRIPT after
                ``max_reloads`` reloads.
        """
        for attempt in range(self.max_reloads + 1):
            seen_generation = self._generation
            try:
                result = await call()
            except NoScriptError:
                self.loaded = False
                if attempt >= self.max_reloads:
                    break
                logger.warning(
                    f"GCRA script {self.sha} not registered, reloading "
                    f"(attempt {attempt + 1}/{self.max_reloads})"
                )
                await self._reload(redis, seen_generation)
            else:
                self.loaded = True
                return result

        logger.error(f"Giving up on GCRA script {self.sha} after {self.max_reloads} reloads")
        raise ScriptLoadError(self.sha, self.max_reloads)
