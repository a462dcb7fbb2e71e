"""Shared fixtures: an in-memory stand-in for the Redis commands the limiter uses."""

import hashlib
import math

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import NoScriptError, ResponseError

from rategate.services.gcra import GCRA_EPOCH, Limit, Mode, evaluate, reset_limiter


class FakeClock:
    """Server clock in Unix seconds; only moves when a test advances it."""

    def __init__(self, now: float = GCRA_EPOCH + 86400.0):
        self.now = now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _lua_tostring(value: float) -> bytes:
    # Lua formats numbers with %.14g
    return ("%.14g" % value).encode()


class FakePipeline:
    """Buffers EVALSHA calls and runs them in order on execute()."""

    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.commands = []

    def evalsha(self, *args):
        self.commands.append(args)
        return self

    async def execute(self, raise_on_error: bool = True):
        self.redis.calls.append("pipeline")
        self.redis.check_up()
        results = []
        for args in self.commands:
            try:
                results.append(self.redis.run_script(*args))
            except ResponseError as e:
                results.append(e)
        if raise_on_error:
            for r in results:
                if isinstance(r, Exception):
                    raise r
        return results


class FakeRedis:
    """Executes the GCRA script semantics against a dict.

    Each EVALSHA runs without awaiting, so it is atomic with respect to
    other tasks, like a script inside Redis.

    Attributes:
        data: store key -> (value, expires_at)
        scripts: registered sha -> script text
        calls: command names in the order they reached the "server"
        down: when True every command raises a connection error
        accept_scripts: when False SCRIPT LOAD succeeds but is forgotten
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.data = {}
        self.scripts = {}
        self.calls = []
        self.down = False
        self.accept_scripts = True

    def check_up(self) -> None:
        if self.down:
            raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    def _get(self, key):
        entry = self.data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self.clock.now:
            del self.data[key]
            return None
        return value

    def run_script(self, sha, numkeys, *args):
        if sha not in self.scripts:
            raise NoScriptError("No matching script. Please use EVAL.")
        key = args[0]
        burst, rate, period, cost, mode, ttl_margin = args[numkeys:]
        limit = Limit(rate=float(rate), period=float(period), burst=int(burst))

        stored = self._get(key)
        if stored is not None and not isinstance(stored, float):
            raise ResponseError("ERR Error running script: attempt to compare nil with number")

        now = self.clock.now - GCRA_EPOCH
        new_tat, decision = evaluate(stored, now, limit, int(cost), Mode(mode))
        if new_tat is not None:
            ttl = math.ceil(decision.reset_after) + int(ttl_margin)
            self.data[key] = (new_tat, self.clock.now + ttl)
        return [
            decision.allowed,
            decision.remaining,
            _lua_tostring(decision.retry_after),
            _lua_tostring(decision.reset_after),
        ]

    async def evalsha(self, sha, numkeys, *args):
        self.calls.append("evalsha")
        self.check_up()
        return self.run_script(sha, numkeys, *args)

    async def script_load(self, script):
        self.calls.append("script_load")
        self.check_up()
        sha = hashlib.sha1(script.encode("utf-8")).hexdigest()
        if self.accept_scripts:
            self.scripts[sha] = script
        return sha

    async def script_exists(self, *shas):
        self.calls.append("script_exists")
        self.check_up()
        return [sha in self.scripts for sha in shas]

    async def script_flush(self):
        self.scripts.clear()

    async def delete(self, *keys):
        self.calls.append("delete")
        self.check_up()
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    def pipeline(self, transaction: bool = True):
        return FakePipeline(self)

    async def aclose(self):
        pass


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset the process-wide limiter before and after each test."""
    reset_limiter()
    yield
    reset_limiter()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)
