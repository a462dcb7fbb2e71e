"""GCRA rate limiting shared across processes through Redis.

This package provides atomic admission decisions using a Redis Lua script,
with an optional in-process fallback when Redis is unavailable.
"""

from .evaluator import evaluate
from .fallback import LocalLimiter
from .models import NOT_APPLICABLE, Decision, Limit, Mode, Result
from .redis_lua import GCRA_EPOCH, GCRA_SCRIPT
from .scripts import ScriptCache
from .service import Limiter, get_limiter, reset_limiter

__all__ = [
    "NOT_APPLICABLE",
    "Decision",
    "Limit",
    "Mode",
    "Result",
    "evaluate",
    "GCRA_EPOCH",
    "GCRA_SCRIPT",
    "ScriptCache",
    "LocalLimiter",
    "Limiter",
    "get_limiter",
    "reset_limiter",
]
