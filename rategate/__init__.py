"""Distributed GCRA rate limiting on Redis."""

from rategate.exceptions import (
    MalformedReplyError,
    RateLimitError,
    ScriptLoadError,
    StoreError,
    StoreUnavailableError,
)
from rategate.services.gcra import (
    NOT_APPLICABLE,
    Limit,
    Limiter,
    LocalLimiter,
    Mode,
    Result,
    get_limiter,
    reset_limiter,
)

__version__ = "0.1.0"

__all__ = [
    "NOT_APPLICABLE",
    "Limit",
    "Limiter",
    "LocalLimiter",
    "Mode",
    "Result",
    "get_limiter",
    "reset_limiter",
    "RateLimitError",
    "StoreError",
    "StoreUnavailableError",
    "ScriptLoadError",
    "MalformedReplyError",
]
