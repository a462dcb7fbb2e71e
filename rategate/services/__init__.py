"""Services package for rategate."""

from rategate.services.gcra import Limiter, get_limiter, reset_limiter

__all__ = [
    "Limiter",
    "get_limiter",
    "reset_limiter",
]
