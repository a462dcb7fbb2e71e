"""Middleware package for rategate."""

from rategate.middleware.rate_limit import RateLimitMiddleware, rate_limit_headers

__all__ = [
    "RateLimitMiddleware",
    "rate_limit_headers",
]
