"""Rate limiting middleware for ASGI applications.

Applies one GCRA limit per client, keyed by API key when present and by
client IP otherwise. The limit state lives in Redis, so every worker and
every instance behind a load balancer enforces the same budget.
"""

import hashlib
import math
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from rategate.core.config import settings
from rategate.core.logging import get_log_context, get_logger
from rategate.exceptions import RateLimitError
from rategate.services.gcra import Limit, Limiter, Result, get_limiter

logger = get_logger(__name__)

MAX_API_KEY_LENGTH = 512


def rate_limit_headers(result: Result) -> dict:
    """X-RateLimit-* headers describing ``result``."""
    headers = {
        "X-RateLimit-Limit": str(result.limit.burst),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_after)),
    }
    if result.denied and result.retry_after > 0:
        headers["Retry-After"] = str(math.ceil(result.retry_after))
    return headers


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce a shared rate limit on requests.

    Requests over the limit get 429 with Retry-After. If no decision can be
    taken (Redis down and no fallback configured) the request gets the
    error's status code rather than being silently allowed or denied.
    """

    def __init__(
        self,
        app,
        limit: Optional[Limit] = None,
        limiter: Optional[Limiter] = None,
    ):
        super().__init__(app)
        self.limit = limit or Limit(
            rate=settings.rate_limit_requests_per_minute,
            period=60.0,
            burst=settings.rate_limit_burst_size,
        )
        self._limiter = limiter

    @property
    def limiter(self) -> Limiter:
        if self._limiter is None:
            self._limiter = get_limiter()
        return self._limiter

    def _get_client_key(self, request: Request) -> Optional[str]:
        """Get rate limit key for the request.

        API keys and IPs are hashed so raw credentials never reach Redis.
        Returns None when the API key is too long to be legitimate.
        """
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            api_key = auth[7:].strip()
            if len(api_key) > MAX_API_KEY_LENGTH:
                return None
            key_hash = hashlib.sha256(api_key.encode()).hexdigest()[:32]
            return f"apikey:{key_hash}"

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()
        else:
            client_ip = request.client.host if request.client else "unknown"

        ip_hash = hashlib.sha256(client_ip.encode()).hexdigest()[:32]
        return f"ip:{ip_hash}"

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        key = self._get_client_key(request)
        if key is None:
            return JSONResponse(
                status_code=400,
                content={"error": "invalid_api_key", "message": "API key too long"},
            )

        try:
            result = await self.limiter.allow(key, self.limit)
        except RateLimitError as e:
            logger.error(f"Rate limit check failed: {e}", extra=get_log_context(key=key))
            return JSONResponse(
                status_code=e.status_code,
                content={"error": "rate_limit_unavailable", "message": e.message},
            )

        headers = rate_limit_headers(result)
        if result.denied:
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": "Rate limit exceeded. Please try again later.",
                    "retry_after": result.retry_after,
                },
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
