"""Data models for GCRA rate limiting."""

import math
from dataclasses import dataclass, field
from enum import Enum

# Sentinel for retry_after when the request was not denied
NOT_APPLICABLE = -1.0


class Mode(Enum):
    """Admission policy for a single evaluation.

    ALL_OR_NOTHING admits the whole cost or nothing; AT_MOST admits the
    largest affordable part of the cost. The value is what the Lua script
    receives as ARGV[5].
    """
    ALL_OR_NOTHING = "0"
    AT_MOST = "1"


@dataclass(frozen=True)
class Limit:
    """Rate limit configuration.

    Attributes:
        rate: Units emitted per period
        period: Period length in seconds
        burst: Units that may be admitted at once with an idle bucket
    """
    rate: float
    period: float
    burst: int

    def __post_init__(self) -> None:
        if not self.rate > 0 or not math.isfinite(self.rate):
            raise ValueError("rate must be a finite number > 0")
        if not self.period > 0 or not math.isfinite(self.period):
            raise ValueError("period must be a finite number > 0")
        if (
            isinstance(self.burst, bool)
            or not math.isfinite(self.burst)
            or int(self.burst) != self.burst
        ):
            raise ValueError("burst must be an integer")
        if self.burst < 1:
            raise ValueError("burst must be >= 1")

    @property
    def emission_interval(self) -> float:
        """Seconds of theoretical arrival time charged per unit."""
        return self.period / self.rate

    @classmethod
    def per_second(cls, rate: int) -> "Limit":
        return cls(rate=rate, period=1.0, burst=rate)

    @classmethod
    def per_minute(cls, rate: int) -> "Limit":
        return cls(rate=rate, period=60.0, burst=rate)

    @classmethod
    def per_hour(cls, rate: int) -> "Limit":
        return cls(rate=rate, period=3600.0, burst=rate)

    def __str__(self) -> str:
        return f"{self.rate:g} req/{self.period:g}s (burst {self.burst})"


@dataclass(frozen=True)
class Decision:
    """Raw outcome of one GCRA evaluation, before it is tied to a key.

    This is exactly what the Lua script returns, decoded.
    """
    allowed: int
    remaining: int
    retry_after: float
    reset_after: float


@dataclass(frozen=True)
class Result:
    """Admission decision returned to callers.

    Attributes:
        key: Limiter name the decision belongs to
        limit: Limit the key was evaluated against
        allowed: Units admitted (0 when denied)
        remaining: Units still admissible right now
        retry_after: Seconds until the denied request could succeed,
            or -1 when nothing was denied
        reset_after: Seconds until the key is back to a full burst
        source: Where the decision came from ('redis' or 'fallback')
    """
    key: str
    limit: Limit
    allowed: int
    remaining: int
    retry_after: float
    reset_after: float
    source: str = field(default="redis")

    @classmethod
    def from_decision(
        cls, key: str, limit: Limit, decision: Decision, source: str = "redis"
    ) -> "Result":
        return cls(
            key=key,
            limit=limit,
            allowed=decision.allowed,
            remaining=decision.remaining,
            retry_after=decision.retry_after,
            reset_after=decision.reset_after,
            source=source,
        )

    @property
    def denied(self) -> bool:
        """True when no unit was admitted.

        A peek (cost 0) never admits anything, so this is True for every
        peek. Use ``retry_after == NOT_APPLICABLE`` to tell whether a peek
        found capacity.
        """
        return self.allowed == 0

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "key": self.key,
            "limit": {
                "rate": self.limit.rate,
                "period": self.limit.period,
                "burst": self.limit.burst,
            },
            "allowed": self.allowed,
            "remaining": self.remaining,
            "retry_after": self.retry_after,
            "reset_after": self.reset_after,
            "source": self.source,
        }
