"""In-process limiter used when Redis is unreachable.

One bucket is shared by every key, so the fallback only bounds the total
admission rate of this process. Per-key limits are not enforced while it is
in use; the distributed state is neither read nor updated.
"""

import threading
import time
from typing import Callable, Optional

from rategate.core.config import settings

from .evaluator import evaluate
from .models import Decision, Limit, Mode


class LocalLimiter:
    """Token-bucket equivalent GCRA limiter kept in process memory.

    Thread-safe: evaluation is synchronous and guarded by a lock, so it
    can be shared between event loop tasks and worker threads.
    """

    def __init__(
        self,
        rate: float,
        period: float = 1.0,
        burst: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = Limit(rate=rate, period=period, burst=burst)
        self._clock = clock
        self._tat: Optional[float] = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls) -> "LocalLimiter":
        return cls(
            rate=settings.fallback_rate,
            period=settings.fallback_period_seconds,
            burst=settings.fallback_burst,
        )

    def take(self, cost: int = 1, mode: Mode = Mode.ALL_OR_NOTHING) -> Decision:
        """Consume up to ``cost`` units from the local bucket."""
        with self._lock:
            new_tat, decision = evaluate(self._tat, self._clock(), self.limit, cost, mode)
            if new_tat is not None:
                self._tat = new_tat
            return decision
