"""Generic Cell Rate Algorithm, evaluated in-process.

This is the same arithmetic the Lua script in ``redis_lua`` runs inside
Redis, written as a pure function. The local fallback limiter uses it
directly, and it documents what every field of a script reply means.

State is a single float per key, the theoretical arrival time (TAT): the
moment the bucket would be empty again if nothing else arrived. A unit
costs ``emission_interval`` seconds of TAT and the bucket holds
``burst`` units, so a request fits while the new TAT stays within
``burst * emission_interval`` of now.
"""

import math
from typing import Optional, Tuple

from .models import NOT_APPLICABLE, Decision, Limit, Mode


def round_half_up(x: float) -> int:
    """Round to the nearest integer, halves going up (Lua floor(x + 0.5))."""
    return math.floor(x + 0.5)


def evaluate(
    tat: Optional[float],
    now: float,
    limit: Limit,
    cost: int,
    mode: Mode = Mode.ALL_OR_NOTHING,
) -> Tuple[Optional[float], Decision]:
    """Decide how many of ``cost`` units to admit.

    Args:
        tat: Stored theoretical arrival time, or None for an unseen key
        now: Current time on the same clock as ``tat``
        limit: Rate, period and burst to enforce
        cost: Units requested; 0 only inspects the bucket
        mode: ALL_OR_NOTHING or AT_MOST

    Returns:
        (new_tat, Decision). new_tat is None when the state must not be
        written, which is the case for every denial and every peek.
    """
    if cost < 0:
        raise ValueError("cost must be >= 0")

    emission_interval = limit.emission_interval
    burst_offset = emission_interval * limit.burst

    # An expired or stale TAT is the same as an idle bucket
    tat = now if tat is None else max(tat, now)
    diff = now - (tat - burst_offset)
    available = round_half_up(diff / emission_interval)

    if cost == 0:
        retry_after = NOT_APPLICABLE if available >= 1 else emission_interval - diff
        return None, Decision(0, max(available, 0), retry_after, tat - now)

    if mode is Mode.AT_MOST:
        cost = min(cost, max(available, 0))
        if cost == 0:
            return None, Decision(0, 0, emission_interval - diff, tat - now)
    elif available < cost:
        return None, Decision(0, 0, emission_interval * cost - diff, tat - now)

    new_tat = tat + emission_interval * cost
    return new_tat, Decision(cost, available - cost, NOT_APPLICABLE, new_tat - now)

