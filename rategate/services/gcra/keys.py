"""Store key addressing and script argument encoding.

Processes coordinate only through key names: the same limiter name under
the same prefix always addresses the same Redis key.
"""

from typing import Any, List, Sequence, Union

from rategate.exceptions import MalformedReplyError

from .models import Decision, Limit, Mode


def store_key(name: str, prefix: str) -> str:
    """Redis key holding the TAT for limiter ``name``."""
    return prefix + name


def encode_args(limit: Limit, cost: int, mode: Mode, ttl_margin: int) -> List[Union[int, str]]:
    """ARGV for the GCRA script, in script order."""
    # repr keeps every digit of the float; Lua tonumber parses it back exactly
    return [
        int(limit.burst),
        repr(float(limit.rate)),
        repr(float(limit.period)),
        int(cost),
        mode.value,
        int(ttl_margin),
    ]


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("ascii")
    if isinstance(value, str):
        return value
    raise TypeError(f"expected bytes or str, got {type(value).__name__}")


def decode_reply(reply: Any) -> Decision:
    """Decode ``{allowed, remaining, retry_after, reset_after}``.

    Raises:
        MalformedReplyError: If the reply has any other shape or type.
    """
    if not isinstance(reply, Sequence) or isinstance(reply, (str, bytes)):
        raise MalformedReplyError(reply, "not a list")
    if len(reply) != 4:
        raise MalformedReplyError(reply, f"expected 4 items, got {len(reply)}")

    allowed, remaining, retry_after, reset_after = reply
    if not isinstance(allowed, int) or not isinstance(remaining, int):
        raise MalformedReplyError(reply, "counts must be integers")
    if allowed < 0 or remaining < 0:
        raise MalformedReplyError(reply, "counts must not be negative")

    try:
        retry = float(_as_text(retry_after))
        reset = float(_as_text(reset_after))
    except (TypeError, ValueError) as e:
        raise MalformedReplyError(reply, f"bad duration: {e}") from e

    return Decision(
        allowed=allowed,
        remaining=remaining,
        retry_after=retry,
        reset_after=reset,
    )
