"""Custom exceptions for rategate."""


class RateLimitError(Exception):
    """Base class for limiter errors with an HTTP status code.

    A denial is never an exception; these describe situations where no
    decision could be taken. The status_code lets HTTP layers map them
    to a response without guessing allow or deny.
    """
    status_code: int = 500

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class StoreError(RateLimitError):
    """Raised when Redis rejects a command (for example WRONGTYPE).

    Maps to HTTP 502 Bad Gateway.
    """
    status_code = 502


class StoreUnavailableError(StoreError):
    """Raised when Redis cannot be reached or times out.

    This is the only error the fallback limiter replaces with a local
    decision. Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503


class ScriptLoadError(RateLimitError):
    """Raised when the GCRA script cannot be kept registered in Redis.

    Redis kept answering NOSCRIPT after ``attempts`` reloads.
    """
    status_code = 500

    def __init__(self, sha: str, attempts: int):
        self.sha = sha
        self.attempts = attempts
        super().__init__(
            f"Could not establish GCRA script {sha} after {attempts} reloads"
        )


class MalformedReplyError(RateLimitError):
    """Raised when a script reply does not have the expected shape.

    Maps to HTTP 502 Bad Gateway. Never retried.
    """
    status_code = 502

    def __init__(self, reply: object, detail: str = "unexpected reply shape"):
        self.reply = reply
        super().__init__(f"Malformed GCRA reply ({detail}): {reply!r}")
