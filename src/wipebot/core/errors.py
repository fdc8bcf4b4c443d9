"""Custom exception types for WipeBot.

All exceptions follow the same message standard:
- What failed (specific operation or component)
- Why it failed (the specific condition)
- How to fix it (actionable guidance, where there is any)

The hierarchy mirrors how callers react to a failure:
- ValidationError / NotFoundError: reported to the caller, never retried
- RateLimited / AuthTransient: transient, retried by RateLimitedExecutor
- AuthenticationError: what AuthTransient becomes once retries run out
- UpstreamFailure: any other chat-platform failure, surfaced immediately
"""


class WipeBotError(Exception):
    """Base exception for all WipeBot errors."""

    pass


class ConfigValidationError(WipeBotError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(WipeBotError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class ValidationError(WipeBotError):
    """Raised when filter or group input has a bad shape or value.

    Also covers registry invariants: duplicate names and the per-tenant
    filter limit.
    """

    pass


class NotFoundError(WipeBotError):
    """Raised when a filter, group or conversation does not exist."""

    pass


class CyclicFilterError(WipeBotError):
    """Raised when combination filters reference each other in a loop.

    Attributes:
        path: Filter ids visited in order, ending with the repeated id
    """

    def __init__(self, message: str, path: list[str] | None = None):
        super().__init__(message)
        self.path = path or []


class RateLimited(WipeBotError):
    """Raised when the chat platform answers 429 Too Many Requests.

    Attributes:
        retry_after: Seconds suggested by the Retry-After header, if any
    """

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class AuthTransient(WipeBotError):
    """Raised when the chat platform answers 401 for a request that may succeed on retry."""

    pass


class AuthenticationError(WipeBotError):
    """Raised when authentication keeps failing after the transient retries."""

    pass


class UpstreamFailure(WipeBotError):
    """Raised when the chat platform returns any other error.

    Attributes:
        status_code: HTTP status code from the API (None for transport errors)
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DatabaseError(WipeBotError):
    """Raised when SQLite operations fail."""

    pass


class OperationCancelled(WipeBotError):
    """Raised when a CancelToken fires during a backoff wait or loop iteration."""

    pass
