"""Retry executor for calls against the chat platform.

Every call the cleanup orchestrator makes against a ConversationSource goes
through RateLimitedExecutor.call(). The executor owns the whole retry
policy; the client underneath only translates HTTP status codes into
RateLimited / AuthTransient / UpstreamFailure and never retries itself.

Policy:
- RateLimited: exponential backoff (base_delay, 2x, 4x, ...) up to
  max_retries retries, then the last RateLimited is re-raised
- AuthTransient: fixed auth_delay, up to auth_retries retries, then
  AuthenticationError is raised from the last AuthTransient
- Anything else propagates on the first occurrence

Usage:
    executor = RateLimitedExecutor(max_retries=5, base_delay=1.0)
    page = await executor.call(lambda: source.list_page(tenant, 1, 50))
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

from wipebot.core.cancellation import CancelToken, pause
from wipebot.core.errors import AuthenticationError, AuthTransient, RateLimited
from wipebot.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY = 1.0  # seconds, doubled on each rate-limit retry
DEFAULT_AUTH_RETRIES = 3
DEFAULT_AUTH_DELAY = 1.0  # seconds, fixed


class RateLimitedExecutor:
    """Runs a single async call with bounded retries on transient failures.

    Attributes:
        max_retries: Rate-limit retries allowed after the first attempt
        base_delay: First rate-limit backoff delay in seconds
        auth_retries: Auth-transient retries allowed after the first attempt
        auth_delay: Fixed delay between auth-transient retries in seconds
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
        auth_retries: int = DEFAULT_AUTH_RETRIES,
        auth_delay: float = DEFAULT_AUTH_DELAY,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.auth_retries = auth_retries
        self.auth_delay = auth_delay

    def backoff_delay(self, retry_number: int) -> float:
        """Delay before the given rate-limit retry (0-based)."""
        return self.base_delay * (2**retry_number)

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        cancel: CancelToken | None = None,
        description: str = "crisp_call",
    ) -> T:
        """Execute `operation` with the retry policy.

        The operation is a zero-argument callable returning a fresh awaitable
        on every invocation, so each attempt issues a new request.

        Args:
            operation: Callable producing the awaitable to run
            cancel: Optional token checked before each attempt and during waits
            description: Short label used in retry log entries

        Returns:
            Whatever the operation returns

        Raises:
            RateLimited: When rate-limit retries are exhausted
            AuthenticationError: When auth-transient retries are exhausted
            OperationCancelled: When the token fires before an attempt or mid-wait
        """
        rate_limit_retries = 0
        auth_retries = 0
        max_attempts = self.max_retries + self.auth_retries + 1

        for attempt in range(max_attempts):
            if cancel is not None:
                cancel.raise_if_cancelled()

            try:
                return await operation()

            except RateLimited as e:
                if rate_limit_retries >= self.max_retries:
                    logger.error(
                        "Rate limit retries exhausted",
                        operation=description,
                        retries=rate_limit_retries,
                    )
                    raise
                delay = self.backoff_delay(rate_limit_retries)
                rate_limit_retries += 1
                logger.warning(
                    "Rate limited, backing off",
                    operation=description,
                    attempt=attempt + 1,
                    retry=rate_limit_retries,
                    max_retries=self.max_retries,
                    delay=delay,
                    retry_after=e.retry_after,
                )
                await pause(delay, cancel)

            except AuthTransient as e:
                if auth_retries >= self.auth_retries:
                    logger.error(
                        "Authentication retries exhausted",
                        operation=description,
                        retries=auth_retries,
                    )
                    raise AuthenticationError(
                        f"Authentication with the chat platform failed after "
                        f"{auth_retries} retries: {e}. "
                        "Check the plugin identifier and key in config.yaml."
                    ) from e
                auth_retries += 1
                logger.warning(
                    "Authentication glitch, retrying",
                    operation=description,
                    attempt=attempt + 1,
                    retry=auth_retries,
                    max_retries=self.auth_retries,
                    delay=self.auth_delay,
                )
                await pause(self.auth_delay, cancel)

        # Unreachable: every branch above either returns, raises or counts
        # towards one of the two budgets that together bound max_attempts.
        raise AssertionError("retry loop exited without a result")
