"""
Backoff Retrier - Bounded Retries for Page Requests

Wraps one awaitable call with tenacity:
- retries only TransientFetchError (RateLimitedError included)
- rate limited: min(base * 2**attempt, cap), or Retry-After when given (capped)
- any other failure: error_delay * attempt
- exhaustion raises FatalFetchError with the last status and message
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt
from tenacity.wait import wait_base

from utils.config import settings
from utils.errors import FatalFetchError, RateLimitedError, TransientFetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class wait_rate_limit_aware(wait_base):
    """Wait strategy distinguishing rate limiting from other failures."""

    def __init__(self, base: float, cap: float, error_delay: float) -> None:
        self.base = base
        self.cap = cap
        self.error_delay = error_delay

    def __call__(self, retry_state: RetryCallState) -> float:
        attempt = retry_state.attempt_number
        error = retry_state.outcome.exception() if retry_state.outcome else None

        if isinstance(error, RateLimitedError):
            if error.retry_after is not None:
                return min(error.retry_after, self.cap)
            return min(self.base * 2 ** attempt, self.cap)

        return self.error_delay * attempt


class BackoffRetrier:
    """Runs a call up to max_attempts times with rate-limit-aware delays."""

    def __init__(
        self,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        error_delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize retrier. Unset values fall back to settings.

        Args:
            max_attempts: Total attempts including the first
            base_delay: Rate-limit backoff base in seconds
            max_delay: Rate-limit backoff cap in seconds
            error_delay: Per-attempt delay for non-rate-limit failures
            sleep: Awaitable sleep, injectable for tests
        """
        self.max_attempts = max_attempts or settings.FETCH_MAX_ATTEMPTS
        self.wait = wait_rate_limit_aware(
            base=settings.RATE_LIMIT_BASE_DELAY if base_delay is None else base_delay,
            cap=settings.RATE_LIMIT_MAX_DELAY if max_delay is None else max_delay,
            error_delay=settings.ERROR_RETRY_DELAY if error_delay is None else error_delay,
        )
        self._sleep = sleep

    def _log_retry(self, description: str) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            logger.warning(
                "Fetch failed (attempt %d/%d) for %s, retrying in %.1fs: %s",
                retry_state.attempt_number,
                self.max_attempts,
                description,
                retry_state.next_action.sleep if retry_state.next_action else 0.0,
                error,
                extra={"status_code": getattr(error, "status_code", None)},
            )

        return before_sleep

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        description: str = "request",
    ) -> T:
        """
        Await fn(*args), retrying transient failures.

        Args:
            fn: Coroutine function performing the request
            *args: Arguments for fn
            description: Label used in log lines (e.g. "page 3")

        Returns:
            Result of the first successful attempt

        Raises:
            FatalFetchError: When every attempt failed
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception_type(TransientFetchError),
            before_sleep=self._log_retry(description),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await fn(*args)
        except TransientFetchError as e:
            logger.error(
                "Fetch failed after %d attempts for %s: %s",
                self.max_attempts, description, e,
                extra={"status_code": e.status_code},
            )
            raise FatalFetchError(
                f"{description} failed after {self.max_attempts} attempts: {e}",
                status_code=e.status_code,
                attempts=self.max_attempts,
            ) from e

        raise AssertionError("unreachable: tenacity stopped without an outcome")
