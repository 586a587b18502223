"""Retry wrapper for fallible async provider calls.

Transient failures (HTTP 429/502/503/504, dropped connections, provider
rate-limit markers in the message) are retried with exponential backoff:
base_delay * 2**attempt, i.e. 1s, 2s, 4s with the defaults. Anything else
is re-raised on the first failure.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from src.zenith.integrations.errors import TransientNetworkError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})
RETRYABLE_MESSAGE_MARKERS = ("RATE_LIMIT", "CONNECTION_ERROR")


def is_retryable(exc: BaseException) -> bool:
    """Classify an exception as transient (retry) or fatal (raise now)."""
    if isinstance(exc, TransientNetworkError):
        return True
    if isinstance(exc, httpx.TransportError):
        return True

    status_code = getattr(exc, "status_code", None)
    if status_code is None and isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
    if status_code is not None and status_code in RETRYABLE_STATUS_CODES:
        return True

    message = str(exc)
    return any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS)


class RetryExecutor:
    """Run an async operation, retrying transient failures.

    Args:
        max_attempts: Default total attempts (first call included).
        base_delay: Seconds for the first backoff step.
        max_delay: Cap for a single backoff step.
        sleep: Awaitable sleep used between attempts. Tests inject a
            recorder here to observe delays without waiting.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._sleep = sleep

    async def run(
        self,
        op: Callable[[], Awaitable[T]],
        max_attempts: int | None = None,
        deadline: float | None = None,
    ) -> T:
        """Invoke ``op`` until it succeeds, fails fatally, or attempts run out.

        Args:
            op: Zero-argument coroutine factory. Called once per attempt.
            max_attempts: Overrides the executor default for this call.
            deadline: Seconds after which no further attempt is started.

        Returns:
            The value returned by the first successful attempt.

        Raises:
            The fatal exception, or the last transient one once retries are
            exhausted. asyncio.CancelledError propagates between attempts.
        """
        attempts = max_attempts or self._max_attempts
        stop = stop_after_attempt(attempts)
        if deadline is not None:
            stop = stop | stop_after_delay(deadline)

        kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep

        retrying = AsyncRetrying(
            stop=stop,
            wait=wait_exponential(multiplier=self._base_delay, max=self._max_delay),
            retry=retry_if_exception(is_retryable),
            before_sleep=self._log_retry,
            reraise=True,
            **kwargs,
        )
        return await retrying(op)

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "retry.transient_failure",
            attempt=retry_state.attempt_number,
            next_delay=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc),
        )
