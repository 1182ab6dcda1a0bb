"""Service for executing API calls with automatic retries.

Implements exponential backoff for transient errors: network failures and
answers whose status code falls outside 200-299. After the last attempt the
final error is re-raised unchanged.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Coroutine, Optional

import httpx

from jobpoller.domain.events.api_events import ApiCallFailed, ApiCallSucceeded, RetryScheduled
from jobpoller.domain.models.common import BackoffPolicy
from jobpoller.infrastructure.http.errors import UnexpectedStatusError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


def dispatch_event(event: Any) -> None:
    logger.debug(f"EVENT: {event}")


def ensure_success(result: Any) -> Any:
    """Turns a non-2xx `httpx.Response` into an `UnexpectedStatusError`."""
    if isinstance(result, httpx.Response) and not 200 <= result.status_code < 300:
        raise UnexpectedStatusError(result)
    return result


class ApiRetryService:
    """Handles API call execution with bounded retries."""

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_backoff_s: float = 1.0,
        backoff_factor: float = 2.0,
        max_backoff_s: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initializes the ApiRetryService.

        Args:
            max_retries: Default number of retries after the first attempt.
            initial_backoff_s: Initial delay in seconds for the first retry.
            backoff_factor: Multiplier for the backoff delay (e.g., 2 for exponential).
            max_backoff_s: Upper bound for a single delay.
            sleep: Coroutine used to wait between attempts.
        """
        self.max_retries = max_retries
        self.initial_backoff_s = initial_backoff_s
        self.backoff_factor = backoff_factor
        self.max_backoff_s = max_backoff_s
        self._sleep = sleep

        logger.info(
            f"ApiRetryService initialized: max_retries={max_retries}, "
            f"initial_backoff={initial_backoff_s}s, factor={backoff_factor}, cap={max_backoff_s}s"
        )

    @classmethod
    def from_policy(cls, policy: BackoffPolicy, **kwargs: Any) -> "ApiRetryService":
        return cls(
            initial_backoff_s=policy["initial_delay"],
            backoff_factor=policy["factor"],
            max_backoff_s=policy["max_delay"],
            **kwargs,
        )

    def backoff_for(self, retry_number: int) -> float:
        """Delay before retry `retry_number` (1-based)."""
        delay = self.initial_backoff_s * (self.backoff_factor ** (retry_number - 1))
        return min(delay, self.max_backoff_s)

    async def execute_with_retry(
        self,
        func: Callable[..., Coroutine[Any, Any, Any]],
        *args: Any,
        max_retries: Optional[int] = None,
        endpoint_name: Optional[str] = None,
        **kwargs: Any
    ) -> Any:
        """Executes an async function, retrying it when it fails.

        Args:
            func: The async function (API call) to execute.
            *args: Positional arguments for the function.
            max_retries: Retries after the first attempt (service default if None).
            endpoint_name: Name used in logs and events (defaults to func.__name__).
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the first successful attempt.

        Raises:
            Exception: The error of the last attempt once all attempts failed.
        """
        retries = self.max_retries if max_retries is None else max_retries
        endpoint = endpoint_name or getattr(func, "__name__", "operation")
        attempts = retries + 1

        for attempt in range(1, attempts + 1):
            start_time = time.perf_counter()
            try:
                result = ensure_success(await func(*args, **kwargs))
            except Exception as e:
                if attempt >= attempts:
                    logger.error(f"Max retries ({retries}) reached for {endpoint}. Last error: {type(e).__name__}: {e}")
                    dispatch_event(ApiCallFailed(endpoint=endpoint, attempts=attempt, error_type=type(e).__name__, error_message=str(e)))
                    raise

                delay = self.backoff_for(attempt)
                logger.warning(
                    f"Error calling {endpoint} on attempt {attempt}/{attempts}: {type(e).__name__}: {e}. "
                    f"Waiting {delay:.2f}s..."
                )
                dispatch_event(RetryScheduled(endpoint=endpoint, attempt_number=attempt, delay_seconds=delay))
                await self._sleep(delay)
                continue

            latency_ms = (time.perf_counter() - start_time) * 1000
            dispatch_event(ApiCallSucceeded(
                endpoint=endpoint,
                attempts=attempt,
                latency_ms=latency_ms,
                status_code=getattr(result, "status_code", None),
            ))
            return result
