"""
Send-with-retry — per-recipient delivery with classified retries.

  rate limited  → wait the provider's retry_after (or current backoff), retry
  permanent     → fail immediately
  anything else → wait current backoff, retry

Backoff starts at the pacing base delay and is multiplied after every
failed attempt, capped at max_backoff_ms. Every retry consumes one of
max_retries attempts; once they are used up the last error is raised.
"""
from __future__ import annotations

import asyncio
import structlog
from dataclasses import dataclass
from typing import Awaitable, Callable

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from channels.base import DeliverySink, PermanentDeliveryError, RateLimitedError
from models.schemas import RecipientHandle

logger = structlog.get_logger()

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class BackoffPolicy:
    max_retries: int = 3
    base_delay_ms: float = 1200
    multiplier: float = 2.0
    max_backoff_ms: float = 30000

    def backoff_ms(self, attempt_number: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.base_delay_ms * self.multiplier ** (attempt_number - 1), self.max_backoff_ms)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, Exception) and not isinstance(exc, PermanentDeliveryError)


def _wait_seconds(policy: BackoffPolicy) -> Callable[[RetryCallState], float]:
    def wait(retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception()
        if isinstance(exc, RateLimitedError) and exc.retry_after_ms is not None:
            return exc.retry_after_ms / 1000
        return policy.backoff_ms(retry_state.attempt_number) / 1000
    return wait


def _log_retry(handle: RecipientHandle) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception()
        wait_ms = round(retry_state.next_action.sleep * 1000) if retry_state.next_action else 0
        if isinstance(exc, RateLimitedError):
            logger.warning("rate_limited",
                           recipient=handle.tag,
                           attempt=retry_state.attempt_number,
                           wait_ms=wait_ms)
        else:
            logger.warning("delivery_retry",
                           recipient=handle.tag,
                           attempt=retry_state.attempt_number,
                           wait_ms=wait_ms,
                           error=str(exc))
    return before_sleep


async def send_with_retry(
    sink: DeliverySink,
    handle: RecipientHandle,
    text: str,
    policy: BackoffPolicy,
    sleep: SleepFn = asyncio.sleep,
) -> int:
    """Deliver text to one recipient. Returns the number of attempts used."""
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, policy.max_retries)),
        wait=_wait_seconds(policy),
        retry=retry_if_exception(_is_retryable),
        before_sleep=_log_retry(handle),
        sleep=sleep,
        reraise=True,
    )
    attempts = 0
    async for attempt in retrying:
        with attempt:
            attempts += 1
            await sink.deliver(handle, text)
    return attempts
