"""
Bounded retry combinators.

Both combinators are cancellable (asyncio.CancelledError always
propagates) and have a defined give-up outcome:
    - retry_with_backoff re-raises the last error
    - poll_until returns False
Delays grow exponentially and are capped at BackoffPolicy.max_delay.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import classify_failure

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class BackoffPolicy:
    """Capped exponential backoff."""

    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 15.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the zero-based `attempt`."""
        return min(self.max_delay, self.base_delay * (self.multiplier ** attempt))


def is_transient(error: BaseException) -> bool:
    """True for network, timeout and rate-limit failures."""
    return classify_failure(error).retryable


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    is_retryable: Callable[[BaseException], bool] = is_transient,
    sleep: Sleep = asyncio.sleep,
    description: str = "operation",
) -> T:
    """
    Run `operation` until it succeeds, fails terminally, or attempts run out.

    Raises:
        The last error once attempts are exhausted, or the first
        non-retryable error immediately.
    """
    for attempt in range(policy.max_attempts):
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not is_retryable(e) or attempt == policy.max_attempts - 1:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{description} failed ({e}), retry {attempt + 1}/{policy.max_attempts} in {delay:.1f}s"
            )
            await sleep(delay)

    raise RuntimeError(f"{description}: retry policy allows no attempts")


async def poll_until(
    check: Callable[[], Awaitable[bool]],
    policy: BackoffPolicy,
    is_retryable: Optional[Callable[[BaseException], bool]] = is_transient,
    sleep: Sleep = asyncio.sleep,
    description: str = "condition",
) -> bool:
    """
    Poll `check` a bounded number of times.

    Transient errors raised by `check` count as a failed attempt;
    anything else propagates.

    Returns:
        True as soon as `check` returns True, False after giving up.
    """
    for attempt in range(policy.max_attempts):
        try:
            if await check():
                return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if is_retryable is None or not is_retryable(e):
                raise
            logger.warning(f"Polling for {description} failed: {e}")

        if attempt < policy.max_attempts - 1:
            await sleep(policy.delay_for(attempt))

    logger.info(f"Gave up polling for {description} after {policy.max_attempts} attempts")
    return False
