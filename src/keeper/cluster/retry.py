"""Retry and polling helpers for cluster calls.

Both helpers take the sleep function (and, for polling, the clock) as
arguments so callers and tests can control time.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from keeper.utils.errors import ReadinessTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]
ClockFunc = Callable[[], float]


@dataclass(frozen=True)
class BackoffPolicy:
    """Bounded exponential backoff.

    Attributes:
        initial: Delay before the second attempt, in seconds
        factor: Multiplier applied to the delay after each attempt
        steps: Maximum number of attempts
        jitter: Random extra delay, as a fraction of ``initial``
    """

    initial: float = 0.5
    factor: float = 1.5
    steps: int = 10
    jitter: float = 0.4


# Policy used for every create, update and delete against the cluster
WRITE_BACKOFF = BackoffPolicy()


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.debug(f"Attempt {retry_state.attempt_number} failed, retrying: {exc}")


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: BackoffPolicy = WRITE_BACKOFF,
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """Run an operation until it succeeds or the policy is exhausted.

    Args:
        operation: Zero-argument coroutine function
        policy: Backoff policy
        sleep: Coroutine function used to wait between attempts

    Returns:
        The operation's result

    Raises:
        Exception: The last exception raised by the operation, unchanged
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.steps),
        wait=wait_exponential(multiplier=policy.initial, exp_base=policy.factor)
        + wait_random(0, policy.initial * policy.jitter),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            result = await operation()
    return result


async def poll_until(
    condition: Callable[[], Awaitable[bool]],
    interval: float,
    timeout: float,
    clock: ClockFunc = time.monotonic,
    sleep: SleepFunc = asyncio.sleep,
) -> None:
    """Evaluate a condition immediately and then every interval until it holds.

    Exceptions raised by the condition propagate and stop the polling.

    Args:
        condition: Coroutine function returning True once done
        interval: Seconds between evaluations
        timeout: Overall budget in seconds
        clock: Monotonic clock
        sleep: Coroutine function used to wait between evaluations

    Raises:
        ReadinessTimeoutError: If the condition did not hold within the timeout
    """
    deadline = clock() + timeout
    while True:
        if await condition():
            return
        remaining = deadline - clock()
        if remaining <= 0:
            raise ReadinessTimeoutError(f"timed out after {timeout:g}s waiting for condition")
        await sleep(min(interval, remaining))
