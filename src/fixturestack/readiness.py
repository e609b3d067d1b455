"""
Bounded readiness polling

Runs a caller-supplied check until it succeeds or the attempt budget of a
RetryPolicy is spent, waiting ``policy.delay_for_attempt(i)`` seconds after
each failed attempt ``i``. The poller knows nothing about what "ready" means.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Union

from .errors import ReadinessTimeout
from .models import ReadinessResult, RetryPolicy

logger = logging.getLogger(__name__)

Check = Callable[[], Any]


def poll_until_ready(
    check: Check,
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "resource",
) -> ReadinessResult:
    """
    Poll ``check`` until it returns a truthy value.

    A falsy return or any raised Exception counts as a failed attempt.

    Args:
        check: Zero-argument readiness check
        policy: Attempt budget and backoff schedule (default 10 attempts, 1s..9s)
        sleep: Blocking delay function, injectable for tests
        description: What is being polled, used in log and error messages

    Returns:
        ReadinessResult with the number of attempts used

    Raises:
        ReadinessTimeout: If no attempt succeeded, carrying the last error
    """
    policy = policy or RetryPolicy()
    start_time = time.time()
    delays = []
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            if check():
                return ReadinessResult(
                    attempts=attempt,
                    elapsed=time.time() - start_time,
                    description=description,
                    delays=delays,
                )
            last_error = None
            reason = "check reported not ready"
        except Exception as e:
            last_error = e
            reason = str(e).strip() or type(e).__name__

        if attempt == policy.max_attempts:
            break

        delay = policy.delay_for_attempt(attempt)
        logger.info(
            f"{description} not ready (attempt {attempt}/{policy.max_attempts}): "
            f"{reason}; retrying in {delay:.1f}s"
        )
        delays.append(delay)
        sleep(delay)

    raise _timeout(description, policy.max_attempts, last_error)


async def async_poll_until_ready(
    check: Callable[[], Union[Any, Awaitable[Any]]],
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: str = "resource",
) -> ReadinessResult:
    """
    Asynchronous variant of poll_until_ready with the same attempt and delay
    semantics. ``check`` may be a plain callable or a coroutine function.
    """
    policy = policy or RetryPolicy()
    start_time = time.time()
    delays = []
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            outcome = check()
            if inspect.isawaitable(outcome):
                outcome = await outcome
            if outcome:
                return ReadinessResult(
                    attempts=attempt,
                    elapsed=time.time() - start_time,
                    description=description,
                    delays=delays,
                )
            last_error = None
            reason = "check reported not ready"
        except Exception as e:
            last_error = e
            reason = str(e).strip() or type(e).__name__

        if attempt == policy.max_attempts:
            break

        delay = policy.delay_for_attempt(attempt)
        logger.info(
            f"{description} not ready (attempt {attempt}/{policy.max_attempts}): "
            f"{reason}; retrying in {delay:.1f}s"
        )
        delays.append(delay)
        await sleep(delay)

    raise _timeout(description, policy.max_attempts, last_error)


def _timeout(
    description: str, attempts: int, last_error: Optional[BaseException]
) -> ReadinessTimeout:
    message = f"{description} not ready after {attempts} attempts"
    logger.error(message)
    return ReadinessTimeout(
        message,
        attempts=attempts,
        last_error=last_error,
        diagnostics="" if last_error else "check reported not ready",
    )
