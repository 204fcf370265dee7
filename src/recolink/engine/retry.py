"""Retry wrapper for calls to external collaborators.

Only ``TransientIOError`` is retried. Waits grow exponentially and are
bounded by the job deadline: no attempt starts after the deadline and no
wait sleeps past it.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from recolink.engine.config import RetryPolicy
from recolink.errors import TransientIOError

T = TypeVar("T")

__all__ = ["call_with_retry"]


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    deadline: float | None = None,
    on_retry: Callable[[int, BaseException], None] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Call *fn*, retrying transient failures.

    Parameters
    ----------
    fn : Callable[[], T]
        Zero-argument call to perform.
    policy : RetryPolicy
        Attempts and backoff.
    deadline : float | None, optional
        ``clock()`` value after which no further attempt is made.
    on_retry : Callable[[int, BaseException], None] | None, optional
        Called before each wait with the failed attempt number and error.
    clock : Callable[[], float], optional
        Monotonic clock the deadline refers to.

    Returns
    -------
    T
        Result of the first successful attempt.

    Raises
    ------
    TransientIOError
        The last transient error once attempts or time run out.
    Exception
        Any non-transient error, immediately.
    """
    stop = stop_after_attempt(policy.max_attempts)
    if deadline is not None:
        stop = stop | stop_after_delay(max(0.0, deadline - clock()))

    backoff = wait_exponential(multiplier=policy.initial_backoff, max=policy.max_backoff)

    def wait(retry_state: RetryCallState) -> float:
        delay = backoff(retry_state)
        if deadline is not None:
            delay = min(delay, max(0.0, deadline - clock()))
        return delay

    def before_sleep(retry_state: RetryCallState) -> None:
        if on_retry is not None and retry_state.outcome is not None:
            error = retry_state.outcome.exception()
            if error is not None:
                on_retry(retry_state.attempt_number, error)

    retrying = Retrying(
        stop=stop,
        wait=wait,
        retry=retry_if_exception_type(TransientIOError),
        before_sleep=before_sleep,
        reraise=True,
    )
    return retrying(fn)
