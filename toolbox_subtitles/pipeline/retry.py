"""Deadlines and retries for calls to external services.

Every external call runs on a thread of its own and is abandoned once
``call_timeout`` elapses; an abandoned call holds no slot shared with other
calls. Failures flagged ``retryable`` are retried with exponential backoff
(``base_delay * 2 ** (attempt - 1)``, capped at ``max_delay``, +/- ``jitter``).
Backoff sleeps wait on the job's cancellation event, so a cancel request
never has to sit out a full delay.
"""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import TypeVar

from toolbox_subtitles.config import RetryPolicy
from toolbox_subtitles.pipeline.errors import (
    CancellationRequested,
    ExternalCallTimeout,
    RetriesExhaustedError,
    SubtitlePipelineError,
    TranslationFailure,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = [
    "backoff_delay",
    "call_with_deadline",
    "call_with_retry",
    "checkpoint",
]


def checkpoint(cancel_event: threading.Event | None) -> None:
    """Raise :class:`CancellationRequested` if *cancel_event* is set."""
    if cancel_event is not None and cancel_event.is_set():
        raise CancellationRequested()


def backoff_delay(attempt: int, policy: RetryPolicy, rng: random.Random | None = None) -> float:
    """Return the wait before retrying after failed *attempt* (1-based).

    Examples:
        >>> backoff_delay(3, RetryPolicy(base_delay=1.0, max_delay=30.0, jitter=0.0))
        4.0
    """
    delay = min(policy.max_delay, policy.base_delay * 2 ** (attempt - 1))
    if policy.jitter:
        delay *= (rng or random).uniform(1 - policy.jitter, 1 + policy.jitter)
    return max(0.0, delay)


def call_with_deadline(
    fn: Callable[[], T],
    timeout: float | None,
    operation: str = "external call",
) -> T:
    """Run *fn* and give up waiting after *timeout* seconds.

    The worker thread cannot be interrupted; it is left to finish in the
    background and its result is discarded.

    Raises:
        ExternalCallTimeout: If *fn* has not returned before the deadline.
    """
    if timeout is None or timeout <= 0:
        return fn()

    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="deadline")
    try:
        future = pool.submit(fn)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as exc:
            raise ExternalCallTimeout(f"{operation} timed out after {timeout:g}s") from exc
    finally:
        pool.shutdown(wait=False)


def call_with_retry(
    fn: Callable[[], T],
    *,
    policy: RetryPolicy,
    operation: str,
    wrap_as: type[SubtitlePipelineError] = TranslationFailure,
    cancel_event: threading.Event | None = None,
    on_attempt: Callable[[int], None] | None = None,
    rng: random.Random | None = None,
) -> T:
    """Call *fn* under a deadline, retrying retryable failures.

    Args:
        fn: Zero-argument callable performing the external call.
        policy: Attempt budget, backoff and deadline settings.
        operation: Label used in log lines and error messages.
        wrap_as: Error kind for exceptions that are not pipeline errors.
        cancel_event: Token checked before every attempt and during backoff.
        on_attempt: Called with the 1-based attempt number before each try.
        rng: Random source for jitter.

    Returns:
        The value returned by *fn*.

    Raises:
        CancellationRequested: If the token is set before or between attempts.
        RetriesExhaustedError: If every attempt failed with a retryable error.
        SubtitlePipelineError: The first non-retryable failure, unchanged.
    """
    last_error: SubtitlePipelineError | None = None
    for attempt in range(1, policy.max_attempts + 1):
        checkpoint(cancel_event)
        if on_attempt is not None:
            on_attempt(attempt)
        try:
            return call_with_deadline(fn, policy.call_timeout, operation)
        except CancellationRequested:
            raise
        except SubtitlePipelineError as exc:
            error = exc
        except Exception as exc:
            error = wrap_as(f"{operation}: {exc}")
            error.__cause__ = exc

        if not error.retryable:
            raise error
        last_error = error
        if attempt == policy.max_attempts:
            break

        delay = backoff_delay(attempt, policy, rng)
        logger.warning(
            f"{operation} failed ({error.message}); retrying in {delay:.1f}s "
            f"(attempt {attempt}/{policy.max_attempts})"
        )
        if cancel_event is not None:
            if cancel_event.wait(delay):
                raise CancellationRequested()
        elif delay:
            threading.Event().wait(delay)

    assert last_error is not None
    raise RetriesExhaustedError(operation, last_error, policy.max_attempts)
