"""Unit tests for deadline-bounded, retried external calls."""

from __future__ import annotations

import random
import threading
import time

import pytest

from toolbox_subtitles.config import RetryPolicy
from toolbox_subtitles.pipeline.errors import (
    CancellationRequested,
    ExternalCallTimeout,
    RetriesExhaustedError,
    StorageFailure,
    TranscriptionFailure,
    error_message,
)
from toolbox_subtitles.pipeline.retry import backoff_delay, call_with_deadline, call_with_retry

NO_WAIT = RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0, call_timeout=2.0)


class Flaky:
    def __init__(self, failures: int, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or ConnectionError("connection reset")
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


def test_backoff_grows_exponentially_and_is_capped() -> None:
    policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=0.0)
    assert [backoff_delay(a, policy) for a in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]


def test_backoff_jitter_stays_in_band() -> None:
    policy = RetryPolicy(base_delay=2.0, max_delay=30.0, jitter=0.1)
    rng = random.Random(7)
    for _ in range(50):
        assert 3.6 <= backoff_delay(2, policy, rng) <= 4.4


def test_policy_validation() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(jitter=1.5)


def test_transient_failures_are_retried() -> None:
    fn = Flaky(failures=2)
    attempts: list[int] = []

    assert call_with_retry(fn, policy=NO_WAIT, operation="upload", on_attempt=attempts.append) == "ok"
    assert attempts == [1, 2, 3]


def test_exhaustion_reports_last_error() -> None:
    fn = Flaky(failures=10)
    with pytest.raises(RetriesExhaustedError) as excinfo:
        call_with_retry(fn, policy=NO_WAIT, operation="Translating pl chunk 1/1")

    assert fn.calls == 3
    assert excinfo.value.attempts == 3
    assert error_message(excinfo.value) == "Translating pl chunk 1/1: connection reset"


def test_foreign_errors_take_the_stage_kind() -> None:
    with pytest.raises(RetriesExhaustedError) as excinfo:
        call_with_retry(Flaky(failures=10), policy=NO_WAIT, operation="upload", wrap_as=StorageFailure)
    assert isinstance(excinfo.value.last_error, StorageFailure)
    assert isinstance(excinfo.value.last_error.__cause__, ConnectionError)


def test_non_retryable_errors_propagate_immediately() -> None:
    fn = Flaky(failures=10, error=TranscriptionFailure("unsupported codec", retryable=False))
    with pytest.raises(TranscriptionFailure):
        call_with_retry(fn, policy=NO_WAIT, operation="transcribe")
    assert fn.calls == 1


def test_deadline_expiry_raises_timeout() -> None:
    release = threading.Event()

    def slow() -> str:
        release.wait(5)
        return "late"

    try:
        with pytest.raises(ExternalCallTimeout):
            call_with_deadline(slow, 0.05, operation="translate")
    finally:
        release.set()


def test_timeouts_feed_the_retry_policy() -> None:
    calls: list[float] = []

    def slow_then_fast() -> str:
        calls.append(time.monotonic())
        if len(calls) == 1:
            time.sleep(0.3)
        return "ok"

    policy = RetryPolicy(max_attempts=2, base_delay=0.0, max_delay=0.0, jitter=0.0, call_timeout=0.1)
    assert call_with_retry(slow_then_fast, policy=policy, operation="translate") == "ok"
    assert len(calls) == 2


def test_cancelled_before_first_attempt() -> None:
    event = threading.Event()
    event.set()
    fn = Flaky(failures=0)

    with pytest.raises(CancellationRequested):
        call_with_retry(fn, policy=NO_WAIT, operation="translate", cancel_event=event)
    assert fn.calls == 0


def test_cancellation_interrupts_backoff() -> None:
    event = threading.Event()
    policy = RetryPolicy(max_attempts=3, base_delay=30.0, max_delay=30.0, jitter=0.0, call_timeout=2.0)
    fn = Flaky(failures=10)
    timer = threading.Timer(0.05, event.set)
    timer.start()
    started = time.monotonic()

    with pytest.raises(CancellationRequested):
        call_with_retry(fn, policy=policy, operation="translate", cancel_event=event)

    assert fn.calls == 1
    assert time.monotonic() - started < 5.0
