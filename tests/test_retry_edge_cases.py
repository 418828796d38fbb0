"""Retry module edge case tests."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from httpbackoff.backoff import BackoffSettings, ExponentialBackOff
from httpbackoff.errors import HttpBackoffError, IntermittentHttpError, RetryCancelledError
from httpbackoff.retry import _next_retry, classify, retry


@dataclass
class StubResponse:
    status_code: int


def _always(status_code: int):
    calls = {"count": 0}

    def operation() -> StubResponse:
        calls["count"] += 1
        return StubResponse(status_code)

    return operation, calls


def test_retry_succeeds_first_try() -> None:
    operation, calls = _always(200)

    result = retry(operation, sleep=lambda _: None)

    assert result.ok
    assert result.attempts == 1
    assert calls["count"] == 1


def test_repeated_calls_with_shared_settings_are_independent() -> None:
    settings = BackoffSettings()
    first_op, _ = _always(200)
    second_op, _ = _always(200)

    first = retry(first_op, settings=settings, sleep=lambda _: None)
    second = retry(second_op, settings=settings, sleep=lambda _: None)

    assert first.attempts == second.attempts == 1
    assert first.ok and second.ok
    assert first.status_code == second.status_code == 200


def test_reused_scheduler_is_reset_between_sequences(fake_clock) -> None:
    settings = BackoffSettings(
        initial_interval=1.0,
        randomization_factor=0.0,
        multiplier=2.0,
        max_interval=8.0,
        max_elapsed_time=0.0,
    )
    backoff = ExponentialBackOff(settings, clock=fake_clock)
    backoff.next_backoff()
    backoff.next_backoff()
    delays: list[float] = []
    calls = {"count": 0}

    def operation() -> StubResponse:
        calls["count"] += 1
        return StubResponse(503 if calls["count"] < 3 else 200)

    result = retry(
        operation,
        backoff=backoff,
        sleep=fake_clock.sleep,
        notify=lambda _error, delay: delays.append(delay),
    )

    assert result.attempts == 3
    assert delays == [1.0, 2.0]


def test_notify_receives_error_and_delay() -> None:
    seen: list[tuple[HttpBackoffError, float]] = []
    calls = {"count": 0}

    def operation() -> StubResponse:
        calls["count"] += 1
        return StubResponse(502 if calls["count"] == 1 else 200)

    retry(operation, sleep=lambda _: None, notify=lambda error, delay: seen.append((error, delay)))

    assert len(seen) == 1
    error, delay = seen[0]
    assert isinstance(error, IntermittentHttpError)
    assert error.status_code == 502
    assert delay > 0


def test_preset_cancel_stops_after_first_retryable_failure() -> None:
    cancel = threading.Event()
    cancel.set()
    operation, calls = _always(500)

    result = retry(operation, cancel=cancel)

    assert isinstance(result.error, RetryCancelledError)
    assert isinstance(result.error.last_error, IntermittentHttpError)
    assert result.error.__cause__ is result.error.last_error
    assert result.attempts == calls["count"] == 1
    assert result.status_code == 500


def test_cancel_interrupts_a_long_wait() -> None:
    cancel = threading.Event()
    operation, calls = _always(503)
    settings = BackoffSettings(initial_interval=30.0, randomization_factor=0.0, max_elapsed_time=0.0)

    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    started = time.monotonic()
    try:
        result = retry(operation, settings=settings, cancel=cancel)
    finally:
        timer.cancel()

    assert time.monotonic() - started < 5.0
    assert isinstance(result.error, RetryCancelledError)
    assert result.attempts == calls["count"] == 1


def test_injected_sleep_still_honours_cancel() -> None:
    cancel = threading.Event()
    operation, calls = _always(500)

    def sleep(_: float) -> None:
        if calls["count"] >= 2:
            cancel.set()

    result = retry(operation, sleep=sleep, cancel=cancel)

    assert isinstance(result.error, RetryCancelledError)
    assert result.attempts == 2


def test_permanent_failure_ignores_cancel_state() -> None:
    cancel = threading.Event()
    cancel.set()
    operation, _ = _always(404)

    result = retry(operation, cancel=cancel)

    assert result.attempts == 1
    assert result.error is not None
    assert not isinstance(result.error, RetryCancelledError)


def test_concurrent_sequences_share_settings_safely() -> None:
    settings = BackoffSettings(initial_interval=0.001, randomization_factor=0.0, max_interval=0.002)
    results: dict[int, int] = {}

    def worker(index: int) -> None:
        calls = {"count": 0}

        def operation() -> StubResponse:
            calls["count"] += 1
            return StubResponse(500 if calls["count"] <= index else 200)

        results[index] = retry(operation, settings=settings).attempts

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert results == {index: index + 1 for index in range(5)}


def test_next_retry_pairs_the_outcome_error_with_its_delay(fake_clock) -> None:
    schedule = ExponentialBackOff(BackoffSettings(randomization_factor=0.0), clock=fake_clock)
    schedule.start()
    retryable = classify(1, StubResponse(503))

    planned = _next_retry(retryable, schedule)

    assert planned is not None
    error, delay = planned
    assert error is retryable.error
    assert delay == 0.5
    assert _next_retry(classify(1, StubResponse(404)), schedule) is None
    assert _next_retry(classify(1, StubResponse(200)), schedule) is None


def test_next_retry_returns_none_once_budget_is_spent(fake_clock) -> None:
    schedule = ExponentialBackOff(BackoffSettings(max_elapsed_time=1.0), clock=fake_clock)
    schedule.start()
    fake_clock.sleep(2.0)

    assert _next_retry(classify(3, StubResponse(500)), schedule) is None
