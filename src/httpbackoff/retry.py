"""Retry engine: classify each HTTP attempt and back off on transient failures."""

from __future__ import annotations

import asyncio
import logging as py_logging
import threading
import time
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Protocol, TypeVar

import httpx

from httpbackoff.backoff import BackoffSettings, ExponentialBackOff
from httpbackoff.errors import (
    HttpBackoffError,
    IntermittentHttpError,
    NetworkError,
    PermanentHttpError,
    RetryCancelledError,
)

logger = py_logging.getLogger(__name__)

TOO_MANY_REQUESTS = 429


class HttpResponse(Protocol):
    status_code: int


ResponseT = TypeVar("ResponseT", bound=HttpResponse)
Notify = Callable[[HttpBackoffError, float], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Which outcomes qualify for another attempt.

    5xx responses and ``network_errors`` are always retried. Other status
    codes are retried only when listed in ``retry_status_codes``.
    """

    retry_status_codes: frozenset[int] = frozenset({TOO_MANY_REQUESTS})
    network_errors: tuple[type[BaseException], ...] = (httpx.TransportError, OSError)

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code // 100 == 5 or status_code in self.retry_status_codes

    def is_network_error(self, exc: BaseException) -> bool:
        return isinstance(exc, self.network_errors)


DEFAULT_POLICY = RetryPolicy()
STRICT_POLICY = RetryPolicy(retry_status_codes=frozenset())


class OutcomeKind(str, Enum):
    NETWORK_FAILURE = "network_failure"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    SUCCESS = "success"
    OTHER_STATUS = "other_status"


@dataclass(frozen=True)
class Outcome(Generic[ResponseT]):
    kind: OutcomeKind
    attempt: int
    retryable: bool
    response: ResponseT | None = None
    error: HttpBackoffError | None = None

    @property
    def status_code(self) -> int | None:
        if self.response is None:
            return None
        return self.response.status_code

    @property
    def message(self) -> str:
        if self.error is None:
            return f"HTTP response code {self.status_code}"
        return self.error.message


def _kind_for_status(status_code: int) -> OutcomeKind:
    family = status_code // 100
    if family == 2:
        return OutcomeKind.SUCCESS
    if family == 5:
        return OutcomeKind.SERVER_ERROR
    if family == 4:
        return OutcomeKind.CLIENT_ERROR
    return OutcomeKind.OTHER_STATUS


def classify(
    attempt: int,
    response: ResponseT | None,
    error: BaseException | None = None,
    policy: RetryPolicy = DEFAULT_POLICY,
) -> Outcome[ResponseT]:
    if error is not None:
        return Outcome(
            kind=OutcomeKind.NETWORK_FAILURE,
            attempt=attempt,
            retryable=True,
            response=response,
            error=NetworkError.from_exception(error),
        )
    if response is None:
        raise TypeError("classify() needs either a response or an error")

    status_code = response.status_code
    kind = _kind_for_status(status_code)
    if kind is OutcomeKind.SUCCESS:
        return Outcome(kind=kind, attempt=attempt, retryable=False, response=response)
    if policy.is_retryable_status(status_code):
        return Outcome(
            kind=kind,
            attempt=attempt,
            retryable=True,
            response=response,
            error=IntermittentHttpError.for_status(status_code),
        )
    return Outcome(
        kind=kind,
        attempt=attempt,
        retryable=False,
        response=response,
        error=PermanentHttpError.for_status(status_code),
    )


@dataclass(frozen=True)
class RetryResult(Generic[ResponseT]):
    """Final state of one retry sequence.

    ``response`` is the one from the last attempt, also when that attempt
    failed, so callers can inspect the last bad response.
    """

    response: ResponseT | None
    attempts: int
    error: HttpBackoffError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def status_code(self) -> int | None:
        if self.response is None:
            return None
        return self.response.status_code

    def raise_for_error(self) -> ResponseT | None:
        if self.error is not None:
            raise self.error
        return self.response

    def __iter__(self) -> Iterator[Any]:
        return iter((self.response, self.attempts, self.error))


def _log_retry(error: HttpBackoffError, delay: float) -> None:
    logger.debug("Retrying after error=%s wait=%.3fs", error.message, delay)


def _prepare_backoff(
    settings: BackoffSettings | None,
    backoff: ExponentialBackOff | None,
) -> ExponentialBackOff:
    schedule = backoff if backoff is not None else ExponentialBackOff(settings)
    schedule.reset()
    schedule.start()
    return schedule


def _attempt_outcome(
    attempt: int,
    response: ResponseT | None,
    exc: Exception | None,
    policy: RetryPolicy,
) -> Outcome[ResponseT]:
    if exc is not None and not policy.is_network_error(exc):
        raise exc
    outcome: Outcome[ResponseT] = classify(attempt, response, exc, policy)
    if outcome.error is not None:
        logger.debug(
            "Attempt=%s failed kind=%s retryable=%s: %s",
            attempt,
            outcome.kind.value,
            outcome.retryable,
            outcome.message,
        )
    return outcome


def _next_retry(
    outcome: Outcome[ResponseT],
    schedule: ExponentialBackOff,
) -> tuple[HttpBackoffError, float] | None:
    """Return ``(error, delay)`` for another attempt, or ``None`` when ``outcome`` is final."""
    if not outcome.retryable or outcome.error is None:
        return None
    delay = schedule.next_backoff()
    if delay is None:
        logger.warning(
            "Giving up after attempts=%s elapsed=%.3fs: %s",
            outcome.attempt,
            schedule.elapsed(),
            outcome.message,
        )
        return None
    return outcome.error, delay


def _result(outcome: Outcome[ResponseT]) -> RetryResult[ResponseT]:
    return RetryResult(response=outcome.response, attempts=outcome.attempt, error=outcome.error)


def _cancelled(outcome: Outcome[ResponseT]) -> RetryResult[ResponseT]:
    logger.warning("Retry sequence cancelled after attempt=%s", outcome.attempt)
    return RetryResult(
        response=outcome.response,
        attempts=outcome.attempt,
        error=RetryCancelledError(
            f"Retries cancelled after {outcome.attempt} attempt(s): {outcome.message}",
            last_error=outcome.error,
        ),
    )


def _wait(
    delay: float,
    *,
    sleep: Callable[[float], None] | None,
    cancel: threading.Event | None,
) -> bool:
    """Suspend for ``delay`` seconds; return ``True`` if cancellation was requested."""
    if cancel is None:
        (sleep or time.sleep)(delay)
        return False
    if sleep is None:
        return cancel.wait(delay)
    sleep(delay)
    return cancel.is_set()


def retry(
    operation: Callable[[], ResponseT],
    *,
    settings: BackoffSettings | None = None,
    policy: RetryPolicy | None = None,
    backoff: ExponentialBackOff | None = None,
    sleep: Callable[[float], None] | None = None,
    cancel: threading.Event | None = None,
    notify: Notify | None = None,
) -> RetryResult[ResponseT]:
    """Invoke ``operation`` until success, a permanent failure, or the backoff budget runs out.

    ``operation`` performs exactly one HTTP attempt and returns a response
    with a ``status_code``. Exceptions matching ``policy.network_errors`` are
    network failures and are retried; any other exception propagates.

    ``backoff`` is reset before the first attempt. When omitted a fresh
    scheduler is built from ``settings`` so concurrent calls never share
    running state.
    """
    active_policy = policy or DEFAULT_POLICY
    schedule = _prepare_backoff(settings, backoff)
    report = notify or _log_retry
    attempt = 0

    while True:
        attempt += 1
        response: ResponseT | None = None
        failure: Exception | None = None
        try:
            response = operation()
        except Exception as exc:
            failure = exc
        outcome = _attempt_outcome(attempt, response, failure, active_policy)

        planned = _next_retry(outcome, schedule)
        if planned is None:
            return _result(outcome)

        error, delay = planned
        report(error, delay)
        if _wait(delay, sleep=sleep, cancel=cancel):
            return _cancelled(outcome)


async def _async_wait(delay: float, *, cancel: asyncio.Event | None) -> bool:
    if cancel is None:
        await asyncio.sleep(delay)
        return False
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


async def async_retry(
    operation: Callable[[], Awaitable[ResponseT]],
    *,
    settings: BackoffSettings | None = None,
    policy: RetryPolicy | None = None,
    backoff: ExponentialBackOff | None = None,
    cancel: asyncio.Event | None = None,
    notify: Notify | None = None,
) -> RetryResult[ResponseT]:
    """Asyncio variant of :func:`retry`; task cancellation propagates unchanged."""
    active_policy = policy or DEFAULT_POLICY
    schedule = _prepare_backoff(settings, backoff)
    report = notify or _log_retry
    attempt = 0

    while True:
        attempt += 1
        response: ResponseT | None = None
        failure: Exception | None = None
        try:
            response = await operation()
        except Exception as exc:
            failure = exc
        outcome = _attempt_outcome(attempt, response, failure, active_policy)

        planned = _next_retry(outcome, schedule)
        if planned is None:
            return _result(outcome)

        error, delay = planned
        report(error, delay)
        if await _async_wait(delay, cancel=cancel):
            return _cancelled(outcome)
