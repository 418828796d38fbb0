"""Exponential backoff retries for HTTP calls.

Network failures and 5xx responses are retried (429 too, unless the policy
says otherwise); other non-2xx responses are returned after the first
attempt. Every call reports how many attempts it made.
"""

from .backoff import BackoffSettings, ExponentialBackOff
from .client import AsyncClient, Client, get, head, post, post_form, request
from .errors import (
    BadHttpResponseCode,
    ExitCode,
    HttpBackoffError,
    IntermittentHttpError,
    NetworkError,
    PermanentHttpError,
    RetryCancelledError,
)
from .retry import (
    DEFAULT_POLICY,
    STRICT_POLICY,
    Outcome,
    OutcomeKind,
    RetryPolicy,
    RetryResult,
    async_retry,
    classify,
    retry,
)

__all__ = [
    "AsyncClient",
    "async_retry",
    "BackoffSettings",
    "BadHttpResponseCode",
    "classify",
    "Client",
    "DEFAULT_POLICY",
    "ExitCode",
    "ExponentialBackOff",
    "get",
    "head",
    "HttpBackoffError",
    "IntermittentHttpError",
    "NetworkError",
    "Outcome",
    "OutcomeKind",
    "PermanentHttpError",
    "post",
    "post_form",
    "request",
    "retry",
    "RetryCancelledError",
    "RetryPolicy",
    "RetryResult",
    "STRICT_POLICY",
]
