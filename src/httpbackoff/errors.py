"""Error taxonomy for retried HTTP calls and the CLI exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    NETWORK_ERROR = 5
    INTERMITTENT_HTTP_ERROR = 6
    PERMANENT_HTTP_ERROR = 7
    CANCELLED = 8


@dataclass
class HttpBackoffError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


@dataclass
class NetworkError(HttpBackoffError):
    """The operation failed before any HTTP response was received."""

    code: ExitCode = ExitCode.NETWORK_ERROR
    cause: BaseException | None = None

    def __post_init__(self) -> None:
        if self.cause is not None:
            self.__cause__ = self.cause

    @classmethod
    def from_exception(cls, exc: BaseException) -> NetworkError:
        detail = str(exc) or type(exc).__name__
        return cls(f"Network failure: {detail}", cause=exc)


@dataclass
class BadHttpResponseCode(HttpBackoffError):
    """A response was received but its status code is not 2xx."""

    status_code: int = 0

    marker = ""

    @classmethod
    def for_status(cls, status_code: int) -> BadHttpResponseCode:
        message = f"HTTP response code {status_code}"
        if cls.marker:
            message = f"{cls.marker} {message}"
        return cls(message, status_code=status_code)


@dataclass
class IntermittentHttpError(BadHttpResponseCode):
    """Retryable status (5xx or a configured code such as 429) that outlived the backoff budget."""

    code: ExitCode = ExitCode.INTERMITTENT_HTTP_ERROR

    marker = "(Intermittent)"


@dataclass
class PermanentHttpError(BadHttpResponseCode):
    """Non-retryable status; returned after the first occurrence."""

    code: ExitCode = ExitCode.PERMANENT_HTTP_ERROR

    marker = "(Permanent)"


@dataclass
class RetryCancelledError(HttpBackoffError):
    code: ExitCode = ExitCode.CANCELLED
    last_error: HttpBackoffError | None = None

    def __post_init__(self) -> None:
        if self.last_error is not None:
            self.__cause__ = self.last_error


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
