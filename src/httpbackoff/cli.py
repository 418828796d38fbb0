"""Command line entrypoint: issue one HTTP request with retries."""

from __future__ import annotations

import argparse
import logging as py_logging
import sys
from collections.abc import Callable, Sequence
from pathlib import Path

from pydantic import ValidationError

from .backoff import BackoffSettings
from .client import Client
from .config import AppConfig, load_config
from .errors import ExitCode, HttpBackoffError, user_facing_error
from .logging import LOG_LEVELS, configure_logging, normalize_level
from .retry import STRICT_POLICY, RetryPolicy, RetryResult

_VALID_METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")
_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_SETTING_FLAGS = (
    "initial_interval",
    "multiplier",
    "randomization_factor",
    "max_interval",
    "max_elapsed_time",
)


def _log_level_type(value: str) -> str:
    normalized = normalize_level(value)
    if normalized not in LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def _method_type(value: str) -> str:
    normalized = value.upper()
    if normalized not in _VALID_METHODS:
        raise argparse.ArgumentTypeError(f"-X must be one of: {', '.join(_VALID_METHODS)}")
    return normalized


def _form_field_type(value: str) -> tuple[str, str]:
    key, sep, field_value = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError("-d expects KEY=VALUE")
    return key, field_value


def _seconds_type(value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a number of seconds, got {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="httpbackoff",
        description="Send an HTTP request, retrying network failures and 5xx responses with exponential backoff.",
    )
    parser.add_argument("url")
    parser.add_argument(
        "-X",
        "--method",
        type=_method_type,
        default=None,
        help="HTTP method; defaults to POST with -d and GET otherwise",
    )
    parser.add_argument(
        "-d",
        "--data",
        type=_form_field_type,
        action="append",
        default=[],
        help="Form field KEY=VALUE; implies POST unless -X is given",
    )
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--initial-interval", type=_seconds_type, default=None)
    parser.add_argument("--multiplier", type=_seconds_type, default=None)
    parser.add_argument("--randomization-factor", type=_seconds_type, default=None)
    parser.add_argument("--max-interval", type=_seconds_type, default=None)
    parser.add_argument(
        "--max-elapsed-time",
        type=_seconds_type,
        default=None,
        help="Total retry budget in seconds; 0 retries until interrupted",
    )
    parser.add_argument(
        "--strict-4xx",
        action="store_true",
        help="Treat 429 like every other 4xx response and never retry it",
    )
    parser.add_argument("--show-body", action="store_true")
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def resolve_settings(namespace: argparse.Namespace, base: BackoffSettings) -> BackoffSettings:
    overrides = {
        name: getattr(namespace, name)
        for name in _SETTING_FLAGS
        if getattr(namespace, name) is not None
    }
    try:
        return BackoffSettings.model_validate({**base.model_dump(), **overrides})
    except ValidationError as exc:
        fields = ", ".join(str(item["loc"][0]) for item in exc.errors())
        raise HttpBackoffError(
            f"Invalid backoff settings: {fields}",
            code=ExitCode.INVALID_ARGS,
            hint="Use positive intervals, a multiplier above 1 and a randomization factor in [0, 1).",
        ) from exc


def resolve_method(namespace: argparse.Namespace) -> str:
    return namespace.method or ("POST" if namespace.data else "GET")


def form_fields(pairs: Sequence[tuple[str, str]]) -> dict[str, list[str]]:
    fields: dict[str, list[str]] = {}
    for key, value in pairs:
        fields.setdefault(key, []).append(value)
    return fields


def load_cli_config(path: Path | None) -> AppConfig:
    if path is not None and not path.expanduser().is_file():
        raise HttpBackoffError(
            f"Config file not found: {path}",
            code=ExitCode.CONFIG_ERROR,
            hint="Pass an existing TOML file to --config or omit it to use the default location.",
        )
    return load_config(path)


def format_result(result: RetryResult) -> str:
    if result.status_code is None:
        return f"No HTTP response after {result.attempts} attempt(s)"
    return f"HTTP {result.status_code} after {result.attempts} attempt(s)"


def run_request(
    namespace: argparse.Namespace,
    *,
    settings: BackoffSettings,
    policy: RetryPolicy,
    method: str,
    client_factory: Callable[..., Client] = Client,
) -> int:
    with client_factory(settings, policy=policy) as client:
        if namespace.data:
            result = client.request(method, namespace.url, data=form_fields(namespace.data))
        else:
            result = client.request(method, namespace.url)

    print(format_result(result))
    if namespace.show_body and result.response is not None:
        print(result.response.text)
    if result.error is not None:
        raise result.error
    return int(ExitCode.SUCCESS)


def main(
    argv: Sequence[str] | None = None,
    *,
    client_factory: Callable[..., Client] = Client,
) -> int:
    logger = configure_logging()
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    try:
        config = load_cli_config(namespace.config)
        logger = configure_logging(level=namespace.log_level or config.log_level, log_file=namespace.log_file)
        settings = resolve_settings(namespace, config.backoff_settings())
        policy = STRICT_POLICY if namespace.strict_4xx else config.retry_policy()
        method = resolve_method(namespace)
        logger.debug("Sending %s %s with settings=%s", method, namespace.url, settings.model_dump())
        return run_request(
            namespace,
            settings=settings,
            policy=policy,
            method=method,
            client_factory=client_factory,
        )
    except HttpBackoffError as exc:
        logger.error(
            "Handled HttpBackoffError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except KeyboardInterrupt:
        logger.warning("Request interrupted before completion")
        print(
            user_facing_error("Request interrupted", hint="Rerun the command to send the request again."),
            file=sys.stderr,
        )
        return int(ExitCode.CANCELLED)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        print(user_facing_error("Unexpected runtime failure"), file=sys.stderr)
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
