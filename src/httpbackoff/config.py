"""TOML and environment configuration for backoff settings."""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from httpbackoff.backoff import BackoffSettings
from httpbackoff.logging import LOG_LEVELS, normalize_level
from httpbackoff.retry import TOO_MANY_REQUESTS, RetryPolicy

DEFAULT_CONFIG_PATH = Path("~/.config/httpbackoff/config.toml").expanduser()
ENV_PREFIX = "HTTPBACKOFF_"
DEFAULT_LOG_LEVEL = "INFO"

_SETTING_NAMES = tuple(BackoffSettings.model_fields)


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    backoff: BackoffSettings = Field(default_factory=BackoffSettings)
    retry_status_codes: list[int] = Field(default_factory=lambda: [TOO_MANY_REQUESTS])
    log_level: str = DEFAULT_LOG_LEVEL

    @field_validator("retry_status_codes")
    @classmethod
    def _validate_status_codes(cls, value: list[int]) -> list[int]:
        for code in value:
            if code < 100 or code > 599:
                raise ValueError(f"Invalid HTTP status code: {code}")
        return sorted(set(value))

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = normalize_level(value)
        if normalized not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}")
        return normalized

    def backoff_settings(self) -> BackoffSettings:
        return self.backoff.model_copy()

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(retry_status_codes=frozenset(self.retry_status_codes))


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _as_number(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _apply_settings(settings: BackoffSettings, raw: Mapping[str, object]) -> None:
    for name in _SETTING_NAMES:
        if name not in raw:
            continue
        number = _as_number(raw[name])
        if number is None:
            continue
        try:
            setattr(settings, name, number)
        except ValidationError:
            continue


def _env_overrides(environ: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for name in _SETTING_NAMES:
        value = environ.get(f"{ENV_PREFIX}{name.upper()}", "").strip()
        if value:
            overrides[name] = value
    return overrides


def _sanitize(raw: Mapping[str, object], environ: Mapping[str, str]) -> AppConfig:
    cfg = AppConfig()

    backoff_raw = raw.get("backoff", {})
    if isinstance(backoff_raw, dict):
        _apply_settings(cfg.backoff, backoff_raw)
    _apply_settings(cfg.backoff, _env_overrides(environ))

    codes = raw.get("retry_status_codes", cfg.retry_status_codes)
    if isinstance(codes, list) and all(isinstance(item, int) and not isinstance(item, bool) for item in codes):
        try:
            cfg.retry_status_codes = codes
        except ValidationError:
            pass

    log_level = raw.get("log_level", cfg.log_level)
    if isinstance(log_level, str):
        try:
            cfg.log_level = log_level
        except ValidationError:
            pass

    return cfg


def load_config(
    path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    env = os.environ if environ is None else environ
    resolved = get_config_path(path)
    raw: object = {}
    if resolved.exists():
        try:
            with resolved.open("rb") as handle:
                raw = tomllib.load(handle)
        except (tomllib.TOMLDecodeError, OSError):
            raw = {}
    if not isinstance(raw, dict):
        raw = {}
    return _sanitize(raw, env)
