"""Exponential backoff with jitter.

``BackoffSettings`` is the immutable-by-convention policy value that callers
configure once and share freely. ``ExponentialBackOff`` holds the running
state of a single retry sequence (current interval and start time) and must
not be shared between sequences that run concurrently.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_INITIAL_INTERVAL = 0.5
DEFAULT_RANDOMIZATION_FACTOR = 0.5
DEFAULT_MULTIPLIER = 1.5
DEFAULT_MAX_INTERVAL = 60.0
DEFAULT_MAX_ELAPSED_TIME = 900.0


class BackoffSettings(BaseModel):
    """Backoff curve and attempt budget, all durations in seconds.

    ``max_elapsed_time`` of ``0`` disables the elapsed-time cutoff.
    """

    model_config = ConfigDict(validate_assignment=True)

    initial_interval: float = Field(default=DEFAULT_INITIAL_INTERVAL, gt=0)
    randomization_factor: float = Field(default=DEFAULT_RANDOMIZATION_FACTOR, ge=0, lt=1)
    multiplier: float = Field(default=DEFAULT_MULTIPLIER, gt=1.0)
    max_interval: float = Field(default=DEFAULT_MAX_INTERVAL, gt=0)
    max_elapsed_time: float = Field(default=DEFAULT_MAX_ELAPSED_TIME, ge=0)

    @classmethod
    def fast(cls) -> BackoffSettings:
        """Millisecond-scale profile for tests and local stubs."""
        return cls(
            initial_interval=0.001,
            randomization_factor=0.2,
            multiplier=1.2,
            max_interval=0.005,
            max_elapsed_time=0.02,
        )


class ExponentialBackOff:
    def __init__(
        self,
        settings: BackoffSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings.model_copy() if settings is not None else BackoffSettings()
        self._clock = clock
        self._rng = rng or random.Random()
        self.current_interval = self.settings.initial_interval
        self.start_time: float | None = None

    def reset(self) -> None:
        self.current_interval = self.settings.initial_interval
        self.start_time = None

    def start(self) -> None:
        if self.start_time is None:
            self.start_time = self._clock()

    def elapsed(self) -> float:
        if self.start_time is None:
            return 0.0
        return self._clock() - self.start_time

    def next_backoff(self) -> float | None:
        """Return the next wait in seconds, or ``None`` once the budget is spent."""
        self.start()
        max_elapsed = self.settings.max_elapsed_time
        if max_elapsed and self.elapsed() > max_elapsed:
            return None

        interval = min(self.current_interval, self.settings.max_interval)
        delta = interval * self.settings.randomization_factor
        randomized = interval - delta + self._rng.random() * (2 * delta)
        self.current_interval = min(interval * self.settings.multiplier, self.settings.max_interval)
        return max(randomized, 0.0)
