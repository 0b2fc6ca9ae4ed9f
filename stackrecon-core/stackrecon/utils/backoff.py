import random
import time
from typing import Optional

from pydantic import Field
from pydantic.dataclasses import dataclass


def jitter(interval: float, randomization_factor: float) -> float:
    """Returns a random value within ``interval * (1 +/- randomization_factor)``."""
    if randomization_factor <= 0:
        return interval
    spread = interval * randomization_factor
    return random.uniform(interval - spread, interval + spread)


@dataclass
class ExponentialBackoff:
    """
    Retry schedule for transient provider errors.

    The n-th call to ``next_backoff()`` returns ``initial_interval * multiplier ** (n - 1)``, capped by
    ``max_interval`` and jittered by ``randomization_factor``. With the defaults, the first backoff lies
    between 0.25 and 0.75 seconds, the second between 0.5 and 1.5 seconds.

    Once ``max_retries`` backoffs were handed out, or ``max_time_elapsed`` seconds passed since the first
    one, ``exhausted`` is true and ``next_backoff()`` returns 0. One instance per operation.
    """

    initial_interval: float = Field(0.5, title="Initial backoff interval in seconds", gt=0)
    randomization_factor: float = Field(0.5, title="Randomization of each interval", ge=0, le=1)
    multiplier: float = Field(2.0, title="Growth of the interval per retry", gt=1)
    max_interval: float = Field(30.0, title="Upper bound of a single interval in seconds", gt=0)
    max_retries: int = Field(-1, title="Number of retries, -1 for unlimited", ge=-1)
    max_time_elapsed: float = Field(-1, title="Time limit in seconds, -1 for unlimited", ge=-1)

    def __post_init__(self):
        self.retries: int = 0
        self._interval: Optional[float] = None
        self._started_at: Optional[float] = None

    @property
    def elapsed_duration(self) -> float:
        if self._started_at is None:
            return 0.0
        return time.monotonic() - self._started_at

    @property
    def exhausted(self) -> bool:
        return 0 <= self.max_retries <= self.retries

    def reset(self) -> None:
        self.retries = 0
        self._interval = None
        self._started_at = None

    def _out_of_time(self) -> bool:
        return self.max_time_elapsed > 0 and self.elapsed_duration > self.max_time_elapsed

    def next_backoff(self) -> float:
        if self._started_at is None:
            self._started_at = time.monotonic()
            self._interval = self.initial_interval

        self.retries += 1
        if 0 <= self.max_retries < self.retries or self._out_of_time():
            return 0

        interval = self._interval
        self._interval = min(self.max_interval, interval * self.multiplier)
        return jitter(interval, self.randomization_factor)
