from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

LOGGER = logging.getLogger("repobench.benchmark.retry")

DEFAULT_ATTEMPTS = 3
DEFAULT_DELAY_SECONDS = 0.2

T = TypeVar("T")


def fixed_delay(seconds: float) -> Callable[[int], float]:
    """Return a delay function that waits the same amount after every attempt."""

    if seconds < 0:
        raise ValueError("retry delay must be >= 0")

    def delay(_attempt: int) -> float:
        return seconds

    return delay


@dataclass(frozen=True)
class RetryPolicy:
    """Linear retry strategy: a fixed number of attempts with a fixed pause.

    The pause is applied between attempts only, never after the last one. The
    loop is not cancellation aware; an in-flight call or sleep always runs to
    completion.
    """

    attempts: int = DEFAULT_ATTEMPTS
    delay: Callable[[int], float] = field(default=fixed_delay(DEFAULT_DELAY_SECONDS))
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("RetryPolicy attempts must be >= 1")

    @classmethod
    def immediate(cls, attempts: int = DEFAULT_ATTEMPTS) -> "RetryPolicy":
        return cls(attempts=attempts, delay=fixed_delay(0.0), sleep=lambda _s: None)

    def call(self, operation: Callable[[], T]) -> T:
        for attempt in range(1, self.attempts):
            try:
                return operation()
            except Exception as exc:  # noqa: BLE001
                LOGGER.debug("attempt %d/%d failed: %s", attempt, self.attempts, exc)
            self.sleep(self.delay(attempt))

        # the final attempt propagates its error and is never followed by a pause
        return operation()
