"""Bounded retry policy shared by storage and bootstrap helpers."""
from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """A fixed number of attempts separated by a constant delay.

    Remote object stores may serve stale reads for a short while after a write,
    so reads are repeated until they succeed or the policy is exhausted. Only
    the final failure is surfaced to the caller.
    """

    attempts: int = 25
    delay: float = 0.2

    def __post_init__(self) -> None:
        """Reject policies that could never run or would sleep backwards."""
        if self.attempts < 1:
            raise ValueError("Retry policy needs at least one attempt.")
        if self.delay < 0:
            raise ValueError("Retry delay must not be negative.")

    @classmethod
    def fast(cls, attempts: int = 3) -> RetryPolicy:
        """Return a policy with no inter-attempt delay (used by tests)."""
        return cls(attempts=attempts, delay=0.0)

    @property
    def total_delay(self) -> float:
        """Upper bound on the time spent sleeping between attempts."""
        return self.delay * (self.attempts - 1)

    def call(
        self,
        func: Callable[[], T],
        *,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        """Invoke *func* until it succeeds or the attempts run out."""
        for _ in range(self.attempts - 1):
            try:
                return func()
            except retry_on:
                if self.delay:
                    sleep(self.delay)
        return func()


__all__ = ["RetryPolicy"]
