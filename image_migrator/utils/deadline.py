"""Wall-clock execution budget shared by one invocation."""

from __future__ import annotations

import time
from typing import Callable


class Deadline:
    """
    A fixed execution budget measured from the moment the object is created.

    The batch migrator and the orphan reclaimer check :meth:`expired` before
    starting each unit of work so that an invocation returns partial results
    instead of being killed by the platform mid-write.  The clock is
    injectable so tests can advance time without sleeping.
    """

    def __init__(self, budget_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.budget = float(budget_seconds)
        self._clock = clock
        self._start = clock()

    def elapsed(self) -> float:
        return self._clock() - self._start

    @property
    def elapsed_ms(self) -> int:
        return int(self.elapsed() * 1000)

    def remaining(self) -> float:
        return max(0.0, self.budget - self.elapsed())

    def expired(self) -> bool:
        return self.elapsed() > self.budget

    def __repr__(self) -> str:
        return f"Deadline(budget={self.budget}, elapsed={self.elapsed():.3f})"
