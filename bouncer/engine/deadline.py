"""Cooperative execution budget for a batch run."""

import time
from collections.abc import Callable


class Deadline:
    """A wall-clock budget that work loops poll between units of work.

    Nothing is preempted: an in-flight call always completes before the
    next poll.
    """

    def __init__(
        self,
        budget_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._start = clock()
        self._budget = budget_seconds

    @property
    def elapsed(self) -> float:
        return self._clock() - self._start

    @property
    def remaining(self) -> float:
        return max(0.0, self._budget - self.elapsed)

    def expired(self) -> bool:
        return self.elapsed >= self._budget
