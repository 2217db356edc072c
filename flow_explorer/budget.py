"""Exploration budget: bounds on visits, depth and wall-clock time."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional


@dataclass
class ExplorationBudget:
    """Process-wide counters for one exploration run.

    Every newly created State consumes one visit. Once exhausted the budget stays
    exhausted; the explorer stops opening new frontier but lets in-flight frames
    unwind (and backtrack) normally. An operator abort is modelled as `cancel()`,
    i.e. zero remaining visits, and is observed at the same checkpoints.
    """

    max_visits: int = 50
    max_depth: int = 10
    max_seconds: Optional[float] = None
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    visits: int = field(default=0, init=False)
    cancelled: bool = field(default=False, init=False)
    _started_at: Optional[float] = field(default=None, init=False, repr=False)

    def start(self) -> None:
        self.visits = 0
        self.cancelled = False
        self._started_at = self.clock()

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self.clock() - self._started_at

    @property
    def remaining_visits(self) -> int:
        if self.cancelled:
            return 0
        return max(self.max_visits - self.visits, 0)

    @property
    def timed_out(self) -> bool:
        return self.max_seconds is not None and self.elapsed >= self.max_seconds

    @property
    def exhausted(self) -> bool:
        return self.remaining_visits == 0 or self.timed_out

    def can_visit(self) -> bool:
        """True when one more new State may be created."""
        return not self.exhausted

    def allows_depth(self, depth: int) -> bool:
        """True when a frame at `depth` may still expand its children."""
        return depth < self.max_depth

    def record_visit(self) -> None:
        if not self.can_visit():
            raise RuntimeError("exploration budget already exhausted")
        self.visits += 1

    def cancel(self) -> None:
        self.cancelled = True
