"""Injectable time source used for every expiry computation."""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]


def system_clock() -> int:
    """Return current wall time as integer epoch seconds."""
    return int(time.time())


class FrozenClock:
    """Manually advanced clock for tests and deterministic replays."""

    def __init__(self, start: int = 1_700_000_000) -> None:
        """Start the clock at ``start`` epoch seconds."""
        self.now = int(start)

    def __call__(self) -> int:
        """Return the current frozen time."""
        return self.now

    def advance(self, seconds: int) -> None:
        """Move the clock forward by ``seconds``."""
        self.now += int(seconds)
