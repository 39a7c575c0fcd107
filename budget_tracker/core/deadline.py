import time
from typing import Optional

from budget_tracker.core.exceptions import SyncTimeoutError


class Deadline:
    """
    Bounded duration for one sync cycle.
    Adapters check it before every request and cap request timeouts with it.
    """

    def __init__(self, seconds: float, clock=time.monotonic):
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def check(self, exchange: str = ""):
        if self.expired:
            raise SyncTimeoutError("Sync cycle deadline exceeded", exchange=exchange)

    def cap(self, timeout: float) -> float:
        """Request timeout limited by what is left of the cycle."""
        return min(timeout, self.remaining())


def request_timeout(timeout: float, deadline: Optional[Deadline]) -> float:
    if deadline is None:
        return timeout
    return deadline.cap(timeout)
