"""Short-window duplicate suppression for outgoing mail."""

import time
from typing import Callable, Optional

from libs.common.config import get_settings


class RecentSends:
    """Remembers idempotency keys for ``window`` seconds.

    Per process only; the provider's idempotency key covers the rest.
    """

    def __init__(self, window: float, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self._clock = clock
        self._sent: dict[str, float] = {}

    def check_and_mark(self, key: str) -> bool:
        """True when ``key`` was marked within the window; otherwise mark it now."""
        now = self._clock()
        self._prune(now)
        last = self._sent.get(key)
        if last is not None and now - last < self.window:
            return True
        self._sent[key] = now
        return False

    def _prune(self, now: float) -> None:
        expired = [k for k, t in self._sent.items() if now - t >= self.window]
        for key in expired:
            del self._sent[key]

    def clear(self) -> None:
        self._sent.clear()


_recent_sends: Optional[RecentSends] = None


def get_recent_sends() -> RecentSends:
    global _recent_sends
    if _recent_sends is None:
        _recent_sends = RecentSends(get_settings().EMAIL_DEDUPE_WINDOW_SECONDS)
    return _recent_sends
