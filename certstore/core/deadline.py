"""Per-call deadlines and cancellation."""

from __future__ import annotations

import threading
import time


class Deadline:
    """An absolute expiry with an optional cancel event.

    Every storage operation runs under a Deadline. When the expiry passes or
    the event is set, the SQLite statement in flight is interrupted.
    """

    def __init__(self, expires_at: float, cancel_event: threading.Event | None = None) -> None:
        self.expires_at = expires_at
        self.cancel_event = cancel_event

    @classmethod
    def after(cls, seconds: float, cancel_event: threading.Event | None = None) -> Deadline:
        """Create a deadline ``seconds`` from now."""
        return cls(time.monotonic() + seconds, cancel_event)

    def within(self, seconds: float) -> Deadline:
        """Return a deadline no later than ``seconds`` from now, keeping the cancel event."""
        return Deadline(min(self.expires_at, time.monotonic() + seconds), self.cancel_event)

    @property
    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def expired(self) -> bool:
        return self.cancelled or time.monotonic() >= self.expires_at

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, waking early on cancel.

        Returns False once the deadline has expired or been cancelled.
        """
        delay = min(seconds, self.remaining)
        if self.cancel_event is not None:
            self.cancel_event.wait(delay)
        elif delay > 0:
            time.sleep(delay)
        return not self.expired()

    def progress_check(self) -> int:
        """SQLite progress handler: a non-zero result aborts the statement."""
        return 1 if self.expired() else 0

    def describe(self) -> str:
        return "operation cancelled" if self.cancelled else "query deadline exceeded"

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining:.3f}s, cancelled={self.cancelled})"


def bounded(deadline: Deadline | None, seconds: float) -> Deadline:
    """Combine an optional caller deadline with a timeout in seconds."""
    if deadline is None:
        return Deadline.after(seconds)
    return deadline.within(seconds)
