"""Monotonic deadlines propagated from run start to executor calls."""

import time
from collections.abc import Callable


class Deadline:
    """A point in monotonic time, or no limit at all.

    Executors receive a Deadline rather than a timeout so that the run-wide
    budget keeps shrinking across steps.
    """

    def __init__(
        self, expires_at: float | None, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.expires_at = expires_at
        self._clock = clock

    @classmethod
    def after(
        cls, seconds: float | None, clock: Callable[[], float] = time.monotonic
    ) -> "Deadline":
        """Deadline ``seconds`` from now; None means unbounded."""
        if seconds is None:
            return cls(None, clock)
        return cls(clock() + seconds, clock)

    @classmethod
    def never(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> float | None:
        """Seconds left (never negative), or None when unbounded."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def earliest(self, other: "Deadline") -> "Deadline":
        """The tighter of two deadlines."""
        if self.expires_at is None:
            return other
        if other.expires_at is None:
            return self
        return self if self.expires_at <= other.expires_at else other

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining()})"
