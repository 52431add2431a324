"""Rate limiting data models."""

from dataclasses import dataclass


@dataclass(frozen=True)
class WindowStats:
    """Point-in-time snapshot of a window limiter."""
    capacity: int
    available: int
    waiting: int
    resets: int
    running: bool

    @property
    def admitted(self) -> int:
        """Permits consumed in the current window."""
        return self.capacity - self.available
