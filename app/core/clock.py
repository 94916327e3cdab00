"""
Clock capability. Period ends and daily usage keys derive from "now", so the
current time is injected instead of read from a global.
"""
from datetime import datetime, timedelta, timezone


class Clock:
    def now(self) -> datetime:
        raise NotImplementedError

    def today(self) -> str:
        """Calendar day key (ISO date) for usage counters."""
        return self.now().date().isoformat()


class SystemClock(Clock):
    def now(self) -> datetime:
        # Naive UTC, matching how DateTime columns are stored
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock(Clock):
    """Settable clock for tests and replays."""

    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


_system_clock = SystemClock()


def get_clock() -> Clock:
    """FastAPI dependency returning the process clock."""
    return _system_clock
