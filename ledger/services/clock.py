"""
Clock Service

"Today" drives planned flags, projection windows and budget cycles, so it
is injected rather than read from the system everywhere.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from ledger.config import get_settings


class Clock(ABC):
    """Source of the current instant and local date."""

    @abstractmethod
    def now(self) -> datetime:
        """Current instant, timezone-aware."""
        pass

    @abstractmethod
    def today(self) -> date:
        """Current local date."""
        pass


class SystemClock(Clock):
    """Wall clock in the configured timezone."""

    def __init__(self, timezone_name: Optional[str] = None):
        self._tz = ZoneInfo(timezone_name or get_settings().ledger.timezone)

    def now(self) -> datetime:
        return datetime.now(self._tz)

    def today(self) -> date:
        return self.now().date()


class FixedClock(Clock):
    """Manually driven clock for tests and replays."""

    def __init__(self, current: datetime):
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        self._current = current

    def now(self) -> datetime:
        return self._current

    def today(self) -> date:
        return self._current.date()

    def advance(self, **delta: float) -> datetime:
        """Move forward, e.g. advance(days=1) or advance(seconds=5)."""
        self._current += timedelta(**delta)
        return self._current

    def set(self, current: datetime) -> None:
        if current.tzinfo is None:
            current = current.replace(tzinfo=self._current.tzinfo)
        self._current = current
