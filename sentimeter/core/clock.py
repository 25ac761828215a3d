"""Clock abstraction used for cache TTLs, run dates and rate-limit pauses."""

import time
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone


class Clock(ABC):
    """Source of the current time and of blocking pauses."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as a timezone-aware UTC datetime."""
        pass

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        """Block for ``seconds``."""
        pass

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall-clock implementation backed by :mod:`datetime` and :mod:`time`."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)
