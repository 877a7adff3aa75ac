# core/clock.py
from datetime import date, datetime, timedelta, timezone


class Clock:
    """Source of "now" for everything that does date math.

    Services and pure helpers take a clock argument instead of calling
    datetime.now() so tests can pin the date.
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    pass


class FixedClock(Clock):
    def __init__(self, moment: datetime):
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        self.moment = moment

    def now(self) -> datetime:
        return self.moment

    def advance(self, **delta) -> None:
        self.moment = self.moment + timedelta(**delta)


system_clock = SystemClock()


def get_clock() -> Clock:
    """FastAPI dependency; tests override it with a FixedClock."""
    return system_clock
