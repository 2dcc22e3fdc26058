"""
Wall-clock helpers.

All instants in the database are naive UTC (timestamp without time zone).
Services never call datetime.now() directly: they take `now` as an argument,
and the scheduler obtains it from a Clock so tests can pin time.
"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current instant as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class FrozenClock:
    """Clock pinned to a fixed instant (tests, replays, admin scripts)."""

    def __init__(self, now: datetime):
        self.now = to_naive_utc(now)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> None:
        self.now = self.now + delta
