"""
Prediction lock predicate.

Submissions close PREDICTION_LOCK_HOURS before kickoff. Separately, the lock
sweep pins `is_locked` at kickoff itself. "Locked" is always derived from
(now, start_at, is_locked) at read time, never cached.
"""

from datetime import datetime, timedelta

from volleyprono.models import Match, MatchStatus

DEFAULT_LOCK_HOURS = 24


def lock_deadline(start_at: datetime, lock_hours: int = DEFAULT_LOCK_HOURS) -> datetime:
    """Instant from which predictions for a match starting at `start_at` are refused."""
    return start_at - timedelta(hours=lock_hours)


def is_locked(match: Match, now: datetime, lock_hours: int = DEFAULT_LOCK_HOURS) -> bool:
    if match.is_locked:
        return True
    return now >= lock_deadline(match.start_at, lock_hours)


def kickoff_reached(match: Match, now: datetime) -> bool:
    return now >= match.start_at


def effective_status(match: Match, now: datetime) -> str:
    """Status as displayed: a SCHEDULED match past kickoff reads IN_PROGRESS before the sweep catches up."""
    if match.status == MatchStatus.SCHEDULED and kickoff_reached(match, now):
        return MatchStatus.IN_PROGRESS
    return match.status
