"""Domain exceptions raised by the match engine and prediction services."""

from datetime import datetime
from typing import Optional


class VolleyPronoError(Exception):
    """Base class for all domain errors."""


class ValidationError(VolleyPronoError):
    """Submitted scores break a volleyball rule. The message is shown to the user verbatim."""

    def __init__(self, reason: str, set_index: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.set_index = set_index


class LockedError(VolleyPronoError):
    """Prediction submitted or edited after the match closed."""

    def __init__(self, match_id: int, locked_since: Optional[datetime] = None):
        message = f"Predictions for match {match_id} are closed"
        if locked_since is not None:
            message += f" (since {locked_since.isoformat()} UTC)"
        super().__init__(message)
        self.match_id = match_id
        self.locked_since = locked_since


class CooldownError(VolleyPronoError):
    """Risky mode is still cooling down for this user in this group."""

    def __init__(self, next_available: datetime):
        super().__init__(
            f"Risky mode is on cooldown until {next_available.isoformat()} UTC"
        )
        self.next_available = next_available


class NotFoundError(VolleyPronoError):
    """Unknown (or logically deleted) match, prediction or group."""

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class SourceUnavailableError(VolleyPronoError):
    """The observation producer failed for one group."""

    def __init__(self, group_id: int, source_ref: Optional[str], cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Source for group {group_id} unavailable ({source_ref}){detail}")
        self.group_id = group_id
        self.source_ref = source_ref
        self.cause = cause


class ScoringPreconditionError(RuntimeError):
    """Scoring was requested for a match that is not FINISHED with a summary score."""
