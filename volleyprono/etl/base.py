"""Abstract base class for match observation providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from volleyprono.models import MatchStatus


@dataclass
class MatchObservation:
    """One externally reported match for one sync cycle (not persisted)."""

    home_team: str
    away_team: str
    start_at: datetime  # naive UTC
    status: str = MatchStatus.SCHEDULED
    external_id: Optional[str] = None
    sets_home: Optional[int] = None
    sets_away: Optional[int] = None
    set_scores: Optional[list] = None  # [{"home": 25, "away": 21}, ...] or [(25, 21), ...]


class ObservationProvider(ABC):
    """
    Producer of match observations for a group's external source.

    Implementations may raise on network or parse failures; the reconciler
    turns that into SourceUnavailableError for the group.
    """

    @abstractmethod
    async def fetch_observations(self, source_ref: str) -> list[MatchObservation]:
        """
        Fetch every match currently listed by a source.

        Args:
            source_ref: The group's competition page or feed reference.

        Returns:
            Observations in source order.
        """
        pass

    async def close(self) -> None:
        """Close any open connections."""
        pass
