"""Database models using SQLModel."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from volleyprono.utils.clock import utcnow


class MatchStatus:
    """Match lifecycle states (stored as plain strings)."""

    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    FINISHED = "FINISHED"
    CANCELED = "CANCELED"

    ALL = (SCHEDULED, IN_PROGRESS, FINISHED, CANCELED)


class Group(SQLModel, table=True):
    """
    Prediction group tied to one competition.

    Only the fields the match engine needs live here; membership, invites and
    ownership are handled by the web application.
    """

    __tablename__ = "groups"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255)
    source_ref: Optional[str] = Field(
        default=None, max_length=1000, description="Competition page/feed the matches are synced from"
    )
    created_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = Field(default=None, description="Logical deletion marker")


class Match(SQLModel, table=True):
    """One volleyball match inside a group."""

    __tablename__ = "matches"
    __table_args__ = (
        UniqueConstraint("group_id", "external_id", name="uq_match_group_external"),
        Index("ix_match_group_teams_start", "group_id", "home_team", "away_team", "start_at"),
        Index("ix_match_status_start", "status", "start_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="groups.id", index=True)
    external_id: Optional[str] = Field(
        default=None, max_length=100, description="Source match id, NULL when the source has none"
    )

    home_team: str = Field(max_length=255, description="Normalized home team name")
    away_team: str = Field(max_length=255, description="Normalized away team name")
    start_at: datetime = Field(description="Scheduled kickoff (naive UTC)")

    status: str = Field(
        max_length=20, default=MatchStatus.SCHEDULED, description="SCHEDULED, IN_PROGRESS, FINISHED, CANCELED"
    )
    sets_home: Optional[int] = Field(default=None, description="Sets won by home, NULL until decided")
    sets_away: Optional[int] = Field(default=None, description="Sets won by away, NULL until decided")
    set_scores: Optional[list] = Field(
        default=None, sa_column=Column(JSON), description="Per-set points, e.g. [{'home': 25, 'away': 21}, ...]"
    )

    # Hard lock pinned by the scheduler at kickoff (independent of the 24h prediction cutoff)
    is_locked: bool = Field(default=False)
    locked_at: Optional[datetime] = Field(default=None)

    synced_at: Optional[datetime] = Field(default=None, description="Last reconciliation touching this match")
    finished_at: Optional[datetime] = Field(default=None, description="When the FINISHED transition was seen")
    created_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = Field(default=None, description="Logical deletion marker")


class Prediction(SQLModel, table=True):
    """One user's forecast for one match."""

    __tablename__ = "predictions"
    __table_args__ = (
        UniqueConstraint("user_id", "match_id", name="uq_prediction_user_match"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    match_id: int = Field(foreign_key="matches.id", index=True)

    predicted_home: int = Field(description="Predicted sets won by home (0-3)")
    predicted_away: int = Field(description="Predicted sets won by away (0-3)")
    predicted_set_scores: Optional[list] = Field(
        default=None, sa_column=Column(JSON), description="Optional per-set guesses"
    )
    is_risky: bool = Field(default=False)

    points_awarded: Optional[int] = Field(default=None, description="NULL until the match is scored")
    scored_at: Optional[datetime] = Field(default=None)
    notification_viewed: bool = Field(default=False)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    # Soft deletion keeps points of finished matches counting in global rankings
    deleted_at: Optional[datetime] = Field(default=None)


class RiskyCooldown(SQLModel, table=True):
    """Last use of risky mode per (user, group)."""

    __tablename__ = "risky_cooldowns"
    __table_args__ = (
        UniqueConstraint("user_id", "group_id", name="uq_risky_cooldown_user_group"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    group_id: int = Field(foreign_key="groups.id", index=True)
    last_used: datetime
