"""Manual match management (admin creation and result corrections)."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from volleyprono.errors import NotFoundError, ValidationError
from volleyprono.etl.name_normalization import normalize_team_name
from volleyprono.models import Group, Match, MatchStatus
from volleyprono.predictions.scoring import score_match
from volleyprono.scoring.set_validator import as_dicts, as_pairs, ensure_valid_set_scores
from volleyprono.utils.clock import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


async def create_match(
    session: AsyncSession,
    group_id: int,
    home_team: str,
    away_team: str,
    start_at: datetime,
    external_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Match:
    now = now or utcnow()
    group = await session.get(Group, group_id)
    if group is None or group.deleted_at is not None:
        raise NotFoundError("Group", group_id)

    home, away = normalize_team_name(home_team), normalize_team_name(away_team)
    if not home or not away or home == away:
        raise ValidationError(f"Invalid teams: '{home_team}' vs '{away_team}'")

    match = Match(
        group_id=group_id,
        external_id=external_id or None,
        home_team=home,
        away_team=away,
        start_at=to_naive_utc(start_at),
        status=MatchStatus.SCHEDULED,
        created_at=now,
    )
    session.add(match)
    await session.commit()
    logger.info(f"[MATCH] Created match {match.id} in group {group_id}: {home} vs {away}")
    return match


async def update_match_result(
    session: AsyncSession,
    match_id: int,
    sets_home: Optional[int],
    sets_away: Optional[int],
    set_scores=None,
    status: str = MatchStatus.FINISHED,
    now: Optional[datetime] = None,
) -> tuple[Match, int]:
    """
    Set or correct a match result by hand.

    A FINISHED result requires a decided summary and, when given, set
    scores consistent with it. Any other status carries no score. Predictions are re-scored immediately
    (overwriting any previous award).

    Returns:
        (match, number of predictions scored)
    """
    now = now or utcnow()
    if status not in MatchStatus.ALL:
        raise ValidationError(f"Unknown status '{status}'")

    match = await session.get(Match, match_id)
    if match is None or match.deleted_at is not None:
        raise NotFoundError("Match", match_id)

    if status == MatchStatus.FINISHED:
        if sets_home is None or sets_away is None:
            raise ValidationError("A finished match needs the sets won by each team")
        ensure_valid_set_scores(sets_home, sets_away, set_scores, (match.home_team, match.away_team))
    elif sets_home is not None or sets_away is not None or set_scores:
        raise ValidationError(f"Sets won are only recorded for a finished match, not {status}")

    pairs = as_pairs(set_scores)
    previous_status = match.status
    match.status = status
    match.sets_home = sets_home
    match.sets_away = sets_away
    match.set_scores = as_dicts(pairs) if pairs else None
    if status in (MatchStatus.IN_PROGRESS, MatchStatus.FINISHED) and not match.is_locked:
        match.is_locked = True
        match.locked_at = now
    if status == MatchStatus.FINISHED and match.finished_at is None:
        match.finished_at = now
    session.add(match)
    await session.commit()

    logger.info(
        f"[MATCH] Result for match {match_id} set by hand: {previous_status} -> {status} "
        f"{sets_home}-{sets_away}"
    )

    scored = 0
    if status == MatchStatus.FINISHED:
        scored = await score_match(session, match_id, now, trigger="manual")
    return match, scored
