"""
Prediction submission, edition, deletion and points notifications.

Gates run in a fixed order so a rejected user always learns the most
relevant reason first: too late (LockedError), malformed scores
(ValidationError), then risky mode unavailable (CooldownError).
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from volleyprono.config import get_settings
from volleyprono.db_utils import upsert
from volleyprono.errors import CooldownError, LockedError, NotFoundError, ValidationError
from volleyprono.models import Group, Match, MatchStatus, Prediction
from volleyprono.predictions.cooldown import can_use_risky, mark_risky_used, release_risky
from volleyprono.scoring.lock import is_locked, lock_deadline
from volleyprono.scoring.set_validator import as_dicts, as_pairs, ensure_valid_set_scores
from volleyprono.telemetry.metrics import record_prediction_rejected
from volleyprono.utils.clock import utcnow

logger = logging.getLogger(__name__)


async def get_live_match(session: AsyncSession, match_id: int) -> Match:
    """Load a match that is not logically deleted, or raise NotFoundError."""
    match = await session.get(Match, match_id)
    if match is None or match.deleted_at is not None:
        raise NotFoundError("Match", match_id)
    return match


async def _get_user_prediction(session: AsyncSession, user_id: int, match_id: int) -> Optional[Prediction]:
    result = await session.execute(
        select(Prediction).where(Prediction.user_id == user_id, Prediction.match_id == match_id)
    )
    return result.scalar_one_or_none()


async def _save_prediction(
    session: AsyncSession,
    match: Match,
    user_id: int,
    existing: Optional[Prediction],
    predicted_home: int,
    predicted_away: int,
    predicted_set_scores,
    is_risky: bool,
    now: datetime,
) -> Prediction:
    settings = get_settings()

    if is_locked(match, now, settings.PREDICTION_LOCK_HOURS):
        record_prediction_rejected("locked")
        locked_since = match.locked_at or lock_deadline(match.start_at, settings.PREDICTION_LOCK_HOURS)
        raise LockedError(match.id, locked_since)

    try:
        ensure_valid_set_scores(
            predicted_home, predicted_away, predicted_set_scores, (match.home_team, match.away_team)
        )
    except ValidationError:
        record_prediction_rejected("validation")
        raise

    was_risky = existing is not None and existing.is_risky
    if is_risky and not was_risky:
        status = await can_use_risky(session, user_id, match.group_id, now, settings.RISKY_COOLDOWN_DAYS)
        if not status.allowed:
            record_prediction_rejected("cooldown")
            raise CooldownError(status.next_available)
        await mark_risky_used(session, user_id, match.group_id, now)
    elif was_risky and not is_risky:
        await release_risky(session, user_id, match.group_id)

    pairs = as_pairs(predicted_set_scores)
    prediction = await upsert(
        session,
        Prediction,
        {
            "user_id": user_id,
            "match_id": match.id,
            "predicted_home": predicted_home,
            "predicted_away": predicted_away,
            "predicted_set_scores": as_dicts(pairs) if pairs else None,
            "is_risky": is_risky,
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        },
        conflict_columns=["user_id", "match_id"],
        update_columns=[
            "predicted_home",
            "predicted_away",
            "predicted_set_scores",
            "is_risky",
            "updated_at",
            "deleted_at",
        ],
    )
    await session.commit()

    logger.info(
        f"[PREDICTION] user={user_id} match={match.id} {predicted_home}-{predicted_away}"
        f"{' risky' if is_risky else ''} ({'updated' if existing else 'created'})"
    )
    return prediction


async def submit_prediction(
    session: AsyncSession,
    user_id: int,
    match_id: int,
    predicted_home: int,
    predicted_away: int,
    predicted_set_scores=None,
    is_risky: bool = False,
    now: Optional[datetime] = None,
) -> Prediction:
    """
    Create or replace the user's prediction for a match (last write wins).

    Raises:
        NotFoundError: unknown or deleted match
        LockedError: predictions for the match are closed
        ValidationError: summary or detailed set scores are inconsistent
        CooldownError: risky mode was used too recently in this group
    """
    now = now or utcnow()
    try:
        match = await get_live_match(session, match_id)
    except NotFoundError:
        record_prediction_rejected("not_found")
        raise
    existing = await _get_user_prediction(session, user_id, match_id)
    return await _save_prediction(
        session, match, user_id, existing, predicted_home, predicted_away, predicted_set_scores, is_risky, now
    )


async def update_prediction(
    session: AsyncSession,
    prediction_id: int,
    user_id: int,
    predicted_home: int,
    predicted_away: int,
    predicted_set_scores=None,
    is_risky: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> Prediction:
    """Edit an existing prediction by id. `is_risky=None` keeps the current flag."""
    now = now or utcnow()
    prediction = await session.get(Prediction, prediction_id)
    if prediction is None or prediction.user_id != user_id or prediction.deleted_at is not None:
        record_prediction_rejected("not_found")
        raise NotFoundError("Prediction", prediction_id)

    match = await get_live_match(session, prediction.match_id)
    risky = prediction.is_risky if is_risky is None else is_risky
    return await _save_prediction(
        session, match, user_id, prediction, predicted_home, predicted_away, predicted_set_scores, risky, now
    )


async def delete_predictions(
    session: AsyncSession,
    user_id: int,
    prediction_ids: Iterable[int],
    now: Optional[datetime] = None,
) -> dict:
    """
    Delete predictions owned by `user_id`.

    Predictions on FINISHED matches are soft-deleted so their points keep
    counting in the global ranking; the others are removed.
    """
    now = now or utcnow()
    ids = sorted(set(prediction_ids))
    if not ids:
        return {"soft_deleted": 0, "hard_deleted": 0}

    result = await session.execute(
        select(Prediction.id, Match.status)
        .join(Match, Match.id == Prediction.match_id)
        .where(Prediction.id.in_(ids), Prediction.user_id == user_id)
    )
    rows = result.all()
    if len(rows) != len(ids):
        found = {row.id for row in rows}
        missing = [pid for pid in ids if pid not in found]
        raise NotFoundError("Prediction", missing[0])

    finished_ids = [row.id for row in rows if row.status == MatchStatus.FINISHED]
    other_ids = [row.id for row in rows if row.status != MatchStatus.FINISHED]

    if finished_ids:
        await session.execute(
            update(Prediction)
            .where(Prediction.id.in_(finished_ids), Prediction.user_id == user_id)
            .values(deleted_at=now)
        )
    if other_ids:
        await session.execute(
            delete(Prediction).where(Prediction.id.in_(other_ids), Prediction.user_id == user_id)
        )
    await session.commit()

    logger.info(
        f"[PREDICTION] user={user_id} deleted {len(finished_ids)} soft, {len(other_ids)} hard"
    )
    return {"soft_deleted": len(finished_ids), "hard_deleted": len(other_ids)}


async def get_unseen_points(
    session: AsyncSession,
    user_id: int,
    now: Optional[datetime] = None,
    lookback_days: Optional[int] = None,
) -> dict:
    """Scored predictions the user has not been notified about, grouped per group."""
    now = now or utcnow()
    if lookback_days is None:
        lookback_days = get_settings().NOTIFICATION_LOOKBACK_DAYS
    cutoff = now - timedelta(days=lookback_days)

    result = await session.execute(
        select(Prediction, Match, Group)
        .join(Match, Match.id == Prediction.match_id)
        .join(Group, Group.id == Match.group_id)
        .where(
            Prediction.user_id == user_id,
            Prediction.points_awarded.is_not(None),
            Prediction.notification_viewed.is_(False),
            Prediction.deleted_at.is_(None),
            Match.status == MatchStatus.FINISHED,
            func.coalesce(Match.synced_at, Match.finished_at) >= cutoff,
        )
        .order_by(Match.start_at.desc())
    )

    groups: dict[int, dict] = {}
    total = 0
    for prediction, match, group in result.all():
        total += prediction.points_awarded
        entry = groups.setdefault(
            group.id,
            {"group_id": group.id, "group_name": group.name, "total_points": 0, "predictions": []},
        )
        entry["total_points"] += prediction.points_awarded
        entry["predictions"].append(
            {
                "prediction_id": prediction.id,
                "match_id": match.id,
                "home_team": match.home_team,
                "away_team": match.away_team,
                "start_at": match.start_at,
                "sets_home": match.sets_home,
                "sets_away": match.sets_away,
                "predicted_home": prediction.predicted_home,
                "predicted_away": prediction.predicted_away,
                "is_risky": prediction.is_risky,
                "points": prediction.points_awarded,
            }
        )

    return {"total_points": total, "groups": list(groups.values())}


async def mark_predictions_viewed(session: AsyncSession, user_id: int, prediction_ids: Iterable[int]) -> int:
    ids = list(prediction_ids)
    if not ids:
        return 0
    result = await session.execute(
        update(Prediction)
        .where(Prediction.id.in_(ids), Prediction.user_id == user_id)
        .values(notification_viewed=True)
    )
    await session.commit()
    return result.rowcount or 0
