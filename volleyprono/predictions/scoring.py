"""Apply the points rules to stored predictions."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from volleyprono.errors import NotFoundError, ScoringPreconditionError
from volleyprono.models import Match, MatchStatus, Prediction
from volleyprono.scoring.points import compute_points
from volleyprono.scoring.set_validator import SETS_TO_WIN, is_decided_summary
from volleyprono.telemetry.metrics import record_predictions_scored
from volleyprono.utils.clock import utcnow

logger = logging.getLogger(__name__)


def is_scorable(match: Match) -> bool:
    """FINISHED with a decided score (one side at 3)."""
    return match.status == MatchStatus.FINISHED and is_decided_summary(match.sets_home, match.sets_away)


def _decided_result():
    """SQL counterpart of is_scorable."""
    return (
        Match.status == MatchStatus.FINISHED,
        Match.sets_home.is_not(None),
        Match.sets_away.is_not(None),
        Match.sets_home != Match.sets_away,
        or_(Match.sets_home == SETS_TO_WIN, Match.sets_away == SETS_TO_WIN),
    )


async def score_match(
    session: AsyncSession,
    match_id: int,
    now: Optional[datetime] = None,
    trigger: str = "manual",
) -> int:
    """
    Compute and overwrite points for every prediction of a finished match.

    Soft-deleted predictions are scored too: their points still count in the
    global ranking. Writes are absolute, so running this twice (immediate
    trigger plus sweep, or after a result correction) leaves one consistent
    value per prediction.

    Returns:
        Number of predictions scored.

    Raises:
        ScoringPreconditionError: match not FINISHED or its score is not decided.
    """
    now = now or utcnow()
    match = await session.get(Match, match_id)
    if match is None:
        raise NotFoundError("Match", match_id)
    if not is_scorable(match):
        raise ScoringPreconditionError(
            f"Match {match_id} cannot be scored (status={match.status}, "
            f"sets={match.sets_home}-{match.sets_away})"
        )

    result = await session.execute(select(Prediction).where(Prediction.match_id == match_id))
    predictions = result.scalars().all()

    actual = (match.sets_home, match.sets_away)
    for prediction in predictions:
        prediction.points_awarded = compute_points(
            actual,
            match.set_scores,
            (prediction.predicted_home, prediction.predicted_away),
            prediction.predicted_set_scores,
            prediction.is_risky,
        )
        prediction.scored_at = now
        session.add(prediction)

    await session.commit()
    record_predictions_scored(trigger, len(predictions))

    logger.info(
        f"[SCORING] match={match_id} {match.home_team} {match.sets_home}-{match.sets_away} "
        f"{match.away_team}: {len(predictions)} prediction(s) scored ({trigger})"
    )
    return len(predictions)


async def find_matches_pending_scoring(session: AsyncSession) -> list[int]:
    """FINISHED matches with a decided score and at least one live unscored prediction."""
    unscored = exists().where(
        Prediction.match_id == Match.id,
        Prediction.points_awarded.is_(None),
        Prediction.deleted_at.is_(None),
    )
    result = await session.execute(
        select(Match.id)
        .where(
            *_decided_result(),
            Match.deleted_at.is_(None),
            unscored,
        )
        .order_by(Match.start_at)
    )
    return list(result.scalars().all())


async def rescore_all(session: AsyncSession, now: Optional[datetime] = None) -> dict:
    """Recompute every finished match (after a rules change or a bulk data fix)."""
    now = now or utcnow()
    result = await session.execute(
        select(Match.id)
        .where(*_decided_result())
        .order_by(Match.start_at)
    )
    match_ids = list(result.scalars().all())

    matches_scored = 0
    predictions_scored = 0
    errors = 0
    for match_id in match_ids:
        try:
            predictions_scored += await score_match(session, match_id, now, trigger="rescore")
            matches_scored += 1
        except Exception as e:
            errors += 1
            await session.rollback()
            logger.error(f"[SCORING] Rescore failed for match {match_id}: {e}")

    logger.info(
        f"[SCORING] Rescore complete: {matches_scored} match(es), "
        f"{predictions_scored} prediction(s), {errors} error(s)"
    )
    return {"matches": matches_scored, "predictions": predictions_scored, "errors": errors}
