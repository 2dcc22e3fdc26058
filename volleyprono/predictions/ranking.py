"""Group and global leaderboards."""

from collections import defaultdict
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from volleyprono.errors import NotFoundError
from volleyprono.models import Group, Match, MatchStatus, Prediction
from volleyprono.scoring.points import score_prediction
from volleyprono.scoring.set_validator import is_decided_summary


async def group_ranking(session: AsyncSession, group_id: int) -> list[dict]:
    """
    Leaderboard of one group over its FINISHED matches.

    Ordered by total points, then number of exact scores, then user id.
    Users appear once they have at least one prediction on a finished match.
    """
    group = await session.get(Group, group_id)
    if group is None or group.deleted_at is not None:
        raise NotFoundError("Group", group_id)

    result = await session.execute(
        select(Prediction, Match)
        .join(Match, Match.id == Prediction.match_id)
        .where(
            Match.group_id == group_id,
            Match.status == MatchStatus.FINISHED,
            Match.deleted_at.is_(None),
        )
    )

    stats: dict[int, dict] = defaultdict(
        lambda: {"total_points": 0, "exact_scores": 0, "correct_winners": 0, "total_predictions": 0}
    )
    for prediction, match in result.all():
        entry = stats[prediction.user_id]
        entry["total_predictions"] += 1
        entry["total_points"] += prediction.points_awarded or 0
        if not is_decided_summary(match.sets_home, match.sets_away):
            continue
        breakdown = score_prediction(
            (match.sets_home, match.sets_away),
            match.set_scores,
            (prediction.predicted_home, prediction.predicted_away),
            prediction.predicted_set_scores,
            prediction.is_risky,
        )
        if breakdown.exact_score:
            entry["exact_scores"] += 1
        elif breakdown.correct_winner:
            entry["correct_winners"] += 1

    ordered = sorted(
        stats.items(),
        key=lambda item: (-item[1]["total_points"], -item[1]["exact_scores"], item[0]),
    )
    return [
        {"position": position, "user_id": user_id, **entry}
        for position, (user_id, entry) in enumerate(ordered, start=1)
    ]


async def global_ranking(session: AsyncSession, limit: Optional[int] = 10) -> list[dict]:
    """
    Totals across all groups.

    Soft-deleted predictions and deleted groups still count: deleting a
    finished prediction hides it from the user, it does not take points back.
    """
    total = func.sum(Prediction.points_awarded).label("total_points")
    stmt = (
        select(Prediction.user_id, total)
        .join(Match, Match.id == Prediction.match_id)
        .where(Match.status == MatchStatus.FINISHED, Prediction.points_awarded.is_not(None))
        .group_by(Prediction.user_id)
        .order_by(total.desc(), Prediction.user_id)
    )
    if limit:
        stmt = stmt.limit(limit)

    result = await session.execute(stmt)
    return [
        {"position": position, "user_id": row.user_id, "total_points": int(row.total_points or 0)}
        for position, row in enumerate(result.all(), start=1)
    ]
