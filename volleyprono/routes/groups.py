"""Group routes: matches, manual sync, rankings and admin result corrections."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from volleyprono import matches as match_service
from volleyprono.config import get_settings
from volleyprono.database import get_async_session
from volleyprono.errors import NotFoundError
from volleyprono.etl.base import ObservationProvider
from volleyprono.etl.reconciler import MatchReconciler
from volleyprono.models import Group, Match, MatchStatus
from volleyprono.predictions.ranking import global_ranking, group_ranking
from volleyprono.routes.predictions import SetScore
from volleyprono.scoring.lock import effective_status, is_locked, lock_deadline
from volleyprono.security import verify_api_key
from volleyprono.state import get_now, get_provider

router = APIRouter(tags=["groups"])


class MatchResponse(BaseModel):
    id: int
    group_id: int
    external_id: Optional[str]
    home_team: str
    away_team: str
    start_at: datetime
    status: str
    sets_home: Optional[int]
    sets_away: Optional[int]
    set_scores: Optional[list[SetScore]]
    is_locked: bool
    predictions_close_at: datetime


class CreateMatchRequest(BaseModel):
    home_team: str = Field(min_length=1)
    away_team: str = Field(min_length=1)
    start_at: datetime
    external_id: Optional[str] = None


class MatchResultRequest(BaseModel):
    status: str = MatchStatus.FINISHED
    sets_home: Optional[int] = Field(default=None, ge=0, le=3)
    sets_away: Optional[int] = Field(default=None, ge=0, le=3)
    set_scores: Optional[list[SetScore]] = Field(default=None, max_length=5)


def _match_response(match: Match, now: datetime) -> MatchResponse:
    lock_hours = get_settings().PREDICTION_LOCK_HOURS
    return MatchResponse(
        id=match.id,
        group_id=match.group_id,
        external_id=match.external_id,
        home_team=match.home_team,
        away_team=match.away_team,
        start_at=match.start_at,
        status=effective_status(match, now),
        sets_home=match.sets_home,
        sets_away=match.sets_away,
        set_scores=match.set_scores,
        is_locked=is_locked(match, now, lock_hours),
        predictions_close_at=lock_deadline(match.start_at, lock_hours),
    )


@router.get("/groups/{group_id}/matches", response_model=list[MatchResponse])
async def list_group_matches(
    group_id: int,
    session: AsyncSession = Depends(get_async_session),
    now: datetime = Depends(get_now),
):
    """Matches of a group with status and lock derived at read time."""
    group = await session.get(Group, group_id)
    if group is None or group.deleted_at is not None:
        raise NotFoundError("Group", group_id)
    result = await session.execute(
        select(Match)
        .where(Match.group_id == group_id, Match.deleted_at.is_(None))
        .order_by(Match.start_at)
    )
    return [_match_response(m, now) for m in result.scalars().all()]


@router.post("/groups/{group_id}/sync", dependencies=[Depends(verify_api_key)])
async def sync_group(
    group_id: int,
    session: AsyncSession = Depends(get_async_session),
    provider: ObservationProvider = Depends(get_provider),
    now: datetime = Depends(get_now),
):
    """Reconcile one group against its source now, outside the sync sweep."""
    reconciler = MatchReconciler(provider, session)
    result = await reconciler.reconcile_group(group_id, now)
    return result.as_dict()


@router.post(
    "/groups/{group_id}/matches",
    response_model=MatchResponse,
    dependencies=[Depends(verify_api_key)],
)
async def create_match(
    group_id: int,
    body: CreateMatchRequest,
    session: AsyncSession = Depends(get_async_session),
    now: datetime = Depends(get_now),
):
    match = await match_service.create_match(
        session, group_id, body.home_team, body.away_team, body.start_at, body.external_id, now
    )
    return _match_response(match, now)


@router.put("/matches/{match_id}/result", dependencies=[Depends(verify_api_key)])
async def set_match_result(
    match_id: int,
    body: MatchResultRequest,
    session: AsyncSession = Depends(get_async_session),
    now: datetime = Depends(get_now),
):
    """Set or correct a result by hand; finished results are re-scored immediately."""
    match, scored = await match_service.update_match_result(
        session,
        match_id,
        body.sets_home,
        body.sets_away,
        [s.model_dump() for s in body.set_scores] if body.set_scores else None,
        body.status,
        now,
    )
    return {"match": _match_response(match, now), "predictions_scored": scored}


@router.get("/groups/{group_id}/ranking")
async def get_group_ranking(group_id: int, session: AsyncSession = Depends(get_async_session)):
    return await group_ranking(session, group_id)


@router.get("/ranking/global")
async def get_global_ranking(
    limit: int = Query(default=10, ge=1, le=500),
    session: AsyncSession = Depends(get_async_session),
):
    return await global_ranking(session, limit)
