"""
Prediction routes.

Authentication is handled upstream by the web application; the acting user
arrives as `user_id` in the payload or query.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from volleyprono.config import get_settings
from volleyprono.database import get_async_session
from volleyprono.predictions import service
from volleyprono.predictions.cooldown import can_use_risky
from volleyprono.state import get_now

router = APIRouter(tags=["predictions"])


class SetScore(BaseModel):
    home: int = Field(ge=0)
    away: int = Field(ge=0)


class PredictionRequest(BaseModel):
    user_id: int
    predicted_home: int = Field(ge=0, le=3)
    predicted_away: int = Field(ge=0, le=3)
    predicted_set_scores: Optional[list[SetScore]] = Field(default=None, max_length=5)
    is_risky: bool = False


class PredictionUpdateRequest(BaseModel):
    user_id: int
    predicted_home: int = Field(ge=0, le=3)
    predicted_away: int = Field(ge=0, le=3)
    predicted_set_scores: Optional[list[SetScore]] = Field(default=None, max_length=5)
    is_risky: Optional[bool] = None


class PredictionResponse(BaseModel):
    id: int
    user_id: int
    match_id: int
    predicted_home: int
    predicted_away: int
    predicted_set_scores: Optional[list[SetScore]]
    is_risky: bool
    points_awarded: Optional[int]
    updated_at: datetime


class DeletePredictionsRequest(BaseModel):
    user_id: int
    prediction_ids: list[int] = Field(min_length=1)


class MarkViewedRequest(BaseModel):
    prediction_ids: list[int]


class RiskyStatusResponse(BaseModel):
    allowed: bool
    next_available: Optional[datetime] = None
    last_used: Optional[datetime] = None


def _set_scores(scores: Optional[list[SetScore]]) -> Optional[list[dict]]:
    if scores is None:
        return None
    return [s.model_dump() for s in scores]


def _to_response(prediction) -> PredictionResponse:
    return PredictionResponse(
        id=prediction.id,
        user_id=prediction.user_id,
        match_id=prediction.match_id,
        predicted_home=prediction.predicted_home,
        predicted_away=prediction.predicted_away,
        predicted_set_scores=prediction.predicted_set_scores,
        is_risky=prediction.is_risky,
        points_awarded=prediction.points_awarded,
        updated_at=prediction.updated_at,
    )


@router.post("/matches/{match_id}/predictions", response_model=PredictionResponse)
async def submit_prediction(
    match_id: int,
    body: PredictionRequest,
    session: AsyncSession = Depends(get_async_session),
    now: datetime = Depends(get_now),
):
    """Create or replace the caller's prediction for a match."""
    prediction = await service.submit_prediction(
        session,
        user_id=body.user_id,
        match_id=match_id,
        predicted_home=body.predicted_home,
        predicted_away=body.predicted_away,
        predicted_set_scores=_set_scores(body.predicted_set_scores),
        is_risky=body.is_risky,
        now=now,
    )
    return _to_response(prediction)


@router.put("/predictions/{prediction_id}", response_model=PredictionResponse)
async def update_prediction(
    prediction_id: int,
    body: PredictionUpdateRequest,
    session: AsyncSession = Depends(get_async_session),
    now: datetime = Depends(get_now),
):
    prediction = await service.update_prediction(
        session,
        prediction_id=prediction_id,
        user_id=body.user_id,
        predicted_home=body.predicted_home,
        predicted_away=body.predicted_away,
        predicted_set_scores=_set_scores(body.predicted_set_scores),
        is_risky=body.is_risky,
        now=now,
    )
    return _to_response(prediction)


@router.post("/predictions/delete")
async def delete_predictions(
    body: DeletePredictionsRequest,
    session: AsyncSession = Depends(get_async_session),
    now: datetime = Depends(get_now),
):
    return await service.delete_predictions(session, body.user_id, body.prediction_ids, now)


@router.get("/groups/{group_id}/risky-status", response_model=RiskyStatusResponse)
async def risky_status(
    group_id: int,
    user_id: int = Query(...),
    session: AsyncSession = Depends(get_async_session),
    now: datetime = Depends(get_now),
):
    """Whether the user may flag a prediction as risky in this group right now."""
    status = await can_use_risky(session, user_id, group_id, now, get_settings().RISKY_COOLDOWN_DAYS)
    return RiskyStatusResponse(
        allowed=status.allowed, next_available=status.next_available, last_used=status.last_used
    )


@router.get("/users/{user_id}/points/unseen")
async def unseen_points(
    user_id: int,
    session: AsyncSession = Depends(get_async_session),
    now: datetime = Depends(get_now),
):
    return await service.get_unseen_points(session, user_id, now)


@router.post("/users/{user_id}/points/viewed")
async def mark_viewed(
    user_id: int,
    body: MarkViewedRequest,
    session: AsyncSession = Depends(get_async_session),
):
    count = await service.mark_predictions_viewed(session, user_id, body.prediction_ids)
    return {"marked": count}
