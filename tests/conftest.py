"""Shared fixtures: in-memory database, fake observation provider, fixed clock."""

from datetime import datetime, timedelta
from typing import Optional

import pytest
import pytest_asyncio

from volleyprono.database import build_engine, build_session_factory, init_db
from volleyprono.etl.base import MatchObservation, ObservationProvider
from volleyprono.models import Group, Match, MatchStatus, Prediction

NOW = datetime(2024, 10, 12, 12, 0, 0)


class FakeProvider(ObservationProvider):
    """Serves canned observation batches per source_ref; raises for failing sources."""

    def __init__(self, batches: Optional[dict] = None, failing: Optional[set] = None):
        self.batches = batches or {}
        self.failing = failing or set()
        self.calls: list[str] = []

    async def fetch_observations(self, source_ref: str) -> list[MatchObservation]:
        self.calls.append(source_ref)
        if source_ref in self.failing:
            raise ConnectionError(f"{source_ref} unreachable")
        return list(self.batches.get(source_ref, []))


@pytest_asyncio.fixture
async def engine():
    engine = build_engine("sqlite://")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def group(session) -> Group:
    group = Group(name="Ligue A Masculine", source_ref="feed://ligue-a", created_at=NOW)
    session.add(group)
    await session.commit()
    return group


async def make_match(session, group_id: int, **overrides) -> Match:
    values = {
        "group_id": group_id,
        "home_team": "Tours Vb",
        "away_team": "Paris Volley",
        "start_at": NOW + timedelta(days=3),
        "status": MatchStatus.SCHEDULED,
        "created_at": NOW,
    }
    values.update(overrides)
    match = Match(**values)
    session.add(match)
    await session.commit()
    return match


async def make_prediction(session, match_id: int, user_id: int = 1, **overrides) -> Prediction:
    values = {
        "user_id": user_id,
        "match_id": match_id,
        "predicted_home": 3,
        "predicted_away": 1,
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(overrides)
    prediction = Prediction(**values)
    session.add(prediction)
    await session.commit()
    return prediction


def observation(**overrides) -> MatchObservation:
    values = {
        "home_team": "Tours VB",
        "away_team": "Paris Volley",
        "start_at": NOW + timedelta(days=3),
        "status": MatchStatus.SCHEDULED,
    }
    values.update(overrides)
    return MatchObservation(**values)


FOUR_SETS_HOME = [
    {"home": 25, "away": 20},
    {"home": 22, "away": 25},
    {"home": 25, "away": 23},
    {"home": 25, "away": 19},
]
