"""Tests for match reconciliation (lookup, merge rules, immediate scoring)."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import FOUR_SETS_HOME, NOW, FakeProvider, make_match, make_prediction, observation
from volleyprono.errors import NotFoundError, SourceUnavailableError
from volleyprono.etl.reconciler import MatchReconciler, is_backward_transition, observed_summary
from volleyprono.models import Group, Match, MatchStatus, Prediction
from volleyprono.predictions.scoring import find_matches_pending_scoring

SOURCE = "feed://ligue-a"
KICKOFF = NOW + timedelta(days=3)


async def _matches(session) -> list[Match]:
    result = await session.execute(select(Match).order_by(Match.id))
    return list(result.scalars().all())


def _reconciler(session, *batch, **kwargs) -> MatchReconciler:
    return MatchReconciler(FakeProvider({SOURCE: list(batch)}), session, **kwargs)


# ---------------------------------------------------------------------------
# observed_summary
# ---------------------------------------------------------------------------

class TestObservedSummary:
    def test_finished_needs_decided_score(self):
        assert observed_summary(observation(status=MatchStatus.FINISHED, sets_home=3, sets_away=1)) == (3, 1)
        assert observed_summary(observation(status=MatchStatus.FINISHED, sets_home=2, sets_away=1)) is None

    def test_running_score_is_not_final(self):
        assert observed_summary(observation(status=MatchStatus.IN_PROGRESS, sets_home=2, sets_away=1)) is None
        assert observed_summary(observation(status=MatchStatus.IN_PROGRESS, sets_home=3, sets_away=1)) is None

    def test_missing_side(self):
        assert observed_summary(observation(status=MatchStatus.FINISHED, sets_home=3)) is None


class TestBackwardTransition:
    @pytest.mark.parametrize(
        "current, observed, expected",
        [
            (MatchStatus.IN_PROGRESS, MatchStatus.SCHEDULED, True),
            (MatchStatus.FINISHED, MatchStatus.IN_PROGRESS, True),
            (MatchStatus.SCHEDULED, MatchStatus.FINISHED, False),
            (MatchStatus.IN_PROGRESS, MatchStatus.IN_PROGRESS, False),
            (MatchStatus.IN_PROGRESS, MatchStatus.CANCELED, False),
            (MatchStatus.CANCELED, MatchStatus.SCHEDULED, False),
        ],
    )
    def test_order(self, current, observed, expected):
        assert is_backward_transition(current, observed) is expected


# ---------------------------------------------------------------------------
# Create / dedup
# ---------------------------------------------------------------------------

class TestCreateAndDedup:
    @pytest.mark.asyncio
    async def test_creates_with_normalized_names(self, session, group):
        obs = observation(home_team="  TOURS   vb ", away_team="paris volley", external_id="m-1")
        result = await _reconciler(session, obs).reconcile_group(group.id, now=NOW)

        assert result.created == 1
        [match] = await _matches(session)
        assert (match.home_team, match.away_team) == ("Tours Vb", "Paris Volley")
        assert match.external_id == "m-1"
        assert match.status == MatchStatus.SCHEDULED
        assert not match.is_locked
        assert match.synced_at == NOW

    @pytest.mark.asyncio
    async def test_idempotent(self, session, group):
        batch = [
            observation(external_id="m-1"),
            observation(home_team="Nantes", away_team="Cannes", start_at=KICKOFF + timedelta(days=1)),
            observation(
                home_team="Sète",
                away_team="Poitiers",
                start_at=NOW - timedelta(days=1),
                status=MatchStatus.FINISHED,
                sets_home=3,
                sets_away=1,
                set_scores=FOUR_SETS_HOME,
            ),
        ]
        reconciler = _reconciler(session, *batch)

        first = await reconciler.reconcile_group(group.id, now=NOW)
        rows_after_first = [(m.id, m.status, m.sets_home, m.sets_away, m.set_scores) for m in await _matches(session)]
        second = await reconciler.reconcile_group(group.id, now=NOW + timedelta(hours=2))

        assert first.created == 3
        assert (second.created, second.updated, second.unchanged) == (0, 0, 3)
        assert [(m.id, m.status, m.sets_home, m.sets_away, m.set_scores) for m in await _matches(session)] == rows_after_first

    @pytest.mark.asyncio
    async def test_dedup_within_window(self, session, group):
        await make_match(session, group.id, start_at=KICKOFF)
        obs = observation(start_at=KICKOFF + timedelta(minutes=90), status=MatchStatus.IN_PROGRESS)

        result = await _reconciler(session, obs).reconcile_group(group.id, now=NOW)

        assert (result.created, result.updated) == (0, 1)
        [match] = await _matches(session)
        assert match.status == MatchStatus.IN_PROGRESS
        assert match.is_locked

    @pytest.mark.asyncio
    async def test_window_boundary_inclusive(self, session, group):
        await make_match(session, group.id, start_at=KICKOFF)
        obs = observation(start_at=KICKOFF - timedelta(hours=2))

        result = await _reconciler(session, obs).reconcile_group(group.id, now=NOW)
        assert result.created == 0

    @pytest.mark.asyncio
    async def test_outside_window_creates_second_match(self, session, group):
        await make_match(session, group.id, start_at=KICKOFF)
        obs = observation(start_at=KICKOFF + timedelta(hours=3))

        result = await _reconciler(session, obs).reconcile_group(group.id, now=NOW)

        assert result.created == 1
        assert len(await _matches(session)) == 2

    @pytest.mark.asyncio
    async def test_reversed_sides_are_a_different_match(self, session, group):
        await make_match(session, group.id, start_at=KICKOFF)
        obs = observation(home_team="Paris Volley", away_team="Tours VB")

        result = await _reconciler(session, obs).reconcile_group(group.id, now=NOW)
        assert result.created == 1

    @pytest.mark.asyncio
    async def test_external_id_survives_reschedule(self, session, group):
        await make_match(session, group.id, start_at=KICKOFF, external_id="m-7")
        obs = observation(external_id="m-7", start_at=KICKOFF + timedelta(days=4), status=MatchStatus.CANCELED)

        result = await _reconciler(session, obs).reconcile_group(group.id, now=NOW)

        assert (result.created, result.updated) == (0, 1)
        [match] = await _matches(session)
        assert match.status == MatchStatus.CANCELED

    @pytest.mark.asyncio
    async def test_external_id_backfilled(self, session, group):
        await make_match(session, group.id, start_at=KICKOFF)
        obs = observation(external_id="m-9")

        result = await _reconciler(session, obs).reconcile_group(group.id, now=NOW)

        assert result.updated == 1
        [match] = await _matches(session)
        assert match.external_id == "m-9"

    @pytest.mark.asyncio
    async def test_different_external_id_not_merged(self, session, group):
        await make_match(session, group.id, start_at=KICKOFF, external_id="m-1")
        obs = observation(external_id="m-2", start_at=KICKOFF + timedelta(minutes=30))

        result = await _reconciler(session, obs).reconcile_group(group.id, now=NOW)

        assert result.created == 1
        assert {m.external_id for m in await _matches(session)} == {"m-1", "m-2"}

    @pytest.mark.asyncio
    async def test_closest_candidate_wins(self, session, group):
        far = await make_match(session, group.id, start_at=KICKOFF - timedelta(minutes=100))
        near = await make_match(session, group.id, start_at=KICKOFF + timedelta(minutes=20))
        obs = observation(start_at=KICKOFF, status=MatchStatus.IN_PROGRESS)

        await _reconciler(session, obs).reconcile_group(group.id, now=NOW)

        await session.refresh(far)
        await session.refresh(near)
        assert near.status == MatchStatus.IN_PROGRESS
        assert far.status == MatchStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_matches_scoped_to_group(self, session, group):
        other = Group(name="Ligue B", source_ref="feed://ligue-b", created_at=NOW)
        session.add(other)
        await session.commit()
        await make_match(session, other.id, start_at=KICKOFF, external_id="m-1")

        result = await _reconciler(session, observation(external_id="m-1")).reconcile_group(group.id, now=NOW)
        assert result.created == 1

    @pytest.mark.asyncio
    async def test_deleted_match_not_recreated(self, session, group):
        await make_match(session, group.id, start_at=KICKOFF, external_id="m-1", deleted_at=NOW)

        result = await _reconciler(session, observation(external_id="m-1")).reconcile_group(group.id, now=NOW)

        assert (result.created, result.unchanged) == (0, 1)
        assert len(await _matches(session)) == 1

    @pytest.mark.asyncio
    async def test_empty_batch_changes_nothing(self, session, group):
        await make_match(session, group.id, start_at=KICKOFF)

        result = await _reconciler(session).reconcile_group(group.id, now=NOW)

        assert result.as_dict() == {
            "group_id": group.id,
            "created": 0,
            "updated": 0,
            "unchanged": 0,
            "scored": 0,
            "errors": 0,
        }
        [match] = await _matches(session)
        assert match.status == MatchStatus.SCHEDULED


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------

class TestTransitions:
    @pytest.mark.asyncio
    async def test_finished_never_downgraded(self, session, group):
        await make_match(
            session,
            group.id,
            start_at=NOW - timedelta(hours=3),
            status=MatchStatus.FINISHED,
            sets_home=3,
            sets_away=1,
            is_locked=True,
            external_id="m-1",
        )
        stale = observation(
            external_id="m-1",
            start_at=NOW - timedelta(hours=3),
            status=MatchStatus.IN_PROGRESS,
            sets_home=1,
            sets_away=1,
        )

        result = await _reconciler(session, stale).reconcile_group(group.id, now=NOW)

        assert result.unchanged == 1
        [match] = await _matches(session)
        assert match.status == MatchStatus.FINISHED
        assert (match.sets_home, match.sets_away) == (3, 1)

    @pytest.mark.asyncio
    async def test_later_observation_in_same_batch_wins(self, session, group):
        batch = [
            observation(external_id="m-1", status=MatchStatus.IN_PROGRESS, sets_home=1, sets_away=0),
            observation(external_id="m-1", status=MatchStatus.FINISHED, sets_home=3, sets_away=1),
        ]
        result = await _reconciler(session, *batch).reconcile_group(group.id, now=NOW)

        assert (result.created, result.updated) == (1, 1)
        [match] = await _matches(session)
        assert match.status == MatchStatus.FINISHED
        assert (match.sets_home, match.sets_away) == (3, 1)
        assert match.finished_at == NOW

    @pytest.mark.asyncio
    async def test_invalid_finished_summary_is_partial_data(self, session, group):
        await make_match(session, group.id, start_at=NOW - timedelta(hours=2), external_id="m-1")
        obs = observation(
            external_id="m-1", start_at=NOW - timedelta(hours=2), status=MatchStatus.FINISHED, sets_home=2, sets_away=1
        )

        result = await _reconciler(session, obs).reconcile_group(group.id, now=NOW)

        assert result.scored == 0
        [match] = await _matches(session)
        assert match.status == MatchStatus.FINISHED
        assert (match.sets_home, match.sets_away) == (None, None)

    @pytest.mark.asyncio
    async def test_started_match_not_moved_back_to_scheduled(self, session, group):
        match = await make_match(
            session,
            group.id,
            start_at=NOW - timedelta(minutes=10),
            status=MatchStatus.IN_PROGRESS,
            is_locked=True,
            locked_at=NOW - timedelta(minutes=10),
            external_id="m-1",
        )
        lagging = observation(external_id="m-1", start_at=NOW - timedelta(minutes=10))

        result = await _reconciler(session, lagging).reconcile_group(group.id, now=NOW)

        assert (result.updated, result.unchanged) == (0, 1)
        await session.refresh(match)
        assert match.status == MatchStatus.IN_PROGRESS
        assert match.is_locked
        assert match.synced_at == NOW

    @pytest.mark.asyncio
    async def test_started_match_can_be_canceled(self, session, group):
        await make_match(
            session,
            group.id,
            start_at=NOW - timedelta(minutes=10),
            status=MatchStatus.IN_PROGRESS,
            is_locked=True,
            external_id="m-1",
        )
        canceled = observation(external_id="m-1", start_at=NOW - timedelta(minutes=10), status=MatchStatus.CANCELED)

        result = await _reconciler(session, canceled).reconcile_group(group.id, now=NOW)

        assert result.updated == 1
        [match] = await _matches(session)
        assert match.status == MatchStatus.CANCELED

    @pytest.mark.asyncio
    async def test_running_score_dropped(self, session, group):
        await make_match(
            session,
            group.id,
            start_at=NOW - timedelta(hours=1),
            status=MatchStatus.IN_PROGRESS,
            sets_home=2,
            sets_away=1,
            is_locked=True,
            external_id="m-1",
        )
        running = observation(
            external_id="m-1", start_at=NOW - timedelta(hours=1), status=MatchStatus.IN_PROGRESS, sets_home=2, sets_away=1
        )

        result = await _reconciler(session, running).reconcile_group(group.id, now=NOW)

        assert result.updated == 1
        [match] = await _matches(session)
        assert (match.sets_home, match.sets_away, match.set_scores) == (None, None, None)

    @pytest.mark.asyncio
    async def test_missing_match_is_not_canceled(self, session, group):
        await make_match(session, group.id, start_at=KICKOFF, external_id="m-1")
        other = observation(home_team="Nantes", away_team="Cannes", external_id="m-2")

        await _reconciler(session, other).reconcile_group(group.id, now=NOW)

        stored = {m.external_id: m.status for m in await _matches(session)}
        assert stored["m-1"] == MatchStatus.SCHEDULED


# ---------------------------------------------------------------------------
# Immediate scoring
# ---------------------------------------------------------------------------

class TestImmediateScoring:
    @pytest.mark.asyncio
    async def test_scores_on_finished_edge(self, session, group):
        match = await make_match(session, group.id, start_at=NOW - timedelta(hours=3), external_id="m-1")
        exact = await make_prediction(session, match.id, user_id=1, predicted_set_scores=FOUR_SETS_HOME)
        wrong = await make_prediction(session, match.id, user_id=2, predicted_home=1, predicted_away=3, is_risky=True)
        obs = observation(
            external_id="m-1",
            start_at=NOW - timedelta(hours=3),
            status=MatchStatus.FINISHED,
            sets_home=3,
            sets_away=1,
            set_scores=FOUR_SETS_HOME,
        )

        result = await _reconciler(session, obs).reconcile_group(group.id, now=NOW)

        assert result.scored == 1
        await session.refresh(exact)
        await session.refresh(wrong)
        assert exact.points_awarded == 5
        assert wrong.points_awarded == -2
        assert exact.scored_at == NOW

    @pytest.mark.asyncio
    async def test_no_rescore_when_nothing_changed(self, session, group):
        obs = observation(
            external_id="m-1", start_at=NOW - timedelta(hours=3), status=MatchStatus.FINISHED, sets_home=3, sets_away=0
        )
        calls = []

        async def scorer(session, match_id, now, trigger):
            calls.append(match_id)
            return 0

        reconciler = _reconciler(session, obs, scorer=scorer)
        await reconciler.reconcile_group(group.id, now=NOW)
        await reconciler.reconcile_group(group.id, now=NOW + timedelta(hours=1))

        assert len(calls) == 0

    @pytest.mark.asyncio
    async def test_correction_rescores(self, session, group):
        match = await make_match(
            session,
            group.id,
            start_at=NOW - timedelta(hours=3),
            external_id="m-1",
            status=MatchStatus.FINISHED,
            sets_home=3,
            sets_away=1,
            is_locked=True,
        )
        prediction = await make_prediction(session, match.id, predicted_home=3, predicted_away=2, points_awarded=1)
        corrected = observation(
            external_id="m-1", start_at=NOW - timedelta(hours=3), status=MatchStatus.FINISHED, sets_home=3, sets_away=2
        )

        result = await _reconciler(session, corrected).reconcile_group(group.id, now=NOW)

        assert (result.updated, result.scored) == (1, 1)
        await session.refresh(prediction)
        assert prediction.points_awarded == 3

    @pytest.mark.asyncio
    async def test_scorer_failure_keeps_update(self, session, group):
        await make_match(session, group.id, start_at=NOW - timedelta(hours=3), external_id="m-1")

        async def failing_scorer(session, match_id, now, trigger):
            raise RuntimeError("scoring backend down")

        obs = observation(
            external_id="m-1", start_at=NOW - timedelta(hours=3), status=MatchStatus.FINISHED, sets_home=0, sets_away=3
        )
        result = await _reconciler(session, obs, scorer=failing_scorer).reconcile_group(group.id, now=NOW)

        assert (result.updated, result.scored, result.errors) == (1, 0, 0)
        [match] = await _matches(session)
        assert match.status == MatchStatus.FINISHED
        assert (match.sets_home, match.sets_away) == (0, 3)

    @pytest.mark.asyncio
    async def test_running_score_then_finished_without_sets_not_scored(self, session, group):
        match = await make_match(session, group.id, start_at=NOW - timedelta(hours=2), external_id="m-1")
        prediction = await make_prediction(session, match.id, predicted_home=2, predicted_away=1)
        running = observation(
            external_id="m-1", start_at=NOW - timedelta(hours=2), status=MatchStatus.IN_PROGRESS, sets_home=2, sets_away=1
        )
        finished = observation(external_id="m-1", start_at=NOW - timedelta(hours=2), status=MatchStatus.FINISHED)

        first = await _reconciler(session, running).reconcile_group(group.id, now=NOW - timedelta(minutes=30))
        second = await _reconciler(session, finished).reconcile_group(group.id, now=NOW)

        assert (first.scored, second.scored) == (0, 0)
        await session.refresh(match)
        await session.refresh(prediction)
        assert match.status == MatchStatus.FINISHED
        assert (match.sets_home, match.sets_away) == (None, None)
        assert prediction.points_awarded is None
        assert await find_matches_pending_scoring(session) == []

    @pytest.mark.asyncio
    async def test_final_score_arriving_later_scores(self, session, group):
        match = await make_match(
            session,
            group.id,
            start_at=NOW - timedelta(hours=3),
            status=MatchStatus.FINISHED,
            is_locked=True,
            external_id="m-1",
        )
        prediction = await make_prediction(session, match.id, predicted_home=3, predicted_away=0)
        final = observation(
            external_id="m-1", start_at=NOW - timedelta(hours=3), status=MatchStatus.FINISHED, sets_home=3, sets_away=0
        )

        result = await _reconciler(session, final).reconcile_group(group.id, now=NOW)

        assert result.scored == 1
        await session.refresh(prediction)
        assert prediction.points_awarded == 3

    @pytest.mark.asyncio
    async def test_created_finished_match_left_to_sweep(self, session, group):
        obs = observation(
            external_id="m-1", start_at=NOW - timedelta(hours=3), status=MatchStatus.FINISHED, sets_home=3, sets_away=0
        )
        result = await _reconciler(session, obs).reconcile_group(group.id, now=NOW)

        assert (result.created, result.scored) == (1, 0)
        [match] = await _matches(session)
        assert match.is_locked
        assert match.finished_at == NOW
        predictions = await session.execute(select(Prediction))
        assert predictions.scalars().all() == []


# ---------------------------------------------------------------------------
# Group-level errors
# ---------------------------------------------------------------------------

class TestGroupErrors:
    @pytest.mark.asyncio
    async def test_source_failure(self, session, group):
        provider = FakeProvider(failing={SOURCE})
        with pytest.raises(SourceUnavailableError) as exc:
            await MatchReconciler(provider, session).reconcile_group(group.id, now=NOW)
        assert exc.value.group_id == group.id
        assert isinstance(exc.value.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_group_without_source(self, session):
        group = Group(name="Friends", source_ref=None, created_at=NOW)
        session.add(group)
        await session.commit()

        provider = FakeProvider()
        with pytest.raises(SourceUnavailableError):
            await MatchReconciler(provider, session).reconcile_group(group.id, now=NOW)
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_unknown_group(self, session):
        with pytest.raises(NotFoundError):
            await MatchReconciler(FakeProvider(), session).reconcile_group(404, now=NOW)
