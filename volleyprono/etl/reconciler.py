"""
Match reconciliation: merge a group's observed matches into the match store.

Lookup is two-staged so each stage can be tested on its own:
1. exact external id inside the group
2. same normalized home/away names with kickoff within ±MATCH_WINDOW_HOURS

Observations are applied in source order, one at a time, each committed on
its own so a bad row or a failed scoring run never undoes the others.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from volleyprono.config import get_settings
from volleyprono.errors import NotFoundError, SourceUnavailableError
from volleyprono.etl.base import MatchObservation, ObservationProvider
from volleyprono.etl.name_normalization import normalize_team_name
from volleyprono.models import Group, Match, MatchStatus
from volleyprono.predictions.scoring import score_match
from volleyprono.scoring.set_validator import as_dicts, as_pairs, is_decided_summary
from volleyprono.telemetry.metrics import record_reconcile
from volleyprono.utils.clock import utcnow

logger = logging.getLogger(__name__)

Scorer = Callable[..., Awaitable[int]]

# CANCELED sits outside the forward order and may replace any unfinished status
_LIFECYCLE_ORDER = {
    MatchStatus.SCHEDULED: 0,
    MatchStatus.IN_PROGRESS: 1,
    MatchStatus.FINISHED: 2,
}


@dataclass
class ReconcileResult:
    group_id: int
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    scored: int = 0
    errors: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def observed_summary(obs: MatchObservation) -> Optional[tuple[int, int]]:
    """
    Final score carried by an observation, or None.

    Sets won are only stored once decided: the observation must be FINISHED
    with one side at 3. Running scores and impossible values are partial
    data from the source and are ignored.
    """
    if obs.status != MatchStatus.FINISHED:
        return None
    if is_decided_summary(obs.sets_home, obs.sets_away):
        return obs.sets_home, obs.sets_away
    return None


def observed_set_scores(obs: MatchObservation) -> Optional[list]:
    pairs = as_pairs(obs.set_scores)
    return as_dicts(pairs) if pairs else None


def is_backward_transition(current: str, observed: str) -> bool:
    """True when `observed` would move a match back along SCHEDULED -> IN_PROGRESS -> FINISHED."""
    if current not in _LIFECYCLE_ORDER or observed not in _LIFECYCLE_ORDER:
        return False
    return _LIFECYCLE_ORDER[observed] < _LIFECYCLE_ORDER[current]


class MatchReconciler:
    """Applies observations from one provider to the matches of a group."""

    def __init__(
        self,
        provider: ObservationProvider,
        session: AsyncSession,
        window_hours: Optional[int] = None,
        scorer: Scorer = score_match,
    ):
        self.provider = provider
        self.session = session
        if window_hours is None:
            window_hours = get_settings().MATCH_WINDOW_HOURS
        self.window = timedelta(hours=window_hours)
        self.scorer = scorer

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def find_by_external_id(self, group_id: int, external_id: Optional[str]) -> Optional[Match]:
        if not external_id:
            return None
        result = await self.session.execute(
            select(Match).where(Match.group_id == group_id, Match.external_id == external_id)
        )
        return result.scalar_one_or_none()

    async def find_in_window(
        self,
        group_id: int,
        home_team: str,
        away_team: str,
        start_at: datetime,
        external_id: Optional[str] = None,
    ) -> Optional[Match]:
        """
        Same teams (post-normalization) with kickoff within the window.

        A stored match already carrying a different external id is a different
        match and never qualifies. The closest kickoff wins.
        """
        result = await self.session.execute(
            select(Match).where(
                Match.group_id == group_id,
                Match.home_team == normalize_team_name(home_team),
                Match.away_team == normalize_team_name(away_team),
                Match.start_at >= start_at - self.window,
                Match.start_at <= start_at + self.window,
            )
        )
        candidates = [
            m for m in result.scalars().all()
            if not (external_id and m.external_id and m.external_id != external_id)
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda m: (abs((m.start_at - start_at).total_seconds()), m.id))

    async def find_existing(self, group_id: int, obs: MatchObservation) -> Optional[Match]:
        match = await self.find_by_external_id(group_id, obs.external_id)
        if match is not None:
            return match
        return await self.find_in_window(group_id, obs.home_team, obs.away_team, obs.start_at, obs.external_id)

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def _new_match(self, group_id: int, obs: MatchObservation, now: datetime) -> Match:
        summary = observed_summary(obs)
        started = obs.status in (MatchStatus.IN_PROGRESS, MatchStatus.FINISHED)
        return Match(
            group_id=group_id,
            external_id=obs.external_id or None,
            home_team=normalize_team_name(obs.home_team),
            away_team=normalize_team_name(obs.away_team),
            start_at=obs.start_at,
            status=obs.status,
            sets_home=summary[0] if summary else None,
            sets_away=summary[1] if summary else None,
            set_scores=observed_set_scores(obs) if summary else None,
            is_locked=started,
            locked_at=now if started else None,
            synced_at=now,
            finished_at=now if obs.status == MatchStatus.FINISHED else None,
            created_at=now,
        )

    def apply_observation(self, match: Match, obs: MatchObservation, now: datetime) -> tuple[bool, bool]:
        """
        Merge one observation into a stored match.

        Status only moves forward (SCHEDULED -> IN_PROGRESS -> FINISHED); an
        observation lagging behind the stored status only refreshes synced_at.
        Returns (changed, rescore): `rescore` is set when the observation
        carries a final score and the match just became FINISHED, or a
        finished result was corrected.
        """
        changed = False

        if obs.external_id and not match.external_id:
            match.external_id = obs.external_id
            changed = True

        was_finished = match.status == MatchStatus.FINISHED
        if was_finished and obs.status != MatchStatus.FINISHED:
            # Stale observation: a finished result is never rolled back
            logger.debug(
                f"[SYNC] Ignoring {obs.status} for finished match {match.id} "
                f"({match.home_team} vs {match.away_team})"
            )
            match.synced_at = now
            return changed, False

        if is_backward_transition(match.status, obs.status):
            logger.debug(
                f"[SYNC] Ignoring {obs.status} for match {match.id} already {match.status} "
                f"({match.home_team} vs {match.away_team})"
            )
            match.synced_at = now
            return changed, False

        if obs.status != match.status:
            match.status = obs.status
            changed = True

        if obs.status in (MatchStatus.IN_PROGRESS, MatchStatus.FINISHED) and not match.is_locked:
            match.is_locked = True
            match.locked_at = now
            changed = True

        summary_changed = False
        summary = observed_summary(obs)
        if summary is not None:
            if summary != (match.sets_home, match.sets_away):
                match.sets_home, match.sets_away = summary
                summary_changed = True
                changed = True

            set_scores = observed_set_scores(obs)
            if set_scores != match.set_scores and (set_scores is not None or summary_changed):
                match.set_scores = set_scores
                summary_changed = True
                changed = True
        elif not was_finished and (
            match.sets_home is not None or match.sets_away is not None or match.set_scores
        ):
            # No final score yet: drop any running score left by earlier writes
            match.sets_home = match.sets_away = None
            match.set_scores = None
            changed = True

        now_finished = match.status == MatchStatus.FINISHED
        if now_finished and not was_finished:
            match.finished_at = match.finished_at or now
            logger.info(f"[SYNC] Match {match.id} finished: {match.home_team} vs {match.away_team}")

        match.synced_at = now
        rescore = now_finished and summary is not None and (not was_finished or summary_changed)
        return changed, rescore

    async def _score_best_effort(self, match_id: int, now: datetime) -> bool:
        try:
            await self.scorer(self.session, match_id, now, trigger="reconcile")
            return True
        except Exception as e:
            await self.session.rollback()
            logger.error(f"[SYNC] Immediate scoring failed for match {match_id} (sweep will retry): {e}")
            return False

    async def reconcile_observations(
        self,
        group_id: int,
        observations: Iterable[MatchObservation],
        now: datetime,
    ) -> ReconcileResult:
        result = ReconcileResult(group_id=group_id)

        for obs in observations:
            try:
                match = await self.find_existing(group_id, obs)

                if match is None:
                    match = self._new_match(group_id, obs, now)
                    self.session.add(match)
                    await self.session.commit()
                    result.created += 1
                    logger.info(
                        f"[SYNC] Created match {match.id}: {match.home_team} vs {match.away_team} "
                        f"at {match.start_at.isoformat()} ({match.status})"
                    )
                    continue

                if match.deleted_at is not None:
                    result.unchanged += 1
                    continue

                changed, rescore = self.apply_observation(match, obs, now)
                self.session.add(match)
                await self.session.commit()
                if changed:
                    result.updated += 1
                else:
                    result.unchanged += 1

            except Exception as e:
                await self.session.rollback()
                result.errors += 1
                logger.error(
                    f"[SYNC] Error reconciling {obs.home_team} vs {obs.away_team} "
                    f"({obs.external_id or obs.start_at.isoformat()}) in group {group_id}: {e}"
                )
                continue

            if rescore and await self._score_best_effort(match.id, now):
                result.scored += 1

        return result

    async def reconcile_group(self, group_id: int, now: Optional[datetime] = None) -> ReconcileResult:
        """
        Fetch a group's observations and reconcile them.

        Raises:
            NotFoundError: unknown or deleted group
            SourceUnavailableError: the group has no source or the provider failed
        """
        now = now or utcnow()
        group = await self.session.get(Group, group_id)
        if group is None or group.deleted_at is not None:
            raise NotFoundError("Group", group_id)
        source_ref = group.source_ref
        if not source_ref:
            raise SourceUnavailableError(group_id, None)

        try:
            observations = await self.provider.fetch_observations(source_ref)
        except Exception as e:
            raise SourceUnavailableError(group_id, source_ref, e) from e

        result = await self.reconcile_observations(group_id, observations, now)
        record_reconcile(result.created, result.updated, result.unchanged, result.errors)

        logger.info(
            f"[SYNC] Group {group_id}: {len(observations)} observed, {result.created} created, "
            f"{result.updated} updated, {result.unchanged} unchanged, {result.scored} scored, "
            f"{result.errors} error(s)"
        )
        return result
