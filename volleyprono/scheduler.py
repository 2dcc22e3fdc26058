"""
Lifecycle scheduler: lock, sync and scoring sweeps.

The three sweeps are independent and touch disjoint match states:
- lock sweep: SCHEDULED matches whose kickoff has passed
- scoring sweep: FINISHED matches with unscored predictions
- sync sweep: reconciles every group with a source

Scoring writes are absolute (compute-and-overwrite), so the sync sweep's
immediate scoring and the scoring sweep can hit the same match safely.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import func, select, update
from sqlalchemy.orm import sessionmaker

from volleyprono.config import get_settings
from volleyprono.database import AsyncSessionLocal, get_session_with_retry
from volleyprono.errors import SourceUnavailableError
from volleyprono.etl.base import ObservationProvider
from volleyprono.etl.reconciler import MatchReconciler
from volleyprono.models import Group, Match, MatchStatus
from volleyprono.predictions.scoring import find_matches_pending_scoring, score_match
from volleyprono.telemetry.metrics import record_group_failure, record_job_run
from volleyprono.telemetry.sentry import capture_exception, sentry_job_context
from volleyprono.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

# Flag to prevent multiple scheduler instances (e.g., with --reload)
_scheduler_started = False
scheduler = AsyncIOScheduler()


@dataclass
class SyncSweepResult:
    groups: int = 0
    succeeded: int = 0
    failed: int = 0
    created: int = 0
    updated: int = 0
    scored: int = 0
    errors: int = 0
    failed_groups: list[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


class LifecycleScheduler:
    """Runs the sweeps against an injected session factory, provider and clock."""

    def __init__(
        self,
        provider: ObservationProvider,
        session_factory: sessionmaker = AsyncSessionLocal,
        clock: Clock = utcnow,
        sync_concurrency: Optional[int] = None,
    ):
        self.provider = provider
        self.session_factory = session_factory
        self.clock = clock
        if sync_concurrency is None:
            sync_concurrency = get_settings().SYNC_CONCURRENCY
        self.sync_concurrency = max(1, sync_concurrency)

    def _session(self):
        return get_session_with_retry(max_retries=3, retry_delay=1.0, session_factory=self.session_factory)

    # ------------------------------------------------------------------
    # Lock sweep
    # ------------------------------------------------------------------

    async def run_lock_sweep(self, now: Optional[datetime] = None) -> int:
        """
        Flip every SCHEDULED match past kickoff to IN_PROGRESS and pin the lock.

        One UPDATE for the whole batch; rerunning it finds nothing left to do.
        """
        now = now or self.clock()
        async with self._session() as session:
            result = await session.execute(
                update(Match)
                .where(
                    Match.status == MatchStatus.SCHEDULED,
                    Match.start_at <= now,
                    Match.deleted_at.is_(None),
                )
                .values(
                    status=MatchStatus.IN_PROGRESS,
                    is_locked=True,
                    locked_at=func.coalesce(Match.locked_at, now),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            count = result.rowcount or 0

        if count:
            logger.info(f"[LOCK] {count} match(es) locked and moved to IN_PROGRESS")
        return count

    # ------------------------------------------------------------------
    # Sync sweep
    # ------------------------------------------------------------------

    async def _sync_group(self, group_id: int, now: datetime, semaphore: asyncio.Semaphore, totals: SyncSweepResult):
        async with semaphore:
            try:
                async with self._session() as session:
                    reconciler = MatchReconciler(self.provider, session)
                    result = await reconciler.reconcile_group(group_id, now)
                totals.succeeded += 1
                totals.created += result.created
                totals.updated += result.updated
                totals.scored += result.scored
                totals.errors += result.errors
            except SourceUnavailableError as e:
                totals.failed += 1
                totals.failed_groups.append(group_id)
                record_group_failure("source_unavailable")
                logger.warning(f"[SYNC] Group {group_id} skipped: {e}")
            except Exception as e:
                totals.failed += 1
                totals.failed_groups.append(group_id)
                record_group_failure("unexpected")
                logger.error(f"[SYNC] Group {group_id} failed: {e}", exc_info=True)
                capture_exception(e, job_id="sync_sweep", group_id=group_id)

    async def run_sync_sweep(self, now: Optional[datetime] = None) -> SyncSweepResult:
        """
        Reconcile every live group that has a source.

        Groups run concurrently (bounded by SYNC_CONCURRENCY), each in its own
        session; a failing group never stops the others.
        """
        now = now or self.clock()
        async with self._session() as session:
            result = await session.execute(
                select(Group.id)
                .where(Group.source_ref.is_not(None), Group.source_ref != "", Group.deleted_at.is_(None))
                .order_by(Group.id)
            )
            group_ids = list(result.scalars().all())

        totals = SyncSweepResult(groups=len(group_ids))
        semaphore = asyncio.Semaphore(self.sync_concurrency)
        await asyncio.gather(*(self._sync_group(gid, now, semaphore, totals) for gid in group_ids))
        totals.failed_groups.sort()

        logger.info(
            f"[SYNC] Sweep complete: {totals.succeeded}/{totals.groups} group(s) ok, "
            f"{totals.created} created, {totals.updated} updated, {totals.scored} scored"
        )
        return totals

    # ------------------------------------------------------------------
    # Scoring sweep
    # ------------------------------------------------------------------

    async def run_scoring_sweep(self, now: Optional[datetime] = None) -> int:
        """Score FINISHED matches that still have unscored predictions. Returns matches scored."""
        now = now or self.clock()
        scored = 0
        async with self._session() as session:
            match_ids = await find_matches_pending_scoring(session)
            for match_id in match_ids:
                try:
                    await score_match(session, match_id, now, trigger="sweep")
                    scored += 1
                except Exception as e:
                    await session.rollback()
                    logger.error(f"[SCORING] Match {match_id} failed: {e}")
                    capture_exception(e, job_id="scoring_sweep", match_id=match_id)

        if match_ids:
            logger.info(f"[SCORING] Sweep complete: {scored}/{len(match_ids)} match(es) scored")
        return scored

    # ------------------------------------------------------------------
    # APScheduler entry points
    # ------------------------------------------------------------------

    async def _run_job(self, job_id: str, sweep: Callable[[datetime], Awaitable]) -> None:
        start_time = time.time()
        with sentry_job_context(job_id):
            try:
                outcome = await sweep(self.clock())
                status = "partial" if isinstance(outcome, SyncSweepResult) and outcome.failed else "ok"
                record_job_run(job_id, status, (time.time() - start_time) * 1000)
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                record_job_run(job_id, "error", duration_ms)
                logger.error(f"[{job_id.upper()}] Job failed after {duration_ms:.0f}ms: {e}", exc_info=True)
                capture_exception(e, job_id=job_id)

    async def lock_sweep_job(self) -> None:
        await self._run_job("lock_sweep", self.run_lock_sweep)

    async def sync_sweep_job(self) -> None:
        await self._run_job("sync_sweep", self.run_sync_sweep)

    async def scoring_sweep_job(self) -> None:
        await self._run_job("scoring_sweep", self.run_scoring_sweep)


def start_scheduler(lifecycle: LifecycleScheduler) -> None:
    """
    Register the sweeps and start the background scheduler.

    Uses a module-level flag to prevent duplicate scheduler instances
    when running with --reload.
    """
    global _scheduler_started

    if _scheduler_started:
        logger.warning("Scheduler already started, skipping duplicate initialization")
        return

    settings = get_settings()

    # Lock sweep: hourly on the hour
    scheduler.add_job(
        lifecycle.lock_sweep_job,
        trigger=CronTrigger(minute=settings.LOCK_SWEEP_MINUTE),
        id="lock_sweep",
        name="Lock matches at kickoff",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    # Sync sweep: every N hours
    scheduler.add_job(
        lifecycle.sync_sweep_job,
        trigger=IntervalTrigger(hours=settings.SYNC_SWEEP_INTERVAL_HOURS),
        id="sync_sweep",
        name="Reconcile group sources",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    # Scoring sweep: hourly at :30 (between lock sweeps)
    scheduler.add_job(
        lifecycle.scoring_sweep_job,
        trigger=CronTrigger(minute=settings.SCORING_SWEEP_MINUTE),
        id="scoring_sweep",
        name="Score finished matches",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    _scheduler_started = True
    logger.info(
        f"Scheduler started: lock at :{settings.LOCK_SWEEP_MINUTE:02d}, "
        f"sync every {settings.SYNC_SWEEP_INTERVAL_HOURS}h, scoring at :{settings.SCORING_SWEEP_MINUTE:02d}"
    )


def stop_scheduler() -> None:
    """Stop the background scheduler, letting running jobs finish their writes."""
    global _scheduler_started
    if scheduler.running:
        scheduler.shutdown(wait=True)
        _scheduler_started = False
        logger.info("Scheduler stopped")
