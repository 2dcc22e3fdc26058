"""
Prometheus metrics for the match engine.

Labels are low-cardinality only (job names, outcome names, error codes).
Never use group ids, match ids or team names as labels; put those in logs.
Recording is best-effort and never blocks the main flow.
"""

import time
import logging

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)

logger = logging.getLogger(__name__)

# =============================================================================
# SCHEDULER JOB METRICS
# =============================================================================

job_runs_total = Counter(
    "volleyprono_job_runs_total",
    "Total job runs by job and status",
    ["job", "status"],  # job: lock_sweep, sync_sweep, scoring_sweep; status: ok, partial, error
)

job_last_success_timestamp = Gauge(
    "volleyprono_job_last_success_timestamp",
    "Unix timestamp of last successful job run",
    ["job"],
)

job_duration_ms = Histogram(
    "volleyprono_job_duration_ms",
    "Job duration in milliseconds",
    ["job"],
    buckets=[10, 50, 100, 500, 1000, 5000, 10000, 30000, 60000, 300000],
)

# =============================================================================
# RECONCILIATION METRICS
# =============================================================================

reconcile_matches_total = Counter(
    "volleyprono_reconcile_matches_total",
    "Observations reconciled by outcome",
    ["outcome"],  # created, updated, unchanged, error
)

reconcile_group_failures_total = Counter(
    "volleyprono_reconcile_group_failures_total",
    "Groups whose source could not be reconciled",
    ["error_code"],  # source_unavailable, db_error, unexpected
)

# =============================================================================
# SCORING / SUBMISSION METRICS
# =============================================================================

predictions_scored_total = Counter(
    "volleyprono_predictions_scored_total",
    "Predictions scored by trigger",
    ["trigger"],  # reconcile, sweep, manual, rescore
)

prediction_rejections_total = Counter(
    "volleyprono_prediction_rejections_total",
    "Rejected prediction submissions by reason",
    ["reason"],  # locked, validation, cooldown, not_found
)


def record_job_run(job: str, status: str, duration_ms: float) -> None:
    """
    Record a job run with status and duration.

    Args:
        job: Job identifier (lock_sweep, sync_sweep, scoring_sweep)
        status: "ok", "partial" (some units failed) or "error"
        duration_ms: Job duration in milliseconds
    """
    try:
        job_runs_total.labels(job=job, status=status).inc()
        if duration_ms > 0:
            job_duration_ms.labels(job=job).observe(duration_ms)
        if status == "ok":
            job_last_success_timestamp.labels(job=job).set(time.time())
    except Exception as e:
        logger.warning(f"Failed to record job run metric: {e}")


def record_reconcile(created: int, updated: int, unchanged: int, errors: int) -> None:
    try:
        for outcome, value in (
            ("created", created),
            ("updated", updated),
            ("unchanged", unchanged),
            ("error", errors),
        ):
            if value:
                reconcile_matches_total.labels(outcome=outcome).inc(value)
    except Exception as e:
        logger.warning(f"Failed to record reconcile metric: {e}")


def record_group_failure(error_code: str) -> None:
    try:
        reconcile_group_failures_total.labels(error_code=error_code).inc()
    except Exception as e:
        logger.warning(f"Failed to record group failure metric: {e}")


def record_predictions_scored(trigger: str, count: int) -> None:
    try:
        if count:
            predictions_scored_total.labels(trigger=trigger).inc(count)
    except Exception as e:
        logger.warning(f"Failed to record scoring metric: {e}")


def record_prediction_rejected(reason: str) -> None:
    try:
        prediction_rejections_total.labels(reason=reason).inc()
    except Exception as e:
        logger.warning(f"Failed to record rejection metric: {e}")


def get_metrics_text() -> tuple[str, str]:
    """
    Generate Prometheus metrics text output.

    Returns:
        Tuple of (content, content_type)
    """
    return generate_latest(REGISTRY).decode("utf-8"), CONTENT_TYPE_LATEST
