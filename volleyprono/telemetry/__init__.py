"""Prometheus metrics and Sentry reporting."""

from volleyprono.telemetry.metrics import (
    get_metrics_text,
    record_group_failure,
    record_job_run,
    record_prediction_rejected,
    record_predictions_scored,
    record_reconcile,
)
from volleyprono.telemetry.sentry import capture_exception, init_sentry, sentry_job_context

__all__ = [
    "capture_exception",
    "get_metrics_text",
    "init_sentry",
    "record_group_failure",
    "record_job_run",
    "record_prediction_rejected",
    "record_predictions_scored",
    "record_reconcile",
    "sentry_job_context",
]
