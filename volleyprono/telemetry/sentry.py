"""
Sentry integration for error tracking.

Initialised only when SENTRY_DSN is set. Sensitive headers (API key,
authorization, cookies) are redacted and request bodies are never sent.
Scheduler jobs tag their scope with `sentry_job_context`.
"""

import os
import logging
from typing import Optional
from contextlib import contextmanager

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

logger = logging.getLogger(__name__)

_sentry_initialized = False

SENSITIVE_HEADERS = ("x-api-key", "authorization", "cookie", "set-cookie", "x-forwarded-for")


def scrub_sensitive_data(event: dict, hint: dict) -> Optional[dict]:
    """Redact credentials and drop request bodies before an event leaves the process."""
    try:
        request = event.get("request") or {}
        headers = request.get("headers") or {}
        for key in list(headers.keys()):
            if key.lower() in SENSITIVE_HEADERS:
                headers[key] = "[REDACTED]"
        request["headers"] = headers

        if "data" in request:
            request["data"] = "[SCRUBBED]"
        event["request"] = request
    except Exception as e:
        logger.warning(f"Sentry scrubbing error (continuing): {e}")

    return event


def init_sentry() -> bool:
    """
    Initialize Sentry SDK if SENTRY_DSN is configured.

    Environment variables:
    - SENTRY_DSN: required to enable reporting
    - SENTRY_ENVIRONMENT: environment tag (default "development")
    - SENTRY_TRACES_SAMPLE_RATE: default 0.05
    """
    global _sentry_initialized

    if _sentry_initialized:
        return True

    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        logger.info("Sentry not configured (SENTRY_DSN not set)")
        return False

    environment = os.getenv("SENTRY_ENVIRONMENT", "development")
    traces_sample_rate = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.05"))

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.ERROR, event_level=logging.ERROR),
        ],
        traces_sample_rate=traces_sample_rate,
        send_default_pii=False,
        before_send=scrub_sensitive_data,
        ignore_errors=[KeyboardInterrupt, SystemExit],
    )

    _sentry_initialized = True
    logger.info(f"Sentry initialized: env={environment}, traces_sample_rate={traces_sample_rate}")
    return True


@contextmanager
def sentry_job_context(job_id: str, **extra_tags):
    """
    Tag the Sentry scope for a scheduler job; exceptions are captured then re-raised.

    Usage:
        with sentry_job_context("sync_sweep", groups=12):
            ...
    """
    if not _sentry_initialized:
        yield None
        return

    with sentry_sdk.push_scope() as scope:
        scope.set_tag("job_id", job_id)
        scope.set_context("job", {"job_id": job_id, **extra_tags})
        for key, value in extra_tags.items():
            if value is not None:
                scope.set_tag(key, str(value))

        try:
            yield scope
        except Exception as e:
            sentry_sdk.capture_exception(e)
            raise


def capture_exception(exception: Exception, job_id: str = None, **extra_context):
    """Explicit capture for per-unit failures that a job logs and continues past."""
    if not _sentry_initialized:
        return

    with sentry_sdk.push_scope() as scope:
        if job_id:
            scope.set_tag("job_id", job_id)
        for key, value in extra_context.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exception)
