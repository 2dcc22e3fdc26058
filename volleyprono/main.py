"""FastAPI application for the VolleyProno match engine."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from volleyprono.config import get_settings
from volleyprono.database import close_db, init_db
from volleyprono.errors import (
    CooldownError,
    LockedError,
    NotFoundError,
    SourceUnavailableError,
    ValidationError,
    VolleyPronoError,
)
from volleyprono.routes.core import router as core_router
from volleyprono.routes.groups import router as groups_router
from volleyprono.routes.predictions import router as predictions_router
from volleyprono.scheduler import LifecycleScheduler, start_scheduler, stop_scheduler
from volleyprono.security import limiter
from volleyprono.state import close_provider, get_provider
from volleyprono.telemetry.sentry import init_sentry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize Sentry for error tracking (before FastAPI app creation)
# Only activates if SENTRY_DSN is set in environment
init_sentry()

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting VolleyProno match engine...")
    await init_db()

    if settings.SCHEDULER_ENABLED:
        start_scheduler(LifecycleScheduler(get_provider()))
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")

    yield

    logger.info("Shutting down...")
    stop_scheduler()
    await close_provider()
    await close_db()


app = FastAPI(
    title="VolleyProno",
    description="Match lifecycle and prediction scoring engine for volleyball prediction groups",
    version="1.0.0",
    lifespan=lifespan,
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Include routers
app.include_router(core_router)
app.include_router(predictions_router)
app.include_router(groups_router)


# Domain errors -> HTTP. Each rejection tells the user what to fix.
_ERROR_STATUS = (
    (ValidationError, 422),
    (LockedError, 409),
    (CooldownError, 429),
    (NotFoundError, 404),
    (SourceUnavailableError, 502),
)


@app.exception_handler(VolleyPronoError)
async def domain_error_handler(request: Request, exc: VolleyPronoError):
    status_code = 400
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break

    content = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, ValidationError) and exc.set_index is not None:
        content["set_index"] = exc.set_index
    elif isinstance(exc, LockedError) and exc.locked_since is not None:
        content["locked_since"] = exc.locked_since.isoformat()
    elif isinstance(exc, CooldownError):
        content["next_available"] = exc.next_available.isoformat()

    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc}")
    return JSONResponse(status_code=status_code, content=content)
