"""
Shared collaborators for the web application.

Singleton-by-import: main.py and routers get the observation provider and
the clock through these functions, used as FastAPI dependencies so tests
can swap them with `app.dependency_overrides`.
"""

from datetime import datetime
from typing import Optional

from volleyprono.etl.base import ObservationProvider
from volleyprono.etl.feed_provider import JSONFeedProvider
from volleyprono.utils.clock import utcnow

_provider: Optional[ObservationProvider] = None


def get_provider() -> ObservationProvider:
    """Process-wide observation provider (created on first use)."""
    global _provider
    if _provider is None:
        _provider = JSONFeedProvider()
    return _provider


async def close_provider() -> None:
    global _provider
    if _provider is not None:
        await _provider.close()
        _provider = None


def get_now() -> datetime:
    """Current instant (naive UTC) for request handlers."""
    return utcnow()
