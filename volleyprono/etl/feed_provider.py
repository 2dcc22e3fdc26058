"""
JSON feed observation provider.

Reads a competition feed that already exposes matches as JSON, either a
bare list or an object with a "matches" list. Each item:

    {
        "id": "2024-LAM-0123",          # optional, also accepted as "external_id"
        "home_team": "Tours VB",
        "away_team": "Paris Volley",
        "start_at": "2024-10-12T18:00:00+02:00",
        "status": "FINISHED",           # optional, defaults to SCHEDULED
        "sets_home": 3, "sets_away": 1, # optional
        "set_scores": [{"home": 25, "away": 20}, ...]  # optional
    }

HTML competition pages are handled by a separate scraper implementing the
same ObservationProvider interface.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

import httpx

from volleyprono.config import get_settings
from volleyprono.etl.base import MatchObservation, ObservationProvider
from volleyprono.models import MatchStatus
from volleyprono.utils.clock import to_naive_utc

logger = logging.getLogger(__name__)

# Source vocabularies seen in federation feeds
_STATUS_ALIASES = {
    "SCHEDULED": MatchStatus.SCHEDULED,
    "UPCOMING": MatchStatus.SCHEDULED,
    "NOT_STARTED": MatchStatus.SCHEDULED,
    "LIVE": MatchStatus.IN_PROGRESS,
    "IN_PROGRESS": MatchStatus.IN_PROGRESS,
    "PLAYING": MatchStatus.IN_PROGRESS,
    "FINISHED": MatchStatus.FINISHED,
    "FINAL": MatchStatus.FINISHED,
    "ENDED": MatchStatus.FINISHED,
    "CANCELED": MatchStatus.CANCELED,
    "CANCELLED": MatchStatus.CANCELED,
    "POSTPONED": MatchStatus.CANCELED,
}


def parse_status(raw: Optional[str]) -> str:
    if not raw:
        return MatchStatus.SCHEDULED
    return _STATUS_ALIASES.get(str(raw).strip().upper().replace(" ", "_"), MatchStatus.SCHEDULED)


def parse_start(raw: str) -> datetime:
    """ISO-8601 to naive UTC. A trailing Z is accepted."""
    return to_naive_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))


def _optional_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def parse_observation(item: dict) -> MatchObservation:
    """Parse one feed item. Raises KeyError/ValueError/TypeError on malformed input."""
    external_id = item.get("external_id", item.get("id"))
    return MatchObservation(
        external_id=str(external_id) if external_id not in (None, "") else None,
        home_team=item["home_team"],
        away_team=item["away_team"],
        start_at=parse_start(item["start_at"]),
        status=parse_status(item.get("status")),
        sets_home=_optional_int(item.get("sets_home")),
        sets_away=_optional_int(item.get("sets_away")),
        set_scores=item.get("set_scores") or None,
    )


class JSONFeedProvider(ObservationProvider):
    """ObservationProvider over HTTP with retry and exponential backoff."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        settings = get_settings()
        self.client = client or httpx.AsyncClient(
            timeout=settings.FEED_TIMEOUT_SECONDS,
            headers={"Accept": "application/json"},
            follow_redirects=True,
        )
        self.max_retries = settings.FEED_MAX_RETRIES
        self.retry_delay = settings.FEED_RETRY_DELAY_SECONDS

    async def _get_json(self, url: str):
        for attempt in range(self.max_retries):
            start_time = time.time()
            try:
                response = await self.client.get(url)
                latency_ms = (time.time() - start_time) * 1000

                if response.status_code == 429 or response.status_code >= 500:
                    wait_time = self.retry_delay * (2**attempt)
                    logger.warning(
                        f"[FEED] {url} returned {response.status_code} in {latency_ms:.0f}ms "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    if attempt < self.max_retries - 1:
                        await asyncio.sleep(wait_time)
                        continue

                response.raise_for_status()
                return response.json()

            except (httpx.TimeoutException, httpx.RequestError) as e:
                logger.error(f"[FEED] Request error for {url}: {e}")
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (2**attempt))
                    continue
                raise

        raise RuntimeError(f"Feed {url} unavailable after {self.max_retries} attempts")

    async def fetch_observations(self, source_ref: str) -> list[MatchObservation]:
        payload = await self._get_json(source_ref)
        items = payload.get("matches", []) if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise ValueError(f"Unexpected feed payload from {source_ref}: {type(items).__name__}")

        observations = []
        for index, item in enumerate(items):
            try:
                observations.append(parse_observation(item))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"[FEED] Skipping malformed item #{index} from {source_ref}: {e}")

        logger.info(f"[FEED] {source_ref}: {len(observations)}/{len(items)} observation(s) parsed")
        return observations

    async def close(self) -> None:
        await self.client.aclose()
