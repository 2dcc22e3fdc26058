"""Risky-mode cooldown per (user, group)."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from volleyprono.db_utils import upsert
from volleyprono.models import RiskyCooldown

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_DAYS = 7


@dataclass(frozen=True)
class CooldownStatus:
    allowed: bool
    next_available: Optional[datetime] = None
    last_used: Optional[datetime] = None


def cooldown_status(
    last_used: Optional[datetime], now: datetime, cooldown_days: int = DEFAULT_COOLDOWN_DAYS
) -> CooldownStatus:
    """Allowed when never used or at least `cooldown_days` have elapsed (boundary inclusive)."""
    if last_used is None:
        return CooldownStatus(allowed=True)
    next_available = last_used + timedelta(days=cooldown_days)
    if now >= next_available:
        return CooldownStatus(allowed=True, last_used=last_used)
    return CooldownStatus(allowed=False, next_available=next_available, last_used=last_used)


async def get_last_used(session: AsyncSession, user_id: int, group_id: int) -> Optional[datetime]:
    result = await session.execute(
        select(RiskyCooldown.last_used).where(
            RiskyCooldown.user_id == user_id,
            RiskyCooldown.group_id == group_id,
        )
    )
    return result.scalar_one_or_none()


async def can_use_risky(
    session: AsyncSession,
    user_id: int,
    group_id: int,
    now: datetime,
    cooldown_days: int = DEFAULT_COOLDOWN_DAYS,
) -> CooldownStatus:
    last_used = await get_last_used(session, user_id, group_id)
    return cooldown_status(last_used, now, cooldown_days)


async def mark_risky_used(session: AsyncSession, user_id: int, group_id: int, now: datetime) -> None:
    """Record a risky use (upsert on (user, group)). Caller commits."""
    await upsert(
        session,
        RiskyCooldown,
        {"user_id": user_id, "group_id": group_id, "last_used": now},
        conflict_columns=["user_id", "group_id"],
    )
    logger.debug(f"[RISKY] user={user_id} group={group_id} used risky at {now.isoformat()}")


async def release_risky(session: AsyncSession, user_id: int, group_id: int) -> None:
    """Forget the last use, e.g. when the only risky prediction is switched back to normal."""
    await session.execute(
        delete(RiskyCooldown).where(
            RiskyCooldown.user_id == user_id,
            RiskyCooldown.group_id == group_id,
        )
    )
    logger.debug(f"[RISKY] user={user_id} group={group_id} cooldown released")
