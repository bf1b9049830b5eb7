"""User badges (staff, verified, bot) shown next to names."""

import asyncio

from kvrp.backend import tables
from kvrp.backend.client import BackendClientBase, BackendError
from kvrp.backend.types import eq
from kvrp.config import get_settings
from kvrp.logging import get_logger
from kvrp.schemas.social import UserBadges

logger = get_logger(__name__)


async def fetch_badges(backend: BackendClientBase, username: str) -> UserBadges:
    """Badges for `username`.

    Badges are decoration: a failed lookup reads as no badges, same as no row.
    """
    try:
        rows = await asyncio.wait_for(
            backend.query(
                tables.USER_BADGES,
                eq("user_name", username),
                limit=1,
                columns="staff,verified,bot",
            ),
            timeout=get_settings().request_timeout_s,
        )
    except (BackendError, asyncio.TimeoutError) as e:
        logger.info("badge_lookup_failed", error=type(e).__name__)
        return UserBadges()
    return UserBadges.model_validate(rows[0]) if rows else UserBadges()


async def is_staff(backend: BackendClientBase, username: str) -> bool:
    return (await fetch_badges(backend, username)).staff
