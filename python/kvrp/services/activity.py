"""Live player count: distinct users who chatted recently."""

import asyncio
from datetime import UTC, datetime, timedelta

from kvrp.backend import tables
from kvrp.backend.client import BackendClientBase
from kvrp.backend.types import gte
from kvrp.logging import get_logger
from kvrp.services.calls import fetch

logger = get_logger(__name__)

ACTIVE_WINDOW = timedelta(minutes=30)


async def count_active_users(
    backend: BackendClientBase,
    *,
    window: timedelta = ACTIVE_WINDOW,
    now: datetime | None = None,
) -> int:
    """Count distinct senders and receivers of public and private chat within `window`.

    Raises:
        LoadFailure: If either read fails. No estimate is substituted.
    """
    cutoff = (now or datetime.now(UTC)) - window
    public_recent = gte(tables.timestamp_column(tables.PUBLIC_CHAT), cutoff)
    private_recent = gte(tables.timestamp_column(tables.PRIVATE_CHATS), cutoff)
    public, private = await asyncio.gather(
        fetch(
            backend.query(tables.PUBLIC_CHAT, public_recent, columns="sender_name"),
            operation="count_active_users",
            notice="Failed to load player count",
        ),
        fetch(
            backend.query(
                tables.PRIVATE_CHATS, private_recent, columns="sender_name,receiver_name"
            ),
            operation="count_active_users",
            notice="Failed to load player count",
        ),
    )

    active = {row.get("sender_name") for row in public}
    for row in private:
        active.update((row.get("sender_name"), row.get("receiver_name")))
    active.discard(None)
    active.discard("")
    logger.debug("active_users_counted", count=len(active))
    return len(active)
