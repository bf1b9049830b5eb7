"""Suggested friends drawn from recent public activity."""

import asyncio
from dataclasses import dataclass

from kvrp.backend import tables
from kvrp.backend.client import BackendClientBase
from kvrp.backend.types import Order
from kvrp.logging import get_logger
from kvrp.services.calls import fetch
from kvrp.services.friends import list_friends, sent_requests
from kvrp.session import Session

logger = get_logger(__name__)

MAX_SUGGESTIONS = 8

# (table, name column, how many recent rows to scan)
ACTIVITY_SOURCES = (
    (tables.PUBLIC_CHAT, "sender_name", 50),
    (tables.POSTS, "author_name", 30),
    (tables.REPORTS, "guest_name", 20),
)


@dataclass(frozen=True)
class Suggestion:
    username: str
    request_sent: bool = False


async def _recent_names(
    backend: BackendClientBase, collection: str, column: str, limit: int
) -> list[str]:
    rows = await fetch(
        backend.query(
            collection,
            None,
            Order(tables.timestamp_column(collection), ascending=False),
            limit=limit,
            columns=column,
        ),
        operation="suggest_friends",
    )
    return [row[column] for row in rows if row.get(column)]


async def suggest_friends(
    backend: BackendClientBase, session: Session, *, limit: int = MAX_SUGGESTIONS
) -> list[Suggestion]:
    """Users recently active in chat, posts or reports who are not yet friends.

    Names keep first-seen order across chat, then posts, then reports.
    """
    me = session.username
    *activity, friends, pending = await asyncio.gather(
        *(_recent_names(backend, c, col, n) for c, col, n in ACTIVITY_SOURCES),
        list_friends(backend, session),
        sent_requests(backend, session),
    )

    excluded = {me, *friends}
    names: dict[str, None] = {}
    for batch in activity:
        for name in batch:
            if name not in excluded:
                names.setdefault(name, None)

    pending_set = set(pending)
    suggestions = [Suggestion(n, request_sent=n in pending_set) for n in list(names)[:limit]]
    logger.info("friends_suggested", count=len(suggestions))
    return suggestions
