"""Announcements: listing and once-per-session likes."""

from kvrp.backend import tables
from kvrp.backend.client import BackendClientBase
from kvrp.config import get_settings
from kvrp.errors import NotFoundError
from kvrp.logging import get_logger
from kvrp.schemas.social import Announcement
from kvrp.services.calls import commit
from kvrp.session import Session
from kvrp.sync.loader import FeedSource, SnapshotLoader

logger = get_logger(__name__)

ANNOUNCEMENTS_SOURCE = FeedSource(
    name="announcements", collection=tables.ANNOUNCEMENTS, model=Announcement, ascending=False
)


async def list_announcements(backend: BackendClientBase) -> list[Announcement]:
    """All announcements, newest first."""
    loader = SnapshotLoader(backend, timeout_s=get_settings().request_timeout_s)
    return await loader.load(ANNOUNCEMENTS_SOURCE)


async def like_announcement(
    backend: BackendClientBase, session: Session, announcement: Announcement
) -> Announcement | None:
    """Like an announcement once per session.

    Returns:
        The updated announcement, or None if this session already liked it.
    """
    if announcement.id in session.liked_announcements:
        return None

    row = await commit(
        backend.update(tables.ANNOUNCEMENTS, announcement.id, {"likes": announcement.likes + 1}),
        operation="like_announcement",
        notice="Failed to like announcement",
    )
    if row is None:
        raise NotFoundError(message="Announcement not found")

    session.liked_announcements.add(announcement.id)
    logger.info("announcement_liked", row_id=announcement.id)
    return Announcement.model_validate(row)
