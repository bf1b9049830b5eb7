"""Tutorial videos: a public list, managed by admins.

Each tutorial links a YouTube video; its thumbnail is derived from the
video id when the tutorial is created.
"""

import re

from kvrp.backend import tables
from kvrp.backend.client import BackendClientBase
from kvrp.config import get_settings
from kvrp.errors import InvalidRequestError, SyncErrorCode
from kvrp.logging import get_logger
from kvrp.schemas.social import Tutorial
from kvrp.services.calls import commit
from kvrp.services.reports import require_admin
from kvrp.session import Session
from kvrp.sync.loader import FeedSource, SnapshotLoader

logger = get_logger(__name__)

TUTORIALS_SOURCE = FeedSource(
    name="tutorials", collection=tables.TUTORIALS, model=Tutorial, ascending=False
)

_YOUTUBE_ID_RE = re.compile(
    r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?)/|.*[?&]v=)|youtu\.be/)([^\"&?/\s]{11})"
)


def extract_youtube_id(url: str) -> str | None:
    """Return the 11-character video id of a YouTube watch, embed or short link."""
    match = _YOUTUBE_ID_RE.search(url)
    return match.group(1) if match else None


def thumbnail_url(video_id: str) -> str:
    return f"https://img.youtube.com/vi/{video_id}/maxresdefault.jpg"


async def list_tutorials(backend: BackendClientBase) -> list[Tutorial]:
    """All tutorials, newest first."""
    loader = SnapshotLoader(backend, timeout_s=get_settings().request_timeout_s)
    return await loader.load(TUTORIALS_SOURCE)


async def create_tutorial(
    backend: BackendClientBase,
    session: Session,
    title: str,
    youtube_url: str,
    description: str = "",
    duration: str = "",
) -> Tutorial:
    """Publish a tutorial.

    Raises:
        ForbiddenError: If the session is not an admin.
        InvalidRequestError: Missing title or URL, or a URL without a video id.
        MutationFailure: The row could not be written.
    """
    require_admin(session)
    title, youtube_url = title.strip(), youtube_url.strip()
    if not title or not youtube_url:
        raise InvalidRequestError(
            SyncErrorCode.E_INVALID_REQUEST, "Title and YouTube URL are required"
        )
    video_id = extract_youtube_id(youtube_url)
    if video_id is None:
        raise InvalidRequestError(SyncErrorCode.E_INVALID_REQUEST, "Invalid YouTube URL")

    row = await commit(
        backend.insert(
            tables.TUTORIALS,
            {
                "title": title,
                "description": description.strip(),
                "youtube_url": youtube_url,
                "thumbnail_url": thumbnail_url(video_id),
                "duration": duration.strip() or "0 min",
            },
        ),
        operation="create_tutorial",
        notice="Failed to create tutorial",
    )
    logger.info("tutorial_created", row_id=row.get("id"))
    return Tutorial.model_validate(row)


async def delete_tutorial(backend: BackendClientBase, session: Session, tutorial_id: str) -> None:
    require_admin(session)
    await commit(
        backend.delete(tables.TUTORIALS, tutorial_id),
        operation="delete_tutorial",
        notice="Failed to delete tutorial",
    )
    logger.info("tutorial_deleted", row_id=tutorial_id)
