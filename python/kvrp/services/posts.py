"""Community posts.

Post creation and the per-user vote lookup. Voting itself goes through the
posts feed's MutationDispatcher.set_like_state so that counts and vote rows
are written together.
"""

from kvrp.backend import tables
from kvrp.backend.client import BackendClientBase
from kvrp.backend.types import eq
from kvrp.config import get_settings
from kvrp.errors import InvalidRequestError, SyncErrorCode
from kvrp.logging import get_logger
from kvrp.schemas.posts import LikeState, Post, PostVote
from kvrp.services.calls import commit, fetch
from kvrp.session import Session
from kvrp.storage.client import StorageClientBase
from kvrp.sync.dispatcher import ImageUpload, Limits, upload_image

logger = get_logger(__name__)


async def create_post(
    backend: BackendClientBase,
    storage: StorageClientBase,
    session: Session,
    title: str,
    content: str,
    image: ImageUpload | None = None,
    *,
    limits: Limits | None = None,
) -> Post:
    """Create a post, uploading its image first.

    Raises:
        InvalidRequestError: Missing title or content, content too long or
            image too large.
        UploadFailure: The image upload failed; no post was written.
        MutationFailure: The post could not be written.
    """
    settings = get_settings()
    limits = limits or Limits.from_settings(settings, max_body_chars=settings.max_post_chars)

    title, content = title.strip(), content.strip()
    if not title or not content:
        raise InvalidRequestError(
            SyncErrorCode.E_INVALID_REQUEST, "Please fill in both title and content"
        )
    if len(content) > limits.max_body_chars:
        raise InvalidRequestError(
            SyncErrorCode.E_BODY_TOO_LONG,
            f"Post must be at most {limits.max_body_chars} characters",
        )

    image_url = None
    if image is not None:
        image_url = await upload_image(storage, settings.chat_image_bucket, image, limits)

    row = await commit(
        backend.insert(
            tables.POSTS,
            {
                "author_name": session.username,
                "title": title,
                "content": content,
                "likes": 0,
                "dislikes": 0,
                "image_url": image_url,
            },
        ),
        operation="create_post",
        notice="Failed to create post",
        timeout_s=limits.timeout_s,
    )
    logger.info("post_created", row_id=row.get("id"), content_length=len(content))
    return Post.model_validate(row)


async def fetch_user_votes(backend: BackendClientBase, username: str) -> dict[str, LikeState]:
    """Map post id to the user's vote.

    A post with both a like and a dislike row (left behind by older clients)
    reads as a like.
    """
    mine = eq("user_name", username)
    dislikes = await fetch(backend.query(tables.POST_DISLIKES, mine), operation="fetch_user_votes")
    likes = await fetch(backend.query(tables.POST_LIKES, mine), operation="fetch_user_votes")

    votes: dict[str, LikeState] = {}
    for row in dislikes:
        votes[PostVote.model_validate(row).post_id] = LikeState.DISLIKE
    for row in likes:
        votes[PostVote.model_validate(row).post_id] = LikeState.LIKE
    return votes
