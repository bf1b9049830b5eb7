"""Community post schemas (posts, post_likes, post_dislikes)."""

from enum import Enum

from pydantic import Field, field_validator

from kvrp.schemas.base import Row


class LikeState(str, Enum):
    """A user's vote on a post. At most one of like/dislike at a time."""

    LIKE = "like"
    DISLIKE = "dislike"
    NONE = "none"


class Post(Row):
    """A community post with authoritative like/dislike counts."""

    author_name: str
    title: str
    content: str
    likes: int = Field(default=0, ge=0)
    dislikes: int = Field(default=0, ge=0)
    image_url: str | None = None

    @field_validator("likes", "dislikes", mode="before")
    @classmethod
    def _clamp_counts(cls, value: object) -> int:
        # Legacy rows written by racing clients can hold negative counts.
        if value is None:
            return 0
        return max(0, int(value))

    @property
    def author(self) -> str:
        return self.author_name


class PostVote(Row):
    """One row of post_likes or post_dislikes."""

    post_id: str
    user_name: str

    @field_validator("post_id", mode="before")
    @classmethod
    def _coerce_post_id(cls, value: object) -> str:
        return str(value)
