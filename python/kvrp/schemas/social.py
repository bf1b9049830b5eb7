"""Schemas for reports, notifications, friendships, moderation and site content.

Enum values must match what the backend tables already hold.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, field_validator

from kvrp.schemas.base import Row


class ReportStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class NotificationKind(str, Enum):
    FRIEND_REQUEST = "friend_request"
    FRIEND_ACCEPTED = "friend_accepted"
    CHAT_REQUEST = "chat_request"


class FriendshipStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class Report(Row):
    """A user report with an optional admin response.

    Older rows have a NULL status; those are open.
    """

    guest_name: str
    type: str
    description: str
    screenshot_url: str | None = None
    status: ReportStatus = ReportStatus.OPEN
    admin_response: str | None = None
    admin_response_timestamp: datetime | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, value: object) -> object:
        return ReportStatus.OPEN if value in (None, "") else value

    @property
    def author(self) -> str:
        return self.guest_name

    @property
    def has_response(self) -> bool:
        return bool(self.admin_response)


class Notification(Row):
    from_user: str
    to_user: str
    type: NotificationKind
    message: str = ""
    read: bool = False

    @property
    def author(self) -> str:
        return self.from_user


class Friendship(Row):
    user1: str
    user2: str
    status: FriendshipStatus = FriendshipStatus.PENDING

    def other(self, username: str) -> str:
        """Return the member of the pair that is not `username`."""
        return self.user2 if self.user1 == username else self.user1

    def involves(self, username: str) -> bool:
        return username in (self.user1, self.user2)


class MutedUser(Row):
    username: str
    muted_by: str
    reason: str | None = None


class AdminMessage(Row):
    guest_name: str
    message: str
    sender_type: str = "admin"  # "admin" | "user"

    @property
    def author(self) -> str:
        return "admin" if self.sender_type == "admin" else self.guest_name


class Announcement(Row):
    author: str = "admin"
    title: str
    content: str
    image_url: str | None = None
    likes: int = 0


class Tutorial(Row):
    title: str
    description: str = ""
    youtube_url: str
    thumbnail_url: str
    duration: str = "0 min"


class UserBadges(BaseModel):
    """Badges shown next to a user's name. A user without a badges row has none."""

    staff: bool = False
    verified: bool = False
    bot: bool = False

    @field_validator("staff", "verified", "bot", mode="before")
    @classmethod
    def _null_is_false(cls, value: object) -> object:
        return False if value is None else value
