"""Pydantic row schemas.

All schemas are re-exported here for convenient imports.
"""

from kvrp.schemas.base import Row
from kvrp.schemas.chat import ChatMessage, ReactionMap, normalize_reactions, reactions_payload
from kvrp.schemas.posts import LikeState, Post, PostVote
from kvrp.schemas.social import (
    AdminMessage,
    Announcement,
    Friendship,
    FriendshipStatus,
    MutedUser,
    Notification,
    NotificationKind,
    Report,
    ReportStatus,
    Tutorial,
    UserBadges,
)

__all__ = [
    "Row",
    # Chat
    "ChatMessage",
    "ReactionMap",
    "normalize_reactions",
    "reactions_payload",
    # Posts
    "Post",
    "PostVote",
    "LikeState",
    # Social / moderation
    "Report",
    "ReportStatus",
    "Notification",
    "NotificationKind",
    "Friendship",
    "FriendshipStatus",
    "MutedUser",
    "AdminMessage",
    "Announcement",
    # Site content
    "Tutorial",
    "UserBadges",
]
