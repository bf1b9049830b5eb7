"""Backend table names and their creation-time columns.

Most tables name the creation column `timestamp`; a few use `created_at`.
Every ordering and every fake-row default goes through `timestamp_column()`.
"""

PUBLIC_CHAT = "public_chat"
PRIVATE_CHATS = "private_chats"
POSTS = "posts"
POST_LIKES = "post_likes"
POST_DISLIKES = "post_dislikes"
REPORTS = "reports"
NOTIFICATIONS = "notifications"
FRIENDS = "friends"
MUTED_USERS = "muted_users"
ADMIN_MESSAGES = "admin_messages"
ANNOUNCEMENTS = "announcements"
TUTORIALS = "tutorials"
USER_BADGES = "user_badges"

_CREATED_AT_TABLES = frozenset({FRIENDS, ANNOUNCEMENTS, TUTORIALS})


def timestamp_column(collection: str) -> str:
    """Return the creation-time column name for a table."""
    return "created_at" if collection in _CREATED_AT_TABLES else "timestamp"
