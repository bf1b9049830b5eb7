"""Session identity.

A Session is the explicit stand-in for the display name the browser used to
keep in local storage. It is created once per front-end session and passed to
every feed and service.
"""

from dataclasses import dataclass, field

from kvrp.errors import InvalidRequestError, SyncErrorCode

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 24

ADMIN_NAME = "admin"


@dataclass
class Session:
    """Identity of the current user.

    Attributes:
        username: Display name written into author columns.
        is_guest: True for guest names without an account.
        is_admin: True once the moderation panel has been unlocked.
        liked_announcements: Announcement ids already liked in this session.
    """

    username: str
    is_guest: bool = True
    is_admin: bool = False
    liked_announcements: set[str] = field(default_factory=set)

    @classmethod
    def admin(cls, username: str = ADMIN_NAME) -> "Session":
        """Session for the moderation panel. The password gate lives in the front end."""
        return cls(username=username, is_guest=False, is_admin=True)

    def is_me(self, name: str | None) -> bool:
        return name is not None and name == self.username


def normalize_display_name(name: str) -> str:
    """Trim and validate a display name.

    Raises:
        InvalidRequestError: If the name is empty or out of bounds.
    """
    trimmed = " ".join(name.split())
    if len(trimmed) < MIN_NAME_LENGTH or len(trimmed) > MAX_NAME_LENGTH:
        raise InvalidRequestError(
            SyncErrorCode.E_INVALID_REQUEST,
            f"Name must be {MIN_NAME_LENGTH}-{MAX_NAME_LENGTH} characters",
        )
    return trimmed


def guest_session(name: str) -> Session:
    """Start a guest session under a validated display name."""
    return Session(username=normalize_display_name(name), is_guest=True)
