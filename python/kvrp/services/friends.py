"""Friend requests and friendships.

Requests are unread `friend_request` notifications; accepting one marks it
read, writes an accepted `friends` row and notifies the requester. Sending a
request that already exists (either direction) or to an existing friend is
not an error: the caller gets an outcome saying what happened.
"""

from enum import Enum

from kvrp.backend import tables
from kvrp.backend.client import BackendClientBase
from kvrp.backend.types import Order, and_, either_filter, eq, or_, pair_filter
from kvrp.errors import ForbiddenError, InvalidRequestError, SyncErrorCode
from kvrp.logging import get_logger
from kvrp.schemas.social import Friendship, FriendshipStatus, Notification, NotificationKind
from kvrp.services.calls import commit, fetch
from kvrp.session import Session

logger = get_logger(__name__)


class FriendRequestOutcome(str, Enum):
    SENT = "sent"
    ALREADY_PENDING = "already_pending"
    ALREADY_FRIENDS = "already_friends"


def _request_between(a: str, b: str):
    return and_(
        or_(
            and_(eq("from_user", a), eq("to_user", b)),
            and_(eq("from_user", b), eq("to_user", a)),
        ),
        eq("type", NotificationKind.FRIEND_REQUEST),
        eq("read", False),
    )


async def are_friends(backend: BackendClientBase, a: str, b: str) -> bool:
    accepted = and_(pair_filter("user1", "user2", a, b), eq("status", FriendshipStatus.ACCEPTED))
    rows = await fetch(
        backend.query(tables.FRIENDS, accepted),
        operation="are_friends",
    )
    return bool(rows)


async def send_friend_request(
    backend: BackendClientBase, session: Session, target: str
) -> FriendRequestOutcome:
    """Send a friend request from the session user to `target`.

    Raises:
        InvalidRequestError: If `target` is empty or the session user.
        LoadFailure: If the existing-state checks fail.
        MutationFailure: If the request cannot be written.
    """
    me = session.username
    target = target.strip()
    if not target or target == me:
        raise InvalidRequestError(SyncErrorCode.E_INVALID_REQUEST, "You cannot befriend yourself")

    if await are_friends(backend, me, target):
        return FriendRequestOutcome.ALREADY_FRIENDS

    pending = await fetch(
        backend.count(tables.NOTIFICATIONS, _request_between(me, target)),
        operation="send_friend_request",
    )
    if pending:
        return FriendRequestOutcome.ALREADY_PENDING

    await commit(
        backend.insert(
            tables.NOTIFICATIONS,
            {
                "from_user": me,
                "to_user": target,
                "type": NotificationKind.FRIEND_REQUEST.value,
                "message": f"{me} sent you a friend request",
                "read": False,
            },
        ),
        operation="send_friend_request",
        notice="Failed to send friend request",
    )
    logger.info("friend_request_sent")
    return FriendRequestOutcome.SENT


def _check_incoming(session: Session, request: Notification) -> None:
    if request.type is not NotificationKind.FRIEND_REQUEST:
        raise InvalidRequestError(SyncErrorCode.E_INVALID_REQUEST, "Not a friend request")
    if request.to_user != session.username:
        raise ForbiddenError(message="This friend request is not addressed to you")


async def accept_friend_request(
    backend: BackendClientBase, session: Session, request: Notification
) -> Friendship:
    """Accept an incoming friend request.

    Accepting a request from someone who is already a friend only marks the
    request read.
    """
    _check_incoming(session, request)
    me, requester = session.username, request.from_user

    await commit(
        backend.update(tables.NOTIFICATIONS, request.id, {"read": True}),
        operation="accept_friend_request",
    )

    existing = await fetch(
        backend.query(
            tables.FRIENDS,
            and_(
                pair_filter("user1", "user2", me, requester),
                eq("status", FriendshipStatus.ACCEPTED),
            ),
        ),
        operation="accept_friend_request",
    )
    if existing:
        return Friendship.model_validate(existing[0])

    row = await commit(
        backend.insert(
            tables.FRIENDS,
            {"user1": me, "user2": requester, "status": FriendshipStatus.ACCEPTED.value},
        ),
        operation="accept_friend_request",
        notice="Failed to accept friend request",
    )
    await commit(
        backend.insert(
            tables.NOTIFICATIONS,
            {
                "from_user": me,
                "to_user": requester,
                "type": NotificationKind.FRIEND_ACCEPTED.value,
                "message": f"{me} accepted your friend request",
                "read": False,
            },
        ),
        operation="accept_friend_request",
    )
    logger.info("friend_request_accepted", row_id=row.get("id"))
    return Friendship.model_validate(row)


async def decline_friend_request(
    backend: BackendClientBase, session: Session, request: Notification
) -> None:
    """Decline an incoming friend request by marking it read."""
    _check_incoming(session, request)
    await commit(
        backend.update(tables.NOTIFICATIONS, request.id, {"read": True}),
        operation="decline_friend_request",
        notice="Failed to reject friend request",
    )
    logger.info("friend_request_declined", row_id=request.id)


async def list_friends(backend: BackendClientBase, session: Session) -> list[str]:
    """Names of accepted friends, most recent friendship first, without duplicates."""
    me = session.username
    rows = await fetch(
        backend.query(
            tables.FRIENDS,
            and_(either_filter("user1", "user2", me), eq("status", FriendshipStatus.ACCEPTED)),
            Order(tables.timestamp_column(tables.FRIENDS), ascending=False),
        ),
        operation="list_friends",
        notice="Failed to load friends",
    )
    names: dict[str, None] = {}
    for row in rows:
        other = Friendship.model_validate(row).other(me)
        if other != me:
            names.setdefault(other, None)
    return list(names)


async def pending_requests(backend: BackendClientBase, session: Session) -> list[Notification]:
    """Unread friend requests addressed to the session user, newest first."""
    rows = await fetch(
        backend.query(
            tables.NOTIFICATIONS,
            and_(
                eq("to_user", session.username),
                eq("type", NotificationKind.FRIEND_REQUEST),
                eq("read", False),
            ),
            Order(tables.timestamp_column(tables.NOTIFICATIONS), ascending=False),
        ),
        operation="pending_requests",
    )
    return [Notification.model_validate(r) for r in rows]


async def sent_requests(backend: BackendClientBase, session: Session) -> list[str]:
    """Names the session user has unanswered requests out to."""
    rows = await fetch(
        backend.query(
            tables.NOTIFICATIONS,
            and_(
                eq("from_user", session.username),
                eq("type", NotificationKind.FRIEND_REQUEST),
                eq("read", False),
            ),
        ),
        operation="sent_requests",
    )
    return list(dict.fromkeys(r["to_user"] for r in rows))
