"""Tests for friend requests and friend suggestions.

Tests cover:
- Sending requests, including duplicates in either direction (not an error)
- Accepting / declining, and accepting when already friends
- Friend lists without duplicates
- Suggestions drawn from recent activity, excluding self and friends
"""

import pytest

from kvrp.backend import tables
from kvrp.errors import ForbiddenError, InvalidRequestError, LoadFailure, MutationFailure
from kvrp.schemas.social import FriendshipStatus, Notification, NotificationKind
from kvrp.services import friends
from kvrp.services.suggestions import Suggestion, suggest_friends
from kvrp.session import Session


def _request(backend, from_user: str, to_user: str) -> Notification:
    (row,) = backend.seed(
        tables.NOTIFICATIONS,
        {
            "from_user": from_user,
            "to_user": to_user,
            "type": NotificationKind.FRIEND_REQUEST.value,
            "message": f"{from_user} sent you a friend request",
            "read": False,
        },
    )
    return Notification.model_validate(row)


def _friends(backend, a: str, b: str) -> None:
    backend.seed(tables.FRIENDS, {"user1": a, "user2": b, "status": "accepted"})


# =============================================================================
# Requests
# =============================================================================


class TestSendFriendRequest:
    @pytest.mark.asyncio
    async def test_sends_notification(self, backend, session):
        outcome = await friends.send_friend_request(backend, session, " bob ")

        assert outcome is friends.FriendRequestOutcome.SENT
        (row,) = backend.rows(tables.NOTIFICATIONS)
        assert row["from_user"] == "ann"
        assert row["to_user"] == "bob"
        assert row["type"] == "friend_request"
        assert row["message"] == "ann sent you a friend request"
        assert row["read"] is False

    @pytest.mark.asyncio
    async def test_duplicate_request_is_tolerated(self, backend, session):
        await friends.send_friend_request(backend, session, "bob")

        outcome = await friends.send_friend_request(backend, session, "bob")

        assert outcome is friends.FriendRequestOutcome.ALREADY_PENDING
        assert len(backend.rows(tables.NOTIFICATIONS)) == 1

    @pytest.mark.asyncio
    async def test_reverse_request_counts_as_pending(self, backend, session):
        _request(backend, "bob", "ann")

        outcome = await friends.send_friend_request(backend, session, "bob")

        assert outcome is friends.FriendRequestOutcome.ALREADY_PENDING

    @pytest.mark.asyncio
    async def test_already_friends(self, backend, session):
        _friends(backend, "bob", "ann")

        outcome = await friends.send_friend_request(backend, session, "bob")

        assert outcome is friends.FriendRequestOutcome.ALREADY_FRIENDS
        assert backend.rows(tables.NOTIFICATIONS) == []

    @pytest.mark.asyncio
    async def test_self_request_rejected(self, backend, session):
        with pytest.raises(InvalidRequestError):
            await friends.send_friend_request(backend, session, "ann")

    @pytest.mark.asyncio
    async def test_write_failure(self, backend, session):
        backend.fail_next("insert", tables.NOTIFICATIONS)

        with pytest.raises(MutationFailure) as exc_info:
            await friends.send_friend_request(backend, session, "bob")

        assert exc_info.value.message == "Failed to send friend request"

    @pytest.mark.asyncio
    async def test_read_failure(self, backend, session):
        backend.fail_next("query", tables.FRIENDS)

        with pytest.raises(LoadFailure):
            await friends.send_friend_request(backend, session, "bob")


class TestRespondToRequest:
    @pytest.mark.asyncio
    async def test_accept_creates_friendship_and_notifies(self, backend, session):
        request = _request(backend, "bob", "ann")

        friendship = await friends.accept_friend_request(backend, session, request)

        assert {friendship.user1, friendship.user2} == {"ann", "bob"}
        assert friendship.status is FriendshipStatus.ACCEPTED
        notifications = {r["id"]: r for r in backend.rows(tables.NOTIFICATIONS)}
        assert notifications[request.id]["read"] is True
        accepted = [r for r in notifications.values() if r["type"] == "friend_accepted"]
        assert len(accepted) == 1
        assert accepted[0]["to_user"] == "bob"
        assert await friends.are_friends(backend, "bob", "ann")

    @pytest.mark.asyncio
    async def test_accept_when_already_friends(self, backend, session):
        _friends(backend, "ann", "bob")
        request = _request(backend, "bob", "ann")

        await friends.accept_friend_request(backend, session, request)

        assert len(backend.rows(tables.FRIENDS)) == 1
        types = [r["type"] for r in backend.rows(tables.NOTIFICATIONS)]
        assert types == ["friend_request"]

    @pytest.mark.asyncio
    async def test_cannot_accept_someone_elses_request(self, backend):
        request = _request(backend, "bob", "cat")

        with pytest.raises(ForbiddenError):
            await friends.accept_friend_request(backend, Session("ann"), request)

    @pytest.mark.asyncio
    async def test_decline_marks_read(self, backend, session):
        request = _request(backend, "bob", "ann")

        await friends.decline_friend_request(backend, session, request)

        assert backend.rows(tables.NOTIFICATIONS)[0]["read"] is True
        assert backend.rows(tables.FRIENDS) == []
        assert await friends.pending_requests(backend, session) == []

    @pytest.mark.asyncio
    async def test_non_request_notification_rejected(self, backend, session):
        (row,) = backend.seed(
            tables.NOTIFICATIONS,
            {"from_user": "bob", "to_user": "ann", "type": "chat_request", "read": False},
        )

        with pytest.raises(InvalidRequestError):
            await friends.accept_friend_request(backend, session, Notification.model_validate(row))


class TestListing:
    @pytest.mark.asyncio
    async def test_list_friends_deduplicates(self, backend, session):
        _friends(backend, "ann", "bob")
        _friends(backend, "cat", "ann")
        _friends(backend, "bob", "ann")
        backend.seed(tables.FRIENDS, {"user1": "ann", "user2": "dan", "status": "pending"})

        names = await friends.list_friends(backend, session)

        assert names == ["bob", "cat"]

    @pytest.mark.asyncio
    async def test_pending_and_sent(self, backend, session):
        _request(backend, "bob", "ann")
        _request(backend, "ann", "cat")

        pending = await friends.pending_requests(backend, session)
        sent = await friends.sent_requests(backend, session)

        assert [n.from_user for n in pending] == ["bob"]
        assert sent == ["cat"]


# =============================================================================
# Suggestions
# =============================================================================


class TestSuggestions:
    @pytest.mark.asyncio
    async def test_recent_activity_minus_self_and_friends(self, backend, session):
        backend.seed(
            tables.PUBLIC_CHAT,
            {"sender_name": "bob", "message": "1"},
            {"sender_name": "ann", "message": "2"},
            {"sender_name": "cat", "message": "3"},
        )
        backend.seed(tables.POSTS, {"author_name": "dan", "title": "t", "content": "c"})
        backend.seed(tables.REPORTS, {"guest_name": "eve", "type": "Other", "description": "d"})
        _friends(backend, "ann", "bob")
        _request(backend, "ann", "dan")

        suggestions = await suggest_friends(backend, session)

        assert suggestions == [
            Suggestion("cat"),
            Suggestion("dan", request_sent=True),
            Suggestion("eve"),
        ]

    @pytest.mark.asyncio
    async def test_limit(self, backend, session):
        backend.seed(
            tables.PUBLIC_CHAT,
            *({"sender_name": f"user{i}", "message": "x"} for i in range(12)),
        )

        suggestions = await suggest_friends(backend, session)

        assert len(suggestions) == 8
        assert len({s.username for s in suggestions}) == 8

    @pytest.mark.asyncio
    async def test_no_activity(self, backend, session):
        assert await suggest_friends(backend, session) == []
