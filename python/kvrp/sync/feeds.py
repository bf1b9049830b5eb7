"""Live feeds.

A LiveFeed ties one FeedSource to a reconciled, continuously updated
sequence: it subscribes, loads the snapshot, applies change events and
exposes the front-end callbacks (on_send, on_react, on_delete, on_refresh).

Start-up order:
    The subscription is opened before the snapshot is read. Events that
    arrive while a snapshot load is in flight are buffered and replayed on
    top of the snapshot, so nothing committed during the load is lost.

Failure handling:
    Callbacks never raise SyncError into the front end. They post a notice
    and return False, leaving the feed in its last good state.
    Losing the live subscription posts a notice and clears `live`; the next
    on_refresh() subscribes again before reloading.
"""

import asyncio
from collections.abc import Callable
from functools import partial
from typing import Any, Generic, TypeVar

from kvrp.backend import tables
from kvrp.backend.types import ChangeEvent, eq, pair_filter
from kvrp.clients import Clients
from kvrp.errors import (
    InvalidRequestError,
    LoadFailure,
    SubscriptionFailure,
    SyncError,
    SyncErrorCode,
)
from kvrp.logging import get_logger, set_feed_context, set_session_context
from kvrp.notices import Notifier, notify_failure
from kvrp.schemas.base import Row
from kvrp.schemas.chat import ChatMessage
from kvrp.schemas.posts import LikeState, Post
from kvrp.schemas.social import AdminMessage, Notification, Report
from kvrp.services import friends, moderation, posts, reports
from kvrp.session import Session
from kvrp.sync.dispatcher import (
    ImageUpload,
    Limits,
    MutationDispatcher,
    VoiceClip,
    private_chat_row,
    public_chat_row,
)
from kvrp.sync.listener import ChangeListener
from kvrp.sync.loader import FeedSource, SnapshotLoader
from kvrp.sync.presenter import MessageView, PostView, present_messages, present_posts
from kvrp.sync.reconciler import Reconciler

logger = get_logger(__name__)

RowT = TypeVar("RowT", bound=Row)

ViewObserver = Callable[[], None]


class LiveFeed(Generic[RowT]):
    """A snapshot plus live updates for one FeedSource."""

    def __init__(
        self,
        clients: Clients,
        session: Session,
        source: FeedSource[RowT],
        **dispatcher_options: Any,
    ):
        self.clients = clients
        self.session = session
        self.source = source
        self.reconciler: Reconciler[RowT] = Reconciler(source.model, ascending=source.ascending)
        self.loader = SnapshotLoader(clients.backend, timeout_s=clients.settings.request_timeout_s)
        self.listener = ChangeListener(
            clients.transport, source, self._on_change, on_lost=self._on_subscription_lost
        )
        self.dispatcher = MutationDispatcher(
            clients.backend,
            clients.storage,
            session,
            source,
            self.reconciler,
            bucket=clients.settings.chat_image_bucket,
            limits=Limits.from_settings(clients.settings),
            **dispatcher_options,
        )
        self.live = False
        self.loaded = False
        self._observers: list[ViewObserver] = []
        self._pending: list[ChangeEvent] | None = None
        self._refresh_lock = asyncio.Lock()
        self._closed = False
        self._subscription_lost = False

    @property
    def notifier(self) -> Notifier:
        return self.clients.notifier

    async def start(self) -> None:
        """Subscribe, then load the snapshot. Failures degrade, never raise."""
        set_session_context(self.session.username)
        set_feed_context(self.source.name, self.listener.channel)
        try:
            await self.listener.start()
            self.live = self.listener.active
        except SubscriptionFailure as e:
            notify_failure(self.notifier, e)
        await self.on_refresh()
        logger.info("feed_started", live=self.live, row_count=len(self.reconciler))

    def close(self) -> None:
        """Stop live updates. Synchronous; no observer runs after this returns."""
        self._closed = True
        self.live = False
        self.listener.close()
        self._observers.clear()

    async def __aenter__(self) -> "LiveFeed[RowT]":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def watch(self, observer: ViewObserver) -> Callable[[], None]:
        """Call `observer` after every change to the sequence. Returns an unwatch function."""
        self._observers.append(observer)

        def unwatch() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unwatch

    def records(self) -> list[RowT]:
        return self.reconciler.records()

    def views(self) -> list[Any]:
        return self.records()

    async def on_refresh(self) -> bool:
        """Reload the snapshot. On failure the previous sequence stays.

        A feed whose live subscription was lost subscribes again first.
        """
        if self._subscription_lost and not self._closed:
            await self._resubscribe()
        async with self._refresh_lock:
            self._pending = []
            try:
                records = await self.loader.load(self.source)
            except LoadFailure as e:
                notify_failure(self.notifier, e)
                self._replay_pending()
                return False

            self.reconciler.load_snapshot(records)
            self._replay_pending()
            self.loaded = True

        await self._after_refresh()
        self._publish()
        return True

    async def on_delete(self, record_id: str) -> bool:
        try:
            await self.dispatcher.delete(record_id)
        except SyncError as e:
            notify_failure(self.notifier, e, "Failed to delete")
            return False
        return True

    async def _after_refresh(self) -> None:
        return None

    async def _resubscribe(self) -> None:
        try:
            await self.listener.start()
        except SubscriptionFailure as e:
            notify_failure(self.notifier, e)
            return
        self._subscription_lost = False
        self.live = self.listener.active
        logger.info("feed_resubscribed")

    def _on_subscription_lost(self) -> None:
        if self._closed:
            return
        self.live = False
        self._subscription_lost = True
        notify_failure(self.notifier, SubscriptionFailure())

    def _replay_pending(self) -> None:
        pending, self._pending = self._pending or [], None
        for event in pending:
            self.reconciler.apply(event)

    def _on_change(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        if self._pending is not None:
            self._pending.append(event)
            return
        if self.reconciler.apply(event):
            self._publish()

    def _publish(self) -> None:
        for observer in list(self._observers):
            observer()


class ChatFeed(LiveFeed[ChatMessage]):
    """Public or private chat."""

    def views(self) -> list[MessageView]:
        return present_messages(self.records(), self.session)

    async def on_send(
        self,
        body: str,
        image: ImageUpload | None = None,
        voice: VoiceClip | None = None,
        reply_to: str | None = None,
    ) -> bool:
        """Send a message. Returns False (input should be kept) on failure."""
        try:
            await self.dispatcher.send(body, image=image, voice=voice, reply_to=reply_to)
        except SyncError as e:
            notify_failure(self.notifier, e, "Failed to send message")
            return False
        self.notifier.success("Message sent successfully")
        return True

    async def on_react(self, record_id: str, emoji: str) -> bool:
        try:
            await self.dispatcher.react(record_id, emoji)
        except SyncError as e:
            notify_failure(self.notifier, e, "Failed to add reaction")
            return False
        return True


class PostsFeed(LiveFeed[Post]):
    """Community posts with the session user's votes."""

    def __init__(self, clients: Clients, session: Session, source: FeedSource[Post]):
        super().__init__(clients, session, source)
        self.votes: dict[str, LikeState] = {}
        self._voting: set[str] = set()

    def views(self) -> list[PostView]:
        return present_posts(self.records(), self.votes, self.session)

    async def _after_refresh(self) -> None:
        try:
            self.votes = await posts.fetch_user_votes(self.clients.backend, self.session.username)
        except LoadFailure as e:
            notify_failure(self.notifier, e, "Failed to load your votes")

    async def on_send(self, title: str, content: str, image: ImageUpload | None = None) -> bool:
        try:
            await posts.create_post(
                self.clients.backend, self.clients.storage, self.session, title, content, image
            )
        except SyncError as e:
            notify_failure(self.notifier, e, "Failed to create post")
            return False
        self.notifier.success("Post created successfully!")
        return True

    async def on_vote(self, post_id: str, state: LikeState) -> bool:
        """Set the session user's vote. A second vote on a post still in flight is ignored."""
        if post_id in self._voting:
            logger.debug("vote_ignored", reason="in_flight", post_id=post_id)
            return False
        self._voting.add(post_id)
        try:
            await self.dispatcher.set_like_state(post_id, state)
        except SyncError as e:
            notify_failure(self.notifier, e, "Failed to update vote")
            return False
        finally:
            self._voting.discard(post_id)
        # Vote rows are not watched; the count echo arrives on the post itself.
        if state is LikeState.NONE:
            self.votes.pop(post_id, None)
        else:
            self.votes[post_id] = state
        self._publish()
        return True

    async def on_like(self, post_id: str) -> bool:
        """Toggle a like: liking a liked post removes the like."""
        liked = self.votes.get(post_id) is LikeState.LIKE
        return await self.on_vote(post_id, LikeState.NONE if liked else LikeState.LIKE)

    async def on_dislike(self, post_id: str) -> bool:
        disliked = self.votes.get(post_id) is LikeState.DISLIKE
        return await self.on_vote(post_id, LikeState.NONE if disliked else LikeState.DISLIKE)


class NotificationsFeed(LiveFeed[Notification]):
    """The session user's notifications, with friend-request actions."""

    def _find(self, notification_id: str) -> Notification | None:
        return self.reconciler.get(notification_id)

    async def on_accept(self, notification_id: str) -> bool:
        request = self._find(notification_id)
        if request is None:
            return False
        try:
            await friends.accept_friend_request(self.clients.backend, self.session, request)
        except SyncError as e:
            notify_failure(self.notifier, e, "Failed to accept friend request")
            return False
        self.notifier.success(f"You are now friends with {request.from_user}")
        return True

    async def on_decline(self, notification_id: str) -> bool:
        request = self._find(notification_id)
        if request is None:
            return False
        try:
            await friends.decline_friend_request(self.clients.backend, self.session, request)
        except SyncError as e:
            notify_failure(self.notifier, e, "Failed to reject friend request")
            return False
        return True


class ReportsFeed(LiveFeed[Report]):
    """Reports filed by the session user, or all reports for admins."""

    async def on_close(self, report_id: str) -> bool:
        report = self.reconciler.get(report_id)
        if report is None:
            return False
        try:
            await reports.close_report(self.clients.backend, self.session, report)
        except SyncError as e:
            notify_failure(self.notifier, e, "Failed to close report")
            return False
        return True

    async def on_respond(self, report_id: str, response: str) -> bool:
        try:
            await reports.respond_to_report(self.clients.backend, self.session, report_id, response)
        except SyncError as e:
            notify_failure(self.notifier, e, "Failed to update report")
            return False
        self.notifier.success("Report response saved")
        return True


class AdminMessagesFeed(LiveFeed[AdminMessage]):
    """One user's conversation with the admins."""

    def __init__(
        self, clients: Clients, session: Session, source: FeedSource[AdminMessage], guest_name: str
    ):
        super().__init__(clients, session, source)
        self.guest_name = guest_name

    async def on_send(self, body: str) -> bool:
        try:
            if self.session.is_admin:
                await moderation.send_admin_message(
                    self.clients.backend, self.session, self.guest_name, body
                )
            else:
                await reports.reply_to_admin(self.clients.backend, self.session, body)
        except SyncError as e:
            notify_failure(self.notifier, e, "Failed to send message")
            return False
        return True


# =============================================================================
# Feed factories
# =============================================================================


def public_chat_feed(clients: Clients, session: Session) -> ChatFeed:
    source = FeedSource(
        name="public_chat", collection=tables.PUBLIC_CHAT, model=ChatMessage, ascending=True
    )
    return ChatFeed(
        clients,
        session,
        source,
        row_factory=public_chat_row,
        mute_check=partial(moderation.is_muted, clients.backend),
    )


def private_chat_feed(clients: Clients, session: Session, peer: str) -> ChatFeed:
    """Conversation between the session user and `peer`, both directions."""
    peer = peer.strip()
    if not peer or peer == session.username:
        raise InvalidRequestError(SyncErrorCode.E_INVALID_REQUEST, "You cannot chat with yourself")
    source = FeedSource(
        name="private_chat",
        collection=tables.PRIVATE_CHATS,
        model=ChatMessage,
        predicate=pair_filter("sender_name", "receiver_name", session.username, peer),
        ascending=True,
    )
    return ChatFeed(clients, session, source, row_factory=private_chat_row(peer))


def posts_feed(clients: Clients, session: Session) -> PostsFeed:
    source = FeedSource(name="posts", collection=tables.POSTS, model=Post, ascending=False)
    return PostsFeed(clients, session, source)


def notifications_feed(clients: Clients, session: Session) -> NotificationsFeed:
    source = FeedSource(
        name="notifications",
        collection=tables.NOTIFICATIONS,
        model=Notification,
        predicate=eq("to_user", session.username),
        ascending=False,
    )
    return NotificationsFeed(clients, session, source)


def reports_feed(clients: Clients, session: Session) -> ReportsFeed:
    predicate = None if session.is_admin else eq("guest_name", session.username)
    source = FeedSource("reports", tables.REPORTS, Report, predicate=predicate, ascending=False)
    return ReportsFeed(clients, session, source)


def admin_messages_feed(
    clients: Clients, session: Session, guest_name: str | None = None
) -> AdminMessagesFeed:
    """Admin conversation of `guest_name` (admins) or of the session user."""
    guest = guest_name if session.is_admin else session.username
    if not guest:
        raise InvalidRequestError(SyncErrorCode.E_INVALID_REQUEST, "Pick a user to message")
    source = FeedSource(
        name="admin_messages",
        collection=tables.ADMIN_MESSAGES,
        model=AdminMessage,
        predicate=eq("guest_name", guest),
        ascending=True,
    )
    return AdminMessagesFeed(clients, session, source, guest)
