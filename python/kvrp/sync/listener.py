"""Change event listener.

Binds one FeedSource to one realtime subscription and forwards matching
change events to a handler. The transport can only narrow by a single
equality filter; the listener evaluates the full predicate client-side
before the handler sees an event.
"""

from collections.abc import Callable
from uuid import uuid4

from kvrp.backend.filters import matches, realtime_filter
from kvrp.backend.realtime import RealtimeTransportBase, Subscription
from kvrp.backend.types import ChangeEvent, ChangeOp
from kvrp.errors import SubscriptionFailure
from kvrp.logging import get_logger
from kvrp.sync.loader import FeedSource

logger = get_logger(__name__)

ChangeHandler = Callable[[ChangeEvent], None]
LostHandler = Callable[[], None]


class ChangeListener:
    """One live subscription for one feed.

    close() is synchronous and final: after it returns the handler is never
    called again, including for an event the transport is already delivering.

    If the transport loses the subscription, `on_lost` runs once and the
    listener becomes inactive; start() may then be called again.
    """

    def __init__(
        self,
        transport: RealtimeTransportBase,
        source: FeedSource,
        handler: ChangeHandler,
        *,
        channel: str | None = None,
        on_lost: LostHandler | None = None,
    ):
        self._transport = transport
        self._source = source
        self._handler = handler
        self._lost_handler = on_lost
        self.channel = channel or f"{source.name}-{uuid4().hex[:8]}"
        self._subscription: Subscription | None = None
        self._closed = False

    @property
    def active(self) -> bool:
        return self._subscription is not None and not self._closed

    async def start(self) -> None:
        """Open the subscription.

        Raises:
            SubscriptionFailure: If the channel cannot be joined.
        """
        if self._closed:
            raise SubscriptionFailure("Listener already closed")
        if self._subscription is not None:
            return

        try:
            subscription = await self._transport.subscribe(
                self.channel,
                self._source.collection,
                row_filter=realtime_filter(self._source.predicate),
                events=self._source.events,
                callback=self._on_event,
                on_lost=self._on_lost,
            )
        except SubscriptionFailure:
            logger.warning("subscription_failed", feed=self._source.name, channel=self.channel)
            raise

        # close() may have run while the join was in flight
        if self._closed:
            self._transport.unsubscribe(subscription)
            return
        self._subscription = subscription
        logger.info("subscription_started", feed=self._source.name, channel=self.channel)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            self._transport.unsubscribe(self._subscription)
            self._subscription = None
            logger.info("subscription_closed", feed=self._source.name, channel=self.channel)

    def _on_lost(self) -> None:
        # A join still in flight fails on its own; only a live subscription is lost.
        if self._closed or self._subscription is None:
            return
        self._subscription = None
        logger.warning("subscription_lost", feed=self._source.name, channel=self.channel)
        if self._lost_handler is not None:
            self._lost_handler()

    def _on_event(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        # Deleted rows only carry their id; the reconciler ignores unknown ids.
        if event.op is not ChangeOp.DELETE and not matches(self._source.predicate, event.record):
            logger.debug(
                "change_event_filtered",
                feed=self._source.name,
                op=event.op.value,
                row_id=event.row_id,
            )
            return
        self._handler(event)
