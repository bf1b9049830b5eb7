"""Realtime change-feed transport.

A transport delivers ChangeEvents for one table (optionally narrowed by a
single `column=eq.value` filter) to a synchronous callback on the asyncio
loop. Callbacks run to completion one at a time.

Teardown contract:
- unsubscribe() is synchronous and takes effect immediately: once it returns,
  the subscription's callback is never invoked again, even for a frame that
  was already read off the socket.
- Any network-side cleanup (phx_leave) is scheduled, never awaited.

Connection loss:
- When the connection drops, every open subscription is marked inactive and
  its `on_lost` callback runs once.
- PhoenixRealtimeTransport logs a change callback that raises and keeps
  reading, so one failing feed cannot starve the others on the socket.

Implementations:
- PhoenixRealtimeTransport: Supabase Realtime (Phoenix channels over websockets)
- FakeTransport: in-process fan-out for tests and the FakeBackend
"""

import asyncio
import itertools
import json
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ValidationError
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import WebSocketException

from kvrp.backend.types import ALL_OPS, ChangeEvent, ChangeOp
from kvrp.errors import SubscriptionFailure
from kvrp.logging import get_logger

logger = get_logger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]
LostCallback = Callable[[], None]


class Subscription:
    """Handle for one open channel subscription."""

    def __init__(
        self,
        channel: str,
        collection: str,
        row_filter: str | None,
        events: Iterable[ChangeOp],
        callback: ChangeCallback,
        on_lost: LostCallback | None = None,
    ):
        self.channel = channel
        self.collection = collection
        self.row_filter = row_filter
        self.events = frozenset(events)
        self._callback = callback
        self._on_lost = on_lost
        self.active = True

    def deliver(self, event: ChangeEvent) -> bool:
        """Invoke the callback if still active and the event is wanted.

        Returns:
            True if the callback ran.
        """
        if not self.active:
            return False
        if event.collection != self.collection or event.op not in self.events:
            return False
        if not _row_filter_matches(self.row_filter, event.values):
            return False
        self._callback(event)
        return True

    def cancel(self) -> None:
        self.active = False

    def lose(self) -> None:
        """Mark the subscription dead because its connection dropped.

        Runs `on_lost` once. A cancelled subscription is not notified.
        """
        if not self.active:
            return
        self.active = False
        if self._on_lost is not None:
            self._on_lost()


def _row_filter_matches(row_filter: str | None, values: dict[str, Any]) -> bool:
    """Evaluate a Realtime `column=eq.value` filter against row values.

    DELETE events only carry the primary key, so a filter on another column
    cannot be evaluated; those events pass and the listener narrows them.
    """
    if not row_filter:
        return True
    column, _, rest = row_filter.partition("=")
    op, _, expected = rest.partition(".")
    if op != "eq":
        return True
    if column not in values:
        return True
    actual = values[column]
    if isinstance(actual, bool):
        actual = "true" if actual else "false"
    return str(actual) == expected


class RealtimeTransportBase(ABC):
    """Abstract base class for realtime transports."""

    @abstractmethod
    async def subscribe(
        self,
        channel: str,
        collection: str,
        *,
        row_filter: str | None = None,
        events: Iterable[ChangeOp] = ALL_OPS,
        callback: ChangeCallback,
        on_lost: LostCallback | None = None,
    ) -> Subscription:
        """Open a subscription and wait until the backend confirms it.

        `on_lost` runs if the subscription later dies with its connection.

        Raises:
            SubscriptionFailure: If the channel cannot be joined.
        """
        ...

    @abstractmethod
    def unsubscribe(self, subscription: Subscription) -> None:
        """Tear down a subscription. Synchronous; effective immediately."""
        ...

    async def close(self) -> None:
        """Release transport resources."""
        return None


class FakeTransport(RealtimeTransportBase):
    """In-process transport.

    `publish` fans an event out synchronously to every active subscription.
    `hold()` switches to buffered mode so tests can reorder or duplicate
    events before `flush()`/`deliver()`.
    """

    def __init__(self):
        self._subscriptions: list[Subscription] = []
        self._held: list[ChangeEvent] | None = None
        self.fail_subscribe = False

    async def subscribe(
        self,
        channel: str,
        collection: str,
        *,
        row_filter: str | None = None,
        events: Iterable[ChangeOp] = ALL_OPS,
        callback: ChangeCallback,
        on_lost: LostCallback | None = None,
    ) -> Subscription:
        if self.fail_subscribe:
            raise SubscriptionFailure()
        subscription = Subscription(channel, collection, row_filter, events, callback, on_lost)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.cancel()
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: ChangeEvent) -> None:
        if self._held is not None:
            self._held.append(event)
            return
        self.deliver(event)

    def deliver(self, event: ChangeEvent) -> int:
        """Deliver one event now, bypassing any hold. Returns callbacks run."""
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.deliver(event):
                delivered += 1
        return delivered

    # Test helper methods

    def hold(self) -> None:
        """Buffer published events instead of delivering them."""
        self._held = []

    def held(self) -> list[ChangeEvent]:
        return list(self._held or [])

    def flush(self) -> None:
        """Deliver buffered events in publish order and stop buffering."""
        held, self._held = self._held or [], None
        for event in held:
            self.deliver(event)

    def drop_connection(self) -> None:
        """Lose every open subscription, as a dropped socket would."""
        lost, self._subscriptions = self._subscriptions, []
        for subscription in lost:
            subscription.lose()

    @property
    def active_subscriptions(self) -> list[Subscription]:
        return [s for s in self._subscriptions if s.active]


class PhoenixMessage(BaseModel):
    """Phoenix channel frame (v1 JSON serializer)."""

    topic: str
    event: str
    payload: dict[str, Any] = {}
    ref: str | None = None


class PhoenixRealtimeTransport(RealtimeTransportBase):
    """Supabase Realtime transport over a single websocket.

    One connection is shared by every subscription. A reader task routes
    `postgres_changes` frames by topic; a heartbeat task keeps the socket
    alive. A dropped connection is not re-established: the socket is closed,
    every open subscription is lost (its `on_lost` runs) and affected feeds
    keep their last state until the user refreshes.
    """

    def __init__(
        self,
        realtime_url: str,
        api_key: str,
        *,
        heartbeat_s: float = 25.0,
        join_timeout_s: float = 10.0,
    ):
        self._url = f"{realtime_url}?apikey={api_key}&vsn=1.0.0"
        self._api_key = api_key
        self._heartbeat_s = heartbeat_s
        self._join_timeout_s = join_timeout_s
        self._ws: ClientConnection | None = None
        self._connect_lock = asyncio.Lock()
        self._refs = itertools.count(1)
        self._by_topic: dict[str, Subscription] = {}
        self._pending_replies: dict[str, asyncio.Future] = {}
        self._reader: asyncio.Task | None = None
        self._heartbeat: asyncio.Task | None = None

    async def subscribe(
        self,
        channel: str,
        collection: str,
        *,
        row_filter: str | None = None,
        events: Iterable[ChangeOp] = ALL_OPS,
        callback: ChangeCallback,
        on_lost: LostCallback | None = None,
    ) -> Subscription:
        subscription = Subscription(channel, collection, row_filter, events, callback, on_lost)
        topic = f"realtime:{channel}"

        change_config: dict[str, Any] = {"event": "*", "schema": "public", "table": collection}
        if row_filter:
            change_config["filter"] = row_filter

        try:
            await self._ensure_connected()
            self._by_topic[topic] = subscription
            reply = await self._request(
                topic,
                "phx_join",
                {
                    "config": {
                        "broadcast": {"self": False},
                        "presence": {"key": ""},
                        "postgres_changes": [change_config],
                    },
                    "access_token": self._api_key,
                },
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            self._by_topic.pop(topic, None)
            logger.warning("realtime_join_failed", channel=channel, error=type(e).__name__)
            raise SubscriptionFailure() from e

        if reply.get("status") != "ok":
            self._by_topic.pop(topic, None)
            logger.warning("realtime_join_rejected", channel=channel, status=reply.get("status"))
            raise SubscriptionFailure()

        logger.info("realtime_joined", channel=channel, collection=collection)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.cancel()
        topic = f"realtime:{subscription.channel}"
        if self._by_topic.get(topic) is subscription:
            del self._by_topic[topic]
        if self._ws is not None:
            leave = PhoenixMessage(topic=topic, event="phx_leave", ref=str(next(self._refs)))
            asyncio.get_running_loop().create_task(self._send_quietly(leave))

    async def close(self) -> None:
        for subscription in list(self._by_topic.values()):
            subscription.cancel()
        self._by_topic.clear()
        for task in (self._heartbeat, self._reader):
            if task is not None:
                task.cancel()
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def _ensure_connected(self) -> None:
        async with self._connect_lock:
            if self._ws is not None:
                return
            self._ws = await connect(self._url)
            self._reader = asyncio.create_task(self._read_loop())
            self._heartbeat = asyncio.create_task(self._heartbeat_loop())

    async def _request(self, topic: str, event: str, payload: dict[str, Any]) -> dict[str, Any]:
        ref = str(next(self._refs))
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_replies[ref] = future
        try:
            await self._send(PhoenixMessage(topic=topic, event=event, payload=payload, ref=ref))
            return await asyncio.wait_for(future, timeout=self._join_timeout_s)
        finally:
            self._pending_replies.pop(ref, None)

    async def _send(self, message: PhoenixMessage) -> None:
        if self._ws is None:
            raise ConnectionError("Realtime socket is not connected")
        await self._ws.send(message.model_dump_json())

    async def _send_quietly(self, message: PhoenixMessage) -> None:
        try:
            await self._send(message)
        except (OSError, WebSocketException, ConnectionError) as e:
            logger.debug("realtime_send_failed", event=message.event, error=type(e).__name__)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_s)
            await self._send_quietly(
                PhoenixMessage(topic="phoenix", event="heartbeat", ref=str(next(self._refs)))
            )

    async def _read_loop(self) -> None:
        ws = self._ws
        assert ws is not None
        try:
            async for raw in ws:
                self._handle_frame(raw)
            logger.warning("realtime_connection_closed", code=ws.close_code)
        except WebSocketException as e:
            logger.warning("realtime_connection_lost", error=type(e).__name__)
        finally:
            self._connection_lost(ws)
            await ws.close()

    def _connection_lost(self, ws: ClientConnection) -> None:
        for future in self._pending_replies.values():
            if not future.done():
                future.set_exception(ConnectionError("Realtime socket closed"))
        if self._ws is ws:
            self._ws = None
        if self._heartbeat is not None:
            self._heartbeat.cancel()

        lost = list(self._by_topic.values())
        self._by_topic.clear()
        for subscription in lost:
            try:
                subscription.lose()
            except Exception:
                logger.exception("realtime_lost_callback_failed", channel=subscription.channel)
        if lost:
            logger.warning("realtime_subscriptions_lost", count=len(lost))

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            message = PhoenixMessage.model_validate(json.loads(raw))
        except (ValueError, ValidationError):
            logger.debug("realtime_frame_unparseable")
            return

        if message.event == "phx_reply" and message.ref in self._pending_replies:
            future = self._pending_replies[message.ref]
            if not future.done():
                future.set_result(message.payload)
            return

        if message.event != "postgres_changes":
            return

        subscription = self._by_topic.get(message.topic)
        if subscription is None:
            return

        event = parse_postgres_change(message.payload)
        if event is None:
            return
        try:
            subscription.deliver(event)
        except Exception:
            logger.exception(
                "realtime_callback_failed", channel=subscription.channel, op=event.op.value
            )


def parse_postgres_change(payload: dict[str, Any]) -> ChangeEvent | None:
    """Convert a Realtime `postgres_changes` payload into a ChangeEvent."""
    data = payload.get("data") or {}
    try:
        op = ChangeOp(data.get("type") or data.get("eventType"))
    except ValueError:
        return None

    commit = data.get("commit_timestamp")
    commit_timestamp = None
    if commit:
        try:
            commit_timestamp = datetime.fromisoformat(commit.replace("Z", "+00:00"))
        except ValueError:
            commit_timestamp = None

    return ChangeEvent(
        op=op,
        collection=data.get("table", ""),
        record=data.get("record") or {},
        old=data.get("old_record") or {},
        commit_timestamp=commit_timestamp,
    )
