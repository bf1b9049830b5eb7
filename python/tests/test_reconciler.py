"""Tests for the Reconciler.

Tests cover:
- Snapshot ordering in both feed directions, with arrival-order tie-breaks
- Idempotent and out-of-order delivery of inserts and updates
- Deletes, tombstones and unknown ids
- Commit-timestamp versioning (later server write wins)
- Ordering invariant across every delivery order of a fixed event set
- Rows that do not parse
"""

import itertools

import pytest

from kvrp.backend import tables
from kvrp.backend.types import ChangeEvent, ChangeOp
from kvrp.schemas.chat import ChatMessage
from kvrp.schemas.posts import Post
from kvrp.sync.reconciler import Reconciler
from tests.factories import (
    chat_message,
    chat_row,
    delete_event,
    insert_event,
    post,
    post_row,
    update_event,
)


@pytest.fixture
def chat() -> Reconciler[ChatMessage]:
    return Reconciler(ChatMessage, ascending=True)


@pytest.fixture
def posts() -> Reconciler[Post]:
    return Reconciler(Post, ascending=False)


# =============================================================================
# Snapshot
# =============================================================================


class TestLoadSnapshot:
    def test_ascending_sorts_oldest_first(self, chat):
        """Snapshot rows are ordered by created_at regardless of input order."""
        chat.load_snapshot([chat_message(2, created=20), chat_message(1, created=10)])

        assert chat.ids() == ["1", "2"]

    def test_descending_sorts_newest_first(self, posts):
        """Descending feeds put the newest row first."""
        posts.load_snapshot([post(1, created=10), post(2, created=20), post(3, created=15)])

        assert posts.ids() == ["2", "3", "1"]

    def test_equal_timestamps_keep_snapshot_order(self, chat):
        """Rows with the same created_at keep the order they arrived in."""
        chat.load_snapshot([chat_message("b", created=5), chat_message("a", created=5)])

        assert chat.ids() == ["b", "a"]

    def test_snapshot_replaces_previous_state(self, chat):
        """A new snapshot discards rows that are no longer present."""
        chat.load_snapshot([chat_message(1), chat_message(2, created=1)])
        chat.load_snapshot([chat_message(3, created=2)])

        assert chat.ids() == ["3"]
        assert "1" not in chat

    def test_snapshot_clears_tombstones(self, chat):
        """An id deleted before a refresh can come back with the next snapshot."""
        chat.load_snapshot([chat_message(1)])
        chat.apply(delete_event(1))

        chat.load_snapshot([chat_message(1)])

        assert chat.ids() == ["1"]

    def test_repeated_id_keeps_last(self, chat):
        """A snapshot repeating an id keeps one row, with the last values."""
        chat.load_snapshot([chat_message(1, message="old"), chat_message(1, message="new")])

        assert len(chat) == 1
        assert chat.get("1").message == "new"


# =============================================================================
# Insert / update
# =============================================================================


class TestInsert:
    def test_insert_lands_in_created_at_position(self, chat):
        """A late-arriving older row is placed by created_at, not appended."""
        chat.load_snapshot([chat_message(1, created=10), chat_message(3, created=30)])

        assert chat.apply(insert_event(chat_row(2, created=20))) is True

        assert chat.ids() == ["1", "2", "3"]

    def test_idempotent_insert(self, chat):
        """Applying the same insert twice yields the same sequence as once."""
        event = insert_event(chat_row(2, created=20), commit=20)
        chat.load_snapshot([chat_message(1, created=10)])

        chat.apply(event)
        once = chat.records()
        changed = chat.apply(event)

        assert changed is False
        assert chat.records() == once

    def test_idempotent_insert_without_commit_timestamp(self, chat):
        """Duplicate delivery without version info still leaves one row."""
        event = insert_event(chat_row(2, created=20))

        chat.apply(event)
        chat.apply(event)

        assert chat.ids() == ["2"]

    def test_insert_of_present_id_overwrites(self, chat):
        """An insert for an id already present replaces it in place."""
        chat.load_snapshot([chat_message(1, message="before")])

        chat.apply(insert_event(chat_row(1, message="after")))

        assert chat.ids() == ["1"]
        assert chat.get("1").message == "after"


class TestUpdate:
    def test_update_replaces_record_in_place(self, chat):
        chat.load_snapshot([chat_message(1, created=10), chat_message(2, created=20)])

        chat.apply(update_event(chat_row(1, created=10, reactions={"👍": ["bob"]})))

        assert chat.ids() == ["1", "2"]
        assert chat.get("1").reactions == {"👍": ("bob",)}

    def test_update_of_absent_id_inserts(self, chat):
        """An update for an unknown id is treated as an insert."""
        chat.load_snapshot([chat_message(1, created=10)])

        assert chat.apply(update_event(chat_row(2, created=5))) is True

        assert chat.ids() == ["2", "1"]

    def test_update_moving_created_at_reorders(self, chat):
        chat.load_snapshot([chat_message(1, created=10), chat_message(2, created=20)])

        chat.apply(update_event(chat_row(1, created=30)))

        assert chat.ids() == ["2", "1"]

    def test_identical_update_reports_no_change(self, chat):
        chat.load_snapshot([chat_message(1)])

        assert chat.apply(update_event(chat_row(1))) is False

    def test_update_before_insert_converges(self):
        """update(X) then insert(X) ends in the same state as insert then update."""
        inserted = insert_event(chat_row(7, created=10, message="hi"), commit=1)
        updated = update_event(
            chat_row(7, created=10, message="hi", reactions={"🔥": ["bob"]}), commit=2
        )

        canonical = Reconciler(ChatMessage)
        canonical.apply(inserted)
        canonical.apply(updated)

        reordered = Reconciler(ChatMessage)
        reordered.apply(updated)
        reordered.apply(inserted)

        assert reordered.records() == canonical.records()
        assert reordered.get("7").reactions == {"🔥": ("bob",)}


# =============================================================================
# Delete
# =============================================================================


class TestDelete:
    def test_delete_removes_row(self, chat):
        chat.load_snapshot([chat_message(1), chat_message(2, created=1)])

        assert chat.apply(delete_event(1)) is True

        assert chat.ids() == ["2"]
        assert chat.get("1") is None

    def test_delete_of_absent_id_is_noop(self, chat):
        """Deleting an id that is not present leaves the sequence unchanged."""
        chat.load_snapshot([chat_message(1), chat_message(2, created=1)])
        before = chat.records()

        assert chat.apply(delete_event("missing")) is False

        assert chat.records() == before

    def test_late_insert_after_delete_is_dropped(self, chat):
        """A stale insert delivered after the delete does not resurrect the row."""
        chat.load_snapshot([chat_message(1)])
        chat.apply(delete_event(1, commit=5))

        assert chat.apply(insert_event(chat_row(1), commit=3)) is False
        assert chat.apply(update_event(chat_row(1, message="edit"), commit=4)) is False

        assert len(chat) == 0

    def test_tombstones_are_capped(self):
        """Deleting many absent ids keeps only the newest tombstones."""
        chat = Reconciler(ChatMessage, ascending=True, max_tombstones=3)

        for row_id in range(1, 6):
            chat.apply(delete_event(row_id))

        assert len(chat._tombstones) == 3
        assert chat.apply(insert_event(chat_row(1))) is True
        assert chat.apply(insert_event(chat_row(5))) is False
        assert chat.ids() == ["1"]


# =============================================================================
# Versioning
# =============================================================================


class TestCommitTimestamps:
    def test_stale_update_is_dropped(self, chat):
        """An update older than the last applied one is ignored."""
        chat.load_snapshot([chat_message(1)])
        chat.apply(update_event(chat_row(1, message="newer"), commit=10))

        assert chat.apply(update_event(chat_row(1, message="older"), commit=5)) is False

        assert chat.get("1").message == "newer"

    def test_reaction_updates_out_of_order_take_latest_commit(self, chat):
        """Add-then-remove delivered as remove-then-add ends with the remove."""
        chat.load_snapshot([chat_message(1, created=0)])
        added = update_event(chat_row(1, reactions={"👍": ["ann"]}), commit=1)
        removed = update_event(chat_row(1, reactions={}), commit=2)

        chat.apply(removed)
        chat.apply(added)

        assert chat.get("1").reactions == {}

    def test_events_without_timestamp_apply_in_delivery_order(self, chat):
        chat.load_snapshot([chat_message(1)])

        chat.apply(update_event(chat_row(1, message="first")))
        chat.apply(update_event(chat_row(1, message="second")))

        assert chat.get("1").message == "second"


# =============================================================================
# Ordering invariant
# =============================================================================


def _first_arrivals(events: list[ChangeEvent]) -> dict[str, int]:
    arrivals: dict[str, int] = {}
    for index, event in enumerate(events):
        arrivals.setdefault(event.row_id, index)
    return arrivals


_EVENTS = [
    insert_event(chat_row("a", created=10, message="a"), commit=1),
    insert_event(chat_row("b", created=5, message="b"), commit=2),
    insert_event(chat_row("c", created=10, message="c"), commit=3),
    update_event(chat_row("a", created=10, message="a2"), commit=4),
    insert_event(chat_row("d", created=1, message="d"), commit=5),
]


class TestOrderingInvariant:
    @pytest.mark.parametrize("ascending", [True, False])
    def test_every_delivery_order_sorts_by_created_at(self, ascending):
        """For every permutation, order is created_at then first arrival."""
        for events in itertools.permutations(_EVENTS):
            reconciler = Reconciler(ChatMessage, ascending=ascending)
            reconciler.load_snapshot([chat_message("s", created=7, message="s")])
            for event in events:
                reconciler.apply(event)

            arrivals = {"s": -1}
            arrivals.update(_first_arrivals(list(events)))
            expected = sorted(
                reconciler.records(),
                key=lambda m: (
                    m.created_at.timestamp() if ascending else -m.created_at.timestamp(),
                    arrivals[m.id],
                ),
            )

            assert reconciler.records() == expected
            assert reconciler.get("a").message == "a2"
            assert len(reconciler) == 5


# =============================================================================
# Scenarios and malformed input
# =============================================================================


class TestScenarios:
    def test_snapshot_insert_delete(self, chat):
        """[1] + insert 2 -> [1, 2]; delete 1 -> [2]."""
        chat.load_snapshot([chat_message(1, created=1, message="hi")])

        chat.apply(insert_event(chat_row(2, created=2, message="yo")))
        assert chat.ids() == ["1", "2"]

        chat.apply(delete_event(1))
        assert chat.ids() == ["2"]

    def test_posts_feed_applies_count_updates(self, posts):
        posts.load_snapshot([post(1, created=1), post(2, created=2)])

        posts.apply(update_event(post_row(1, created=1, likes=3), collection=tables.POSTS))

        assert posts.ids() == ["2", "1"]
        assert posts.get("1").likes == 3


class TestMalformedEvents:
    def test_unparseable_record_is_dropped(self, chat):
        chat.load_snapshot([chat_message(1)])

        event = insert_event({"id": "2", "timestamp": "not a time", "sender_name": "x"})

        assert chat.apply(event) is False
        assert chat.ids() == ["1"]

    def test_event_without_id_is_dropped(self, chat):
        event = ChangeEvent(op=ChangeOp.INSERT, collection=tables.PUBLIC_CHAT, record={})

        assert chat.apply(event) is False
        assert len(chat) == 0

    def test_get_none_returns_none(self, chat):
        assert chat.get(None) is None
