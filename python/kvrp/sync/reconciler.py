"""Id-keyed merge of snapshot rows and change events.

A Reconciler holds one feed's ordered sequence of rows. It is owned by exactly
one LiveFeed and mutated only from that feed's handlers on the event loop.

Ordering:
    The sequence always equals sorting by created_at in the feed direction
    (ascending for chats, descending for posts/reports/notifications). Rows
    with equal created_at keep arrival order, earliest arrival first.

Versioning:
    Each change event may carry the server commit timestamp. The reconciler
    remembers the last applied commit timestamp per id and a tombstone per
    deleted id, and drops events that are older than what it already applied.
    Merging is therefore idempotent under duplicate delivery and converges
    under reordered delivery. Events without a commit timestamp are applied
    in delivery order.

    At most `max_tombstones` tombstones are kept, oldest evicted first. An
    insert for an evicted id that arrives after its delete applies again.
"""

import itertools
from bisect import bisect_left, insort
from collections import OrderedDict
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime, timedelta
from typing import Generic, TypeVar

from pydantic import ValidationError

from kvrp.backend.types import ChangeEvent, ChangeOp
from kvrp.logging import get_logger
from kvrp.schemas.base import Row

logger = get_logger(__name__)

RowT = TypeVar("RowT", bound=Row)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

SortKey = tuple[int, int]

DEFAULT_MAX_TOMBSTONES = 1024


def _epoch_micros(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return (value - _EPOCH) // timedelta(microseconds=1)


class Reconciler(Generic[RowT]):
    """Ordered, de-duplicated sequence of rows keyed by id."""

    def __init__(
        self,
        model: type[RowT],
        *,
        ascending: bool = True,
        max_tombstones: int = DEFAULT_MAX_TOMBSTONES,
    ):
        self.model = model
        self.ascending = ascending
        self._rows: dict[str, RowT] = {}
        self._keys: dict[str, SortKey] = {}
        self._order: list[tuple[SortKey, str]] = []
        self._arrivals = itertools.count()
        self._versions: dict[str, datetime] = {}
        self._max_tombstones = max_tombstones
        # Insertion-ordered so the oldest tombstone is evicted first.
        self._tombstones: OrderedDict[str, None] = OrderedDict()

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[RowT]:
        return iter(self.records())

    def __contains__(self, row_id: object) -> bool:
        return row_id in self._rows

    def records(self) -> list[RowT]:
        """Current sequence in display order."""
        return [self._rows[row_id] for _, row_id in self._order]

    def ids(self) -> list[str]:
        return [row_id for _, row_id in self._order]

    def get(self, row_id: str | None) -> RowT | None:
        """Look up a row by id. Missing ids return None."""
        if row_id is None:
            return None
        return self._rows.get(str(row_id))

    def load_snapshot(self, records: Iterable[RowT]) -> None:
        """Replace the sequence wholesale and forget all version bookkeeping.

        Snapshot position is the arrival order for rows with equal created_at.
        A snapshot that repeats an id keeps the last occurrence.
        """
        self._rows.clear()
        self._keys.clear()
        self._order.clear()
        self._versions.clear()
        self._tombstones.clear()
        for record in records:
            self._put(record)

    def apply(self, event: ChangeEvent) -> bool:
        """Merge one change event.

        Returns:
            True if the sequence changed.
        """
        row_id = event.row_id
        if row_id is None:
            logger.debug("change_event_dropped", reason="missing_id", op=event.op.value)
            return False

        if self._is_stale(row_id, event):
            logger.debug("change_event_dropped", reason="stale", op=event.op.value, row_id=row_id)
            return False

        if event.op is ChangeOp.DELETE:
            self._bury(row_id)
            self._versions.pop(row_id, None)
            return self._remove(row_id)

        try:
            record = self.model.model_validate(event.record)
        except ValidationError as e:
            logger.warning(
                "change_event_dropped",
                reason="unparseable",
                op=event.op.value,
                row_id=row_id,
                error_count=e.error_count(),
            )
            return False

        if event.commit_timestamp is not None:
            self._versions[row_id] = event.commit_timestamp

        # INSERT of a present id and UPDATE of an absent id both land here:
        # the row is written at its created_at position either way.
        if self._rows.get(row_id) == record:
            return False
        self._put(record)
        return True

    def _is_stale(self, row_id: str, event: ChangeEvent) -> bool:
        if row_id in self._tombstones:
            return True
        if event.commit_timestamp is None:
            return False
        applied = self._versions.get(row_id)
        return applied is not None and event.commit_timestamp <= applied

    def _bury(self, row_id: str) -> None:
        self._tombstones[row_id] = None
        self._tombstones.move_to_end(row_id)
        while len(self._tombstones) > self._max_tombstones:
            self._tombstones.popitem(last=False)

    def _sort_key(self, record: RowT, arrival: int) -> SortKey:
        micros = _epoch_micros(record.created_at)
        return (micros if self.ascending else -micros, arrival)

    def _put(self, record: RowT) -> None:
        row_id = record.id
        existing = self._keys.get(row_id)
        if existing is not None:
            arrival = existing[1]
            key = self._sort_key(record, arrival)
            self._rows[row_id] = record
            if key == existing:
                return
            self._order.pop(bisect_left(self._order, (existing, row_id)))
        else:
            key = self._sort_key(record, next(self._arrivals))
            self._rows[row_id] = record
        self._keys[row_id] = key
        insort(self._order, (key, row_id))

    def _remove(self, row_id: str) -> bool:
        key = self._keys.pop(row_id, None)
        if key is None:
            return False
        del self._rows[row_id]
        self._order.pop(bisect_left(self._order, (key, row_id)))
        return True
