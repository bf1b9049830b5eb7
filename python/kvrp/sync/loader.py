"""Snapshot loading.

A FeedSource names everything needed to read and watch one feed: the table,
its row model, the row predicate and the display direction. SnapshotLoader
does the one-time ordered read.

Failure handling:
- Backend errors, timeouts, malformed predicates and unparseable rows all
  surface as LoadFailure
- No retries; the owning feed's refresh() is the only way to try again
- No pagination: the whole matching set is read
"""

import asyncio
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from pydantic import ValidationError

from kvrp.backend.client import BackendClientBase, BackendError
from kvrp.backend.tables import timestamp_column
from kvrp.backend.types import ALL_OPS, ChangeOp, Filter, Order
from kvrp.errors import LoadFailure
from kvrp.logging import get_logger
from kvrp.schemas.base import Row

logger = get_logger(__name__)

RowT = TypeVar("RowT", bound=Row)


@dataclass(frozen=True)
class FeedSource(Generic[RowT]):
    """What one feed reads and watches.

    Attributes:
        name: Feed name used in logs and channel names (e.g. "public_chat").
        collection: Backend table.
        model: Row schema the table's rows parse into.
        predicate: Row filter shared by the snapshot and the subscription.
        ascending: Display direction by created_at.
        limit: Optional cap on snapshot rows (newest first for descending feeds).
        events: Change types the feed listens for.
    """

    name: str
    collection: str
    model: type[RowT]
    predicate: Filter | None = None
    ascending: bool = True
    limit: int | None = None
    events: tuple[ChangeOp, ...] = field(default=ALL_OPS)

    @property
    def order(self) -> Order:
        return Order(timestamp_column(self.collection), ascending=self.ascending)


class SnapshotLoader:
    """Reads the current rows of a feed in display order."""

    def __init__(self, backend: BackendClientBase, *, timeout_s: float = 15.0):
        self._backend = backend
        self._timeout_s = timeout_s

    async def load(self, source: FeedSource[RowT]) -> list[RowT]:
        """Read and parse all rows matching the source's predicate.

        Raises:
            LoadFailure: If the read fails, times out or returns rows that
                do not parse.
        """
        try:
            raw_rows = await asyncio.wait_for(
                self._backend.query(
                    source.collection, source.predicate, source.order, limit=source.limit
                ),
                timeout=self._timeout_s,
            )
        except BackendError as e:
            logger.warning(
                "snapshot_load_failed", feed=source.name, error_code=e.code, status=e.status_code
            )
            raise LoadFailure() from e
        except asyncio.TimeoutError as e:
            logger.warning("snapshot_load_failed", feed=source.name, error_code="E_TIMEOUT")
            raise LoadFailure() from e
        except (TypeError, ValueError) as e:
            logger.warning("snapshot_load_failed", feed=source.name, error_code="E_BAD_FILTER")
            raise LoadFailure() from e

        try:
            records = [source.model.model_validate(row) for row in raw_rows]
        except ValidationError as e:
            logger.warning(
                "snapshot_load_failed",
                feed=source.name,
                error_code="E_BAD_ROW",
                error_count=e.error_count(),
            )
            raise LoadFailure() from e

        logger.info("snapshot_loaded", feed=source.name, row_count=len(records))
        return records
