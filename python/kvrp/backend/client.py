"""Supabase table client abstraction.

Provides a small CRUD interface over the hosted tables:
- Snapshot reads with filter, order and optional limit
- Single-row insert / update / delete by id
- Filtered update / delete / count

Two implementations:
- PostgrestClient: Supabase PostgREST over a shared httpx.AsyncClient
- FakeBackend: in-memory tables that publish change events to a FakeTransport

Rules:
- No retries inside clients
- No logging of row bodies
- Every failure is raised as BackendError with a code; callers translate it
"""

import itertools
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import httpx

from kvrp.backend.filters import matches, order_param, to_query_params
from kvrp.backend.tables import timestamp_column
from kvrp.backend.types import ChangeEvent, ChangeOp, Filter, Order, eq
from kvrp.logging import get_logger

logger = get_logger(__name__)

Row = dict[str, Any]


class BackendError(Exception):
    """Table operation error.

    Attributes:
        message: Human-readable message (never contains row bodies)
        code: E_BACKEND_ERROR | E_BACKEND_TIMEOUT | E_BACKEND_UNAVAILABLE | E_BACKEND_REJECTED
        status_code: HTTP status, when the backend answered
    """

    def __init__(self, message: str, code: str = "E_BACKEND_ERROR", status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class BackendClientBase(ABC):
    """Abstract base class for table client implementations."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        predicate: Filter | None = None,
        order: Order | None = None,
        *,
        limit: int | None = None,
        columns: str = "*",
    ) -> list[Row]:
        """Read all rows matching `predicate`, sorted by `order`.

        Raises:
            BackendError: If the read fails.
        """
        ...

    @abstractmethod
    async def insert(self, collection: str, row: Row) -> Row:
        """Insert one row and return it as stored (with id and timestamps)."""
        ...

    @abstractmethod
    async def update_where(self, collection: str, predicate: Filter, patch: Row) -> list[Row]:
        """Apply `patch` to every matching row and return the updated rows."""
        ...

    @abstractmethod
    async def delete_where(self, collection: str, predicate: Filter) -> list[Row]:
        """Delete every matching row and return the deleted rows."""
        ...

    @abstractmethod
    async def count(self, collection: str, predicate: Filter | None = None) -> int:
        """Count rows matching `predicate`."""
        ...

    async def update(self, collection: str, row_id: str, patch: Row) -> Row | None:
        """Update one row by id. Returns None if no such row exists."""
        rows = await self.update_where(collection, eq("id", row_id), patch)
        return rows[0] if rows else None

    async def delete(self, collection: str, row_id: str) -> None:
        """Delete one row by id. Deleting a missing row is not an error."""
        await self.delete_where(collection, eq("id", row_id))


class PostgrestClient(BackendClientBase):
    """Production Supabase PostgREST client.

    Uses a shared httpx.AsyncClient for connection pooling.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        supabase_url: str,
        api_key: str,
        *,
        access_token: str | None = None,
        timeout_s: float = 15.0,
    ):
        """Initialize the table client.

        Args:
            client: Shared httpx.AsyncClient.
            supabase_url: Supabase project URL.
            api_key: Project anon key.
            access_token: User JWT, when signed in; the anon key otherwise.
            timeout_s: Per-request timeout in seconds.
        """
        self._client = client
        self._rest_url = f"{supabase_url.rstrip('/')}/rest/v1"
        self._timeout = httpx.Timeout(timeout_s, connect=min(timeout_s, 10.0))
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Content-Type": "application/json",
        }

    async def query(
        self,
        collection: str,
        predicate: Filter | None = None,
        order: Order | None = None,
        *,
        limit: int | None = None,
        columns: str = "*",
    ) -> list[Row]:
        params = [("select", columns)]
        params.extend(to_query_params(predicate))
        params.extend(order_param(order))
        if limit is not None:
            params.append(("limit", str(limit)))

        response = await self._send("GET", collection, params=params)
        return response.json()

    async def insert(self, collection: str, row: Row) -> Row:
        response = await self._send(
            "POST",
            collection,
            json=row,
            prefer="return=representation",
        )
        data = response.json()
        if isinstance(data, list):
            if not data:
                raise BackendError(
                    f"Insert into {collection} returned no row", code="E_BACKEND_REJECTED"
                )
            return data[0]
        return data

    async def update_where(self, collection: str, predicate: Filter, patch: Row) -> list[Row]:
        response = await self._send(
            "PATCH",
            collection,
            params=to_query_params(predicate),
            json=patch,
            prefer="return=representation",
        )
        return response.json()

    async def delete_where(self, collection: str, predicate: Filter) -> list[Row]:
        response = await self._send(
            "DELETE",
            collection,
            params=to_query_params(predicate),
            prefer="return=representation",
        )
        if not response.content:
            return []
        return response.json()

    async def count(self, collection: str, predicate: Filter | None = None) -> int:
        params = [("select", "id")]
        params.extend(to_query_params(predicate))
        response = await self._send("HEAD", collection, params=params, prefer="count=exact")
        # Content-Range: "0-9/10" or "*/0"
        content_range = response.headers.get("content-range", "")
        total = content_range.rsplit("/", 1)[-1] if "/" in content_range else ""
        if not total.isdigit():
            raise BackendError(
                f"Count on {collection} returned no total", code="E_BACKEND_ERROR"
            )
        return int(total)

    async def _send(
        self,
        method: str,
        collection: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer

        try:
            response = await self._client.request(
                method,
                f"{self._rest_url}/{collection}",
                params=params,
                json=json,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise BackendError(
                f"{method} {collection} timed out", code="E_BACKEND_TIMEOUT"
            ) from e
        except httpx.HTTPError as e:
            raise BackendError(
                f"{method} {collection} failed: {type(e).__name__}", code="E_BACKEND_UNAVAILABLE"
            ) from e

        if response.status_code >= 400:
            logger.warning(
                "backend_request_rejected",
                method=method,
                collection=collection,
                status_code=response.status_code,
            )
            raise BackendError(
                f"{method} {collection} failed: {response.status_code} {_error_message(response)}",
                code="E_BACKEND_REJECTED" if response.status_code < 500 else "E_BACKEND_ERROR",
                status_code=response.status_code,
            )
        return response


def _error_message(response: httpx.Response) -> str:
    """Extract PostgREST's error message without echoing request data."""
    try:
        body = response.json()
    except ValueError:
        return ""
    if isinstance(body, dict):
        return str(body.get("message") or body.get("code") or "")
    return ""


class FakeBackend(BackendClientBase):
    """In-memory backend for tests and offline development.

    Rows get a uuid id and a strictly increasing creation timestamp unless the
    caller supplies them. Every write publishes a ChangeEvent through
    `publish` (normally FakeTransport.publish) with a commit timestamp.
    """

    def __init__(self, publish: Callable[[ChangeEvent], None] | None = None):
        self._tables: dict[str, dict[str, Row]] = {}
        self._publish = publish
        self._clock = datetime(2024, 1, 1, tzinfo=UTC)
        self._ticks = itertools.count(1)
        self._failures: list[tuple[str, str | None]] = []

    # Test helper methods

    def seed(self, collection: str, *rows: Row) -> list[Row]:
        """Store rows directly without publishing events (test helper)."""
        stored = []
        for row in rows:
            full = self._complete(collection, row)
            self._tables.setdefault(collection, {})[full["id"]] = full
            stored.append(dict(full))
        return stored

    def rows(self, collection: str) -> list[Row]:
        """Return all rows of a table in insertion order (test helper)."""
        return [dict(r) for r in self._tables.get(collection, {}).values()]

    def fail_next(self, method: str, collection: str | None = None) -> None:
        """Make the next `method` call (optionally on one table) raise BackendError."""
        self._failures.append((method, collection))

    def now(self) -> datetime:
        """Advance and return the fake server clock."""
        return self._clock + timedelta(milliseconds=next(self._ticks))

    # BackendClientBase

    async def query(
        self,
        collection: str,
        predicate: Filter | None = None,
        order: Order | None = None,
        *,
        limit: int | None = None,
        columns: str = "*",
    ) -> list[Row]:
        self._maybe_fail("query", collection)
        rows = [dict(r) for r in self._tables.get(collection, {}).values() if matches(predicate, r)]
        if order is not None:
            rows.sort(key=lambda r: _sort_value(r.get(order.column)), reverse=not order.ascending)
        if limit is not None:
            rows = rows[:limit]
        if columns != "*":
            wanted = [c.strip() for c in columns.split(",")]
            rows = [{c: r.get(c) for c in wanted} for r in rows]
        return rows

    async def insert(self, collection: str, row: Row) -> Row:
        self._maybe_fail("insert", collection)
        full = self._complete(collection, row)
        table = self._tables.setdefault(collection, {})
        if full["id"] in table:
            raise BackendError(
                f"Duplicate id in {collection}", code="E_BACKEND_REJECTED", status_code=409
            )
        table[full["id"]] = full
        self._emit(ChangeOp.INSERT, collection, record=full)
        return dict(full)

    async def update_where(self, collection: str, predicate: Filter, patch: Row) -> list[Row]:
        self._maybe_fail("update", collection)
        table = self._tables.get(collection, {})
        updated = []
        for row_id, row in list(table.items()):
            if not matches(predicate, row):
                continue
            new_row = {**row, **patch, "id": row_id}
            table[row_id] = new_row
            self._emit(ChangeOp.UPDATE, collection, record=new_row, old=row)
            updated.append(dict(new_row))
        return updated

    async def delete_where(self, collection: str, predicate: Filter) -> list[Row]:
        self._maybe_fail("delete", collection)
        table = self._tables.get(collection, {})
        deleted = []
        for row_id, row in list(table.items()):
            if not matches(predicate, row):
                continue
            del table[row_id]
            # Realtime only ships the primary key of deleted rows
            self._emit(ChangeOp.DELETE, collection, old={"id": row_id})
            deleted.append(dict(row))
        return deleted

    async def count(self, collection: str, predicate: Filter | None = None) -> int:
        self._maybe_fail("count", collection)
        return sum(1 for r in self._tables.get(collection, {}).values() if matches(predicate, r))

    def _complete(self, collection: str, row: Row) -> Row:
        full = dict(row)
        full["id"] = str(full.get("id") or uuid4())
        ts_column = timestamp_column(collection)
        if not full.get(ts_column):
            full[ts_column] = self.now().isoformat()
        return full

    def _emit(
        self, op: ChangeOp, collection: str, record: Row | None = None, old: Row | None = None
    ):
        if self._publish is None:
            return
        self._publish(
            ChangeEvent(
                op=op,
                collection=collection,
                record=dict(record or {}),
                old=dict(old or {}),
                commit_timestamp=self.now(),
            )
        )

    def _maybe_fail(self, method: str, collection: str) -> None:
        for i, (fail_method, fail_collection) in enumerate(self._failures):
            if fail_method == method and fail_collection in (None, collection):
                del self._failures[i]
                raise BackendError(
                    f"Injected {method} failure on {collection}", code="E_BACKEND_UNAVAILABLE"
                )


def _sort_value(value: Any) -> tuple[int, Any]:
    # None sorts first, like PostgREST's default NULLS FIRST for asc
    if value is None:
        return (0, "")
    return (1, value)
