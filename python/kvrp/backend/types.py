"""Shared type definitions for the backend layer.

- Eq / Gte / And / Or: row predicates (equality or lower bound, optionally combined)
- Order: sort key and direction for snapshot reads
- ChangeOp / ChangeEvent: one realtime change notification

Predicate invariants:
- Column names are lowercase identifiers
- And/Or hold at least one term
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

_COLUMN_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


@dataclass(frozen=True)
class Eq:
    """Equality condition on one column."""

    column: str
    value: Any

    def __post_init__(self):
        if not _COLUMN_RE.match(self.column):
            raise ValueError(f"Invalid column name in filter: {self.column!r}")


@dataclass(frozen=True)
class Gte:
    """Lower bound (inclusive) on one column."""

    column: str
    value: Any

    def __post_init__(self):
        if not _COLUMN_RE.match(self.column):
            raise ValueError(f"Invalid column name in filter: {self.column!r}")


@dataclass(frozen=True)
class And:
    """All terms must hold."""

    terms: tuple["Filter", ...]

    def __post_init__(self):
        if not self.terms:
            raise ValueError("And() needs at least one term")


@dataclass(frozen=True)
class Or:
    """At least one term must hold."""

    terms: tuple["Filter", ...]

    def __post_init__(self):
        if not self.terms:
            raise ValueError("Or() needs at least one term")


Filter = Union[Eq, Gte, And, Or]


def eq(column: str, value: Any) -> Eq:
    return Eq(column, value)


def gte(column: str, value: Any) -> Gte:
    return Gte(column, value)


def and_(*terms: Filter) -> And:
    return And(tuple(terms))


def or_(*terms: Filter) -> Or:
    return Or(tuple(terms))


def pair_filter(left: str, right: str, a: str, b: str) -> Or:
    """Rows between two parties in either direction.

    pair_filter("sender_name", "receiver_name", "ann", "bob") matches
    ann -> bob and bob -> ann.
    """
    return or_(
        and_(eq(left, a), eq(right, b)),
        and_(eq(left, b), eq(right, a)),
    )


def either_filter(left: str, right: str, value: str) -> Or:
    """Rows where `value` appears in either of two columns."""
    return or_(eq(left, value), eq(right, value))


@dataclass(frozen=True)
class Order:
    """Sort key for snapshot reads."""

    column: str
    ascending: bool = True

    def __post_init__(self):
        if not _COLUMN_RE.match(self.column):
            raise ValueError(f"Invalid order column: {self.column!r}")


class ChangeOp(str, Enum):
    """Realtime change event types, named as the backend names them."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


ALL_OPS: tuple[ChangeOp, ...] = (ChangeOp.INSERT, ChangeOp.UPDATE, ChangeOp.DELETE)


@dataclass(frozen=True)
class ChangeEvent:
    """A single change on a watched collection.

    Attributes:
        op: INSERT, UPDATE or DELETE
        collection: Table the change happened in
        record: New row values (empty for DELETE)
        old: Previous row values; for DELETE at least the primary key
        commit_timestamp: Server commit time, when the transport provides it
    """

    op: ChangeOp
    collection: str
    record: dict[str, Any] = field(default_factory=dict)
    old: dict[str, Any] = field(default_factory=dict)
    commit_timestamp: datetime | None = None

    @property
    def row_id(self) -> str | None:
        """Primary key of the affected row."""
        value = self.record.get("id") if self.record else None
        if value is None and self.old:
            value = self.old.get("id")
        return None if value is None else str(value)

    @property
    def values(self) -> dict[str, Any]:
        """Row values relevant for filtering (new values, or old ones for DELETE)."""
        return self.record if self.record else self.old
