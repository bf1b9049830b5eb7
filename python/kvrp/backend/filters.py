"""Predicate rendering and evaluation.

One predicate value drives three consumers:
- PostgREST query parameters for snapshot reads and filtered writes
- The single `col=eq.value` filter Realtime accepts on a subscription
- In-memory evaluation (fake backend, client-side narrowing of push events)

PostgREST grammar used here:
    top-level Eq          -> ("col", "eq.value")
    top-level Gte         -> ("col", "gte.value")
    top-level And         -> one param per term (Or terms nest as "or=(...)")
    top-level Or          -> ("or", "(a.eq.x,and(b.eq.y,c.eq.z))")
Values inside or()/and() containing reserved characters are double-quoted.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from kvrp.backend.types import And, Eq, Filter, Gte, Or, Order

_RESERVED = set(',.():"\\ ')


def format_value(value: Any) -> str:
    """Render a Python value the way PostgREST expects it."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _quote(text: str) -> str:
    if not text or any(ch in _RESERVED for ch in text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def _operator(value: Any) -> str:
    return "is" if value is None else "eq"


def _nested(term: Filter) -> str:
    """Render a term inside an or()/and() group."""
    if isinstance(term, Eq):
        return f"{term.column}.{_operator(term.value)}.{_quote(format_value(term.value))}"
    if isinstance(term, Gte):
        return f"{term.column}.gte.{_quote(format_value(term.value))}"
    if isinstance(term, And):
        return "and(" + ",".join(_nested(t) for t in term.terms) + ")"
    if isinstance(term, Or):
        return "or(" + ",".join(_nested(t) for t in term.terms) + ")"
    raise TypeError(f"Unsupported filter term: {term!r}")


def to_query_params(predicate: Filter | None) -> list[tuple[str, str]]:
    """Render a predicate as PostgREST query parameters.

    Raises:
        TypeError: If the predicate contains an unsupported term.
    """
    if predicate is None:
        return []
    if isinstance(predicate, Eq):
        return [(predicate.column, f"{_operator(predicate.value)}.{format_value(predicate.value)}")]
    if isinstance(predicate, Gte):
        return [(predicate.column, f"gte.{format_value(predicate.value)}")]
    if isinstance(predicate, And):
        params: list[tuple[str, str]] = []
        for term in predicate.terms:
            params.extend(to_query_params(term))
        return params
    if isinstance(predicate, Or):
        return [("or", "(" + ",".join(_nested(t) for t in predicate.terms) + ")")]
    raise TypeError(f"Unsupported filter: {predicate!r}")


def order_param(order: Order | None) -> list[tuple[str, str]]:
    if order is None:
        return []
    direction = "asc" if order.ascending else "desc"
    return [("order", f"{order.column}.{direction}")]


def realtime_filter(predicate: Filter | None) -> str | None:
    """Return the narrowest single-equality filter Realtime can apply server-side.

    Realtime accepts one `column=eq.value` clause. For an And, the first
    equality term is used; Or cannot be expressed and returns None. Callers
    must still evaluate the full predicate client-side with `matches`.
    """
    if isinstance(predicate, Eq) and predicate.value is not None:
        return f"{predicate.column}=eq.{format_value(predicate.value)}"
    if isinstance(predicate, And):
        for term in predicate.terms:
            if isinstance(term, Eq) and term.value is not None:
                return realtime_filter(term)
    return None


def _same(actual: Any, expected: Any) -> bool:
    if expected is None:
        return actual is None
    if isinstance(expected, bool) or isinstance(actual, bool):
        return actual is expected or actual == expected
    return format_value(actual) == format_value(expected)


def _at_least(actual: Any, bound: Any) -> bool:
    if actual is None or bound is None:
        return False
    if isinstance(bound, datetime) and isinstance(actual, str):
        actual = datetime.fromisoformat(actual)
    return actual >= bound


def matches(predicate: Filter | None, row: dict[str, Any]) -> bool:
    """Evaluate a predicate against a row dict."""
    if predicate is None:
        return True
    if isinstance(predicate, Eq):
        return _same(row.get(predicate.column), predicate.value)
    if isinstance(predicate, Gte):
        return _at_least(row.get(predicate.column), predicate.value)
    if isinstance(predicate, And):
        return all(matches(t, row) for t in predicate.terms)
    if isinstance(predicate, Or):
        return any(matches(t, row) for t in predicate.terms)
    raise TypeError(f"Unsupported filter: {predicate!r}")
