"""Backend access layer for the hosted Supabase project.

Provides:
- Table clients (PostgREST and in-memory fake)
- Realtime transports (Phoenix channels and in-memory fake)
- Row predicates shared by reads, writes and subscriptions
"""

from kvrp.backend.client import BackendClientBase, BackendError, FakeBackend, PostgrestClient
from kvrp.backend.realtime import (
    FakeTransport,
    PhoenixRealtimeTransport,
    RealtimeTransportBase,
    Subscription,
)
from kvrp.backend.types import (
    ALL_OPS,
    And,
    ChangeEvent,
    ChangeOp,
    Eq,
    Filter,
    Gte,
    Or,
    Order,
    and_,
    either_filter,
    eq,
    gte,
    or_,
    pair_filter,
)

__all__ = [
    "BackendClientBase",
    "BackendError",
    "PostgrestClient",
    "FakeBackend",
    "RealtimeTransportBase",
    "PhoenixRealtimeTransport",
    "FakeTransport",
    "Subscription",
    "ALL_OPS",
    "And",
    "ChangeEvent",
    "ChangeOp",
    "Eq",
    "Filter",
    "Gte",
    "Or",
    "Order",
    "and_",
    "either_filter",
    "eq",
    "gte",
    "or_",
    "pair_filter",
]
