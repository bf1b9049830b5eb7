"""Client wiring.

open_clients() builds the table client, realtime transport and storage
client from settings and tears them down on exit:

- SUPABASE_URL and SUPABASE_ANON_KEY set: PostgREST, Phoenix Realtime and
  Supabase Storage over one shared httpx.AsyncClient
- otherwise (local/test): FakeBackend publishing into a FakeTransport, plus
  a FakeStorageClient
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import httpx

from kvrp.backend.client import BackendClientBase, FakeBackend, PostgrestClient
from kvrp.backend.realtime import FakeTransport, PhoenixRealtimeTransport, RealtimeTransportBase
from kvrp.config import Settings, get_settings
from kvrp.logging import get_logger
from kvrp.notices import LogNotifier, Notifier
from kvrp.storage.client import FakeStorageClient, StorageClient, StorageClientBase

logger = get_logger(__name__)


@dataclass
class Clients:
    """Everything a feed or service needs to reach the backend."""

    backend: BackendClientBase
    transport: RealtimeTransportBase
    storage: StorageClientBase
    settings: Settings
    notifier: Notifier = field(default_factory=LogNotifier)


def fake_clients(settings: Settings | None = None, notifier: Notifier | None = None) -> Clients:
    """In-memory clients wired so that every backend write is echoed to subscribers."""
    transport = FakeTransport()
    return Clients(
        backend=FakeBackend(publish=transport.publish),
        transport=transport,
        storage=FakeStorageClient(),
        settings=settings or get_settings(),
        notifier=notifier or LogNotifier(),
    )


@asynccontextmanager
async def open_clients(
    settings: Settings | None = None,
    *,
    notifier: Notifier | None = None,
    access_token: str | None = None,
) -> AsyncIterator[Clients]:
    """Open the configured clients for the duration of the block."""
    settings = settings or get_settings()

    if not settings.has_supabase:
        logger.info("clients_opened", mode="fake", env=settings.kvrp_env.value)
        yield fake_clients(settings, notifier)
        return

    supabase_url = settings.normalized_supabase_url
    api_key = settings.supabase_anon_key
    assert supabase_url is not None and api_key is not None

    async with httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout_s, connect=10.0),
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
    ) as http:
        transport = PhoenixRealtimeTransport(
            settings.effective_realtime_url or "",
            api_key,
            heartbeat_s=settings.realtime_heartbeat_s,
        )
        clients = Clients(
            backend=PostgrestClient(
                http,
                supabase_url,
                api_key,
                access_token=access_token,
                timeout_s=settings.request_timeout_s,
            ),
            transport=transport,
            storage=StorageClient(
                http,
                supabase_url,
                api_key,
                access_token=access_token,
                timeout_s=settings.request_timeout_s,
            ),
            settings=settings,
            notifier=notifier or LogNotifier(),
        )
        logger.info("clients_opened", mode="supabase", env=settings.kvrp_env.value)
        try:
            yield clients
        finally:
            await transport.close()
            logger.info("clients_closed")
