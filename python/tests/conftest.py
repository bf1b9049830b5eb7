"""Pytest configuration and fixtures for kvrp tests.

Test isolation strategy:
- Every test gets fresh in-memory clients: a FakeBackend that echoes each
  write through a FakeTransport, and a FakeStorageClient
- Settings are rebuilt from a test environment with Supabase unset, so
  nothing ever reaches the network
- Logging context is cleared after every test
"""

import pytest

from kvrp.clients import Clients, fake_clients
from kvrp.config import Settings, clear_settings_cache, get_settings
from kvrp.logging import clear_session_context
from kvrp.notices import CollectingNotifier
from kvrp.session import Session, guest_session

_SUPABASE_ENV = (
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "SUPABASE_REALTIME_URL",
    "STORAGE_TEST_PREFIX",
)


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Run every test against the test environment with fresh settings."""
    monkeypatch.setenv("KVRP_ENV", "test")
    for name in _SUPABASE_ENV:
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()
    clear_session_context()


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def notifier() -> CollectingNotifier:
    return CollectingNotifier()


@pytest.fixture
def clients(settings: Settings, notifier: CollectingNotifier) -> Clients:
    """Fake clients wired so every backend write reaches subscribers."""
    return fake_clients(settings, notifier)


@pytest.fixture
def backend(clients: Clients):
    return clients.backend


@pytest.fixture
def transport(clients: Clients):
    return clients.transport


@pytest.fixture
def storage(clients: Clients):
    return clients.storage


@pytest.fixture
def session() -> Session:
    return guest_session("ann")


@pytest.fixture
def bob() -> Session:
    return guest_session("bob")


@pytest.fixture
def admin_session() -> Session:
    return Session.admin()
