"""Test fixtures for the Cramodoro client."""
from pathlib import Path

import pytest
import pytest_asyncio

from cramodoro.app import AppContext, open_app
from cramodoro.core.auth import LocalCredentialVault
from cramodoro.core.config import Settings
from cramodoro.core.events import ReachabilityMonitor
from cramodoro.core.session import SessionState
from cramodoro.core.store import LocalStore

from .fake_backend import LAN_URL, SALT, TUNNEL_URL, FakeBackend, RoutingTransport


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a throwaway SQLite file and the fake backend hosts."""

    return Settings(
        lan_url=LAN_URL,
        tunnel_url=TUNNEL_URL,
        database_url=f"sqlite+aiosqlite:///{(tmp_path / 'local.db').as_posix()}",
        password_salt=SALT,
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def transport(backend: FakeBackend) -> RoutingTransport:
    return RoutingTransport(backend.app)


@pytest.fixture
def monitor() -> ReachabilityMonitor:
    """Monitor without targets; tests drive it through ``update()``."""

    return ReachabilityMonitor()


@pytest_asyncio.fixture
async def store(settings: Settings) -> LocalStore:
    store = await LocalStore.open(settings.database_url)
    yield store
    await store.close()


@pytest.fixture
def session(store: LocalStore) -> SessionState:
    return SessionState(store)


@pytest.fixture
def vault(store: LocalStore, session: SessionState) -> LocalCredentialVault:
    return LocalCredentialVault(store, session, SALT)


@pytest_asyncio.fixture
async def app(settings: Settings, transport: RoutingTransport, monitor: ReachabilityMonitor) -> AppContext:
    """Fully wired client talking to the fake backend."""

    ctx = await open_app(settings, transport=transport, monitor=monitor)
    yield ctx
    await ctx.close()
