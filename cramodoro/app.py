# cramodoro/app.py
"""Builds the object graph shared by the CLI and the tests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import httpx

from .core.auth import LocalCredentialVault
from .core.config import Settings, get_settings
from .core.events import ReachabilityMonitor
from .core.session import SessionState
from .core.store import LocalStore
from .services.api_client import APIClient
from .services.auth_service import AuthService
from .services.decks_service import DeckService, UserDeckStore
from .services.health import BackendHealthProber
from .services.sync_service import SyncQueueManager


@dataclass
class AppContext:
    settings: Settings
    store: LocalStore
    session: SessionState
    vault: LocalCredentialVault
    monitor: ReachabilityMonitor
    prober: BackendHealthProber
    client: APIClient
    decks: UserDeckStore
    sync: SyncQueueManager
    deck_service: DeckService
    auth: AuthService

    async def close(self) -> None:
        self.sync.stop_auto_sync()
        await self.client.close()
        await self.store.close()


def probe_target(base_url: str) -> Tuple[str, int]:
    url = httpx.URL(base_url)
    return url.host, url.port or (443 if url.scheme == "https" else 80)


def monitor_for(settings: Settings) -> ReachabilityMonitor:
    """Reachability monitor that is online when any configured backend host accepts TCP."""

    targets = [probe_target(base_url) for base_url in settings.base_urls()]
    return ReachabilityMonitor(targets=targets, timeout=settings.health_timeout)


async def open_app(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    monitor: Optional[ReachabilityMonitor] = None,
) -> AppContext:
    settings = settings or get_settings()
    store = await LocalStore.open(settings.database_url)
    session = SessionState(store)
    vault = LocalCredentialVault(store, session, settings.password_salt)
    monitor = monitor or monitor_for(settings)
    prober = BackendHealthProber(
        settings.lan_url,
        settings.tunnel_url,
        timeout=settings.health_timeout,
        transport=transport,
    )
    client = APIClient(prober, timeout=settings.request_timeout, transport=transport)
    decks = UserDeckStore(store, session)
    sync = SyncQueueManager(
        store,
        client,
        monitor,
        decks,
        interval=settings.auto_sync_interval,
        poll_interval=settings.reachability_poll_interval,
    )
    deck_service = DeckService(decks, sync)
    auth = AuthService(session, vault, prober, client, sync, decks)
    return AppContext(
        settings=settings,
        store=store,
        session=session,
        vault=vault,
        monitor=monitor,
        prober=prober,
        client=client,
        decks=decks,
        sync=sync,
        deck_service=deck_service,
        auth=auth,
    )
