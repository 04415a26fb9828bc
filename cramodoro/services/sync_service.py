"""
Outbox of local changes and the routine that replays it against the backend.

Every local deck, card or profile edit appends a SyncQueueEntry to
``syncQueue``. ``drain()`` replays the entries in order:

- the queue is only trimmed after a pass in which every entry succeeded;
  after a mixed pass every entry stays queued (with any deck ids already
  rewritten) for the next attempt
- a successful ``deck/create`` rewrites the local deck id to the backend id
  in the deck lists and in every queued entry, in one store transaction,
  before the next entry is replayed
- only one drain runs at a time; concurrent callers share its result
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..core.errors import CramodoroError, RemoteRejection
from ..core.events import NetworkState, ReachabilityMonitor
from ..core.schemas import EntryAction, EntryType, SyncQueueEntry, now_ms
from ..core.store import LocalStore
from .api_client import APIClient
from .decks_service import DECKS_KEY, UserDeckStore, user_decks_key

logger = logging.getLogger(__name__)

SYNC_QUEUE_KEY = "syncQueue"
LAST_SYNC_KEY = "lastSyncTime"

DECK_FIELDS = ("name", "pomodoroMinutes", "restMinutes", "cards")
PROFILE_NAME_MAX_LENGTH = 50


@dataclass
class SyncResult:
    success: int = 0
    failed: int = 0


def deck_payload(deck: Dict[str, Any]) -> Dict[str, Any]:
    """Fields the backend stores for a deck (drops the local id and lastUsed)."""

    return {field: deck[field] for field in DECK_FIELDS if field in deck}


def _rewrite(items: List[Dict[str, Any]], field: str, old: str, new: str) -> bool:
    changed = False
    for item in items:
        if item.get(field) == old:
            item[field] = new
            changed = True
    return changed


async def _load_raw_queue(reader: Any) -> List[Dict[str, Any]]:
    queue = await reader.get_json(SYNC_QUEUE_KEY, [])
    if not isinstance(queue, list):
        return []
    for position, item in enumerate(queue):
        # entries written before ids existed
        item.setdefault("id", f"{item.get('timestamp', 0)}-{position}")
    return queue


class AutoSync:
    """
    Background sync for one logged-in token.

    Drains when the network comes back and every ``interval`` seconds while
    entries are pending. ``cancel()`` before the token changes.
    """

    JOB_ID = "cramodoro-auto-sync"
    POLL_JOB_ID = "cramodoro-reachability"

    def __init__(
        self,
        manager: "SyncQueueManager",
        token: str,
        interval: float,
        poll_interval: Optional[float] = None,
    ) -> None:
        self.manager = manager
        self.token = token
        self.interval = interval
        self.poll_interval = poll_interval
        self.scheduler = AsyncIOScheduler()
        self.running = False
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        monitor = self.manager.monitor
        self._unsubscribe = monitor.add_listener(self._on_network_change)
        self.scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=self.interval),
            id=self.JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        if self.poll_interval and monitor.targets:
            self.scheduler.add_job(
                monitor.refresh,
                IntervalTrigger(seconds=self.poll_interval),
                id=self.POLL_JOB_ID,
                max_instances=1,
                coalesce=True,
            )
        self.scheduler.start()
        self.running = True
        logger.info("Auto-sync started (every %ss)", self.interval)

    async def _on_network_change(self, state: NetworkState) -> None:
        if not self.running or not state.is_online:
            return
        logger.info("Network available - checking for pending syncs...")
        await self.manager.drain(self.token)

    async def tick(self) -> Optional[SyncResult]:
        if not self.running:
            return None
        state = await self.manager.monitor.fetch()
        if not state.is_connected:
            return None
        if not await self.manager.pending():
            return None
        logger.info("Auto-sync: attempting to sync pending items...")
        return await self.manager.drain(self.token)

    def cancel(self) -> None:
        self.running = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Auto-sync stopped")


class SyncQueueManager:
    def __init__(
        self,
        store: LocalStore,
        client: APIClient,
        monitor: ReachabilityMonitor,
        decks: UserDeckStore,
        interval: float = 120.0,
        poll_interval: Optional[float] = None,
    ) -> None:
        self.store = store
        self.client = client
        self.monitor = monitor
        self.decks = decks
        self.interval = interval
        self.poll_interval = poll_interval
        self._inflight: Optional[asyncio.Future] = None
        self._auto_sync: Optional[AutoSync] = None

    # ---------- queue ----------

    async def enqueue(
        self,
        type: EntryType,
        action: EntryAction,
        data: Dict[str, Any],
        deck_id: Optional[str] = None,
    ) -> SyncQueueEntry:
        """Append an entry. Entries are never merged or deduplicated."""

        entry = SyncQueueEntry(type=type, action=action, data=dict(data), deck_id=deck_id)
        async with self.store.transaction() as tx:
            queue = await _load_raw_queue(tx)
            queue.append(entry.to_store())
            await tx.set_json(SYNC_QUEUE_KEY, queue)
        logger.info("Queued %s %s for sync", action, type)
        return entry

    async def pending(self) -> List[SyncQueueEntry]:
        return [SyncQueueEntry.model_validate(item) for item in await _load_raw_queue(self.store)]

    async def clear(self) -> None:
        async with self.store.transaction() as tx:
            await tx.remove(SYNC_QUEUE_KEY)
            await tx.set(LAST_SYNC_KEY, str(now_ms()))
        logger.info("Sync queue cleared")

    async def last_sync_time(self) -> Optional[int]:
        raw = await self.store.get(LAST_SYNC_KEY)
        return int(raw) if raw and raw.isdigit() else None

    # ---------- drain ----------

    async def drain(self, token: str) -> SyncResult:
        if self._inflight is not None and not self._inflight.done():
            logger.info("Sync already in progress, joining it")
            return await asyncio.shield(self._inflight)
        self._inflight = asyncio.ensure_future(self._drain(token))
        return await asyncio.shield(self._inflight)

    async def _drain(self, token: str) -> SyncResult:
        state = await self.monitor.fetch()
        if not state.is_connected:
            logger.info("Offline - cannot sync")
            return SyncResult()

        entries = await self.pending()
        if not entries:
            logger.info("No items to sync")
            return SyncResult()

        logger.info("Syncing %d items to backend...", len(entries))
        result = SyncResult()
        for index, entry in enumerate(entries):
            try:
                await self._replay(token, entries, index)
            except CramodoroError as exc:
                result.failed += 1
                logger.warning("Failed to sync %s %s: %s", entry.type, entry.action, exc.message)
            except Exception:
                result.failed += 1
                logger.exception("Failed to sync %s %s", entry.type, entry.action)
            else:
                result.success += 1

        if result.failed == 0:
            await self._remove_processed({entry.id for entry in entries})

        logger.info("Sync complete: %d success, %d failed", result.success, result.failed)
        return result

    async def _remove_processed(self, ids: Set[str]) -> None:
        """Drop the entries of a clean pass; entries queued meanwhile stay."""

        async with self.store.transaction() as tx:
            queue = await _load_raw_queue(tx)
            remaining = [item for item in queue if item["id"] not in ids]
            if remaining:
                await tx.set_json(SYNC_QUEUE_KEY, remaining)
            else:
                await tx.remove(SYNC_QUEUE_KEY)
            await tx.set(LAST_SYNC_KEY, str(now_ms()))

    async def _replay(self, token: str, entries: List[SyncQueueEntry], index: int) -> None:
        entry = entries[index]
        label = entry.data.get("name") or entry.data.get("question") or entry.data.get("username") or "data"
        logger.info("  Syncing %s %s: %s", entry.type, entry.action, label)

        if entry.type == "profile":
            if entry.action != "update":
                logger.warning("  Skipping unsupported profile %s", entry.action)
                return
            await self._sync_profile(token, entry)
        elif entry.type == "deck" and entry.action == "create":
            await self._sync_deck_create(token, entries, index)
        elif not entry.deck_id:
            logger.warning("  Skipping %s %s without deckId", entry.type, entry.action)
        elif entry.type == "deck" and entry.action == "update":
            await self.client.update_deck(token, entry.deck_id, deck_payload(entry.data))
        elif entry.type == "deck":
            await self._sync_deck_delete(token, entry.deck_id)
        else:
            await self._sync_cards(token, entry.deck_id)

    async def _sync_profile(self, token: str, entry: SyncQueueEntry) -> None:
        fields = dict(entry.data)
        name = fields.get("name")
        if "name" in fields and (not name or not str(name).strip()):
            logger.warning("  Skipping profile sync: empty name")
            return
        if name and len(str(name)) > PROFILE_NAME_MAX_LENGTH:
            logger.warning("  Skipping profile sync: invalid name length")
            return
        await self.client.update_profile(token, fields)

    async def _sync_deck_create(self, token: str, entries: List[SyncQueueEntry], index: int) -> None:
        entry = entries[index]
        old_id = entry.data.get("id")
        resp = await self.client.create_deck(token, deck_payload(entry.data), idempotency_key=entry.id)
        remote = resp.get("deck") or {}
        new_id = remote.get("_id") or remote.get("id")
        logger.info("  Deck created on backend with ID %s", new_id)
        if new_id and old_id and str(new_id) != old_id:
            await self._reconcile_deck_id(old_id, str(new_id), entries[index + 1:])

    async def _reconcile_deck_id(self, old_id: str, new_id: str, later: List[SyncQueueEntry]) -> None:
        """Point every local reference to ``old_id`` at ``new_id`` in one transaction."""

        email = await self.decks.session.current_email()
        deck_keys = [DECKS_KEY] + ([user_decks_key(email)] if email else [])
        async with self.store.transaction() as tx:
            for key in deck_keys:
                decks = await tx.get_json(key)
                if isinstance(decks, list) and _rewrite(decks, "id", old_id, new_id):
                    await tx.set_json(key, decks)
            queue = await _load_raw_queue(tx)
            if _rewrite(queue, "deckId", old_id, new_id):
                await tx.set_json(SYNC_QUEUE_KEY, queue)

        for entry in later:
            if entry.deck_id == old_id:
                entry.deck_id = new_id
        logger.info("  Updated local deck ID from %s to %s", old_id, new_id)

    async def _sync_deck_delete(self, token: str, deck_id: str) -> None:
        try:
            await self.client.delete_deck(token, deck_id)
        except RemoteRejection as exc:
            if exc.status != 404:
                raise
            logger.info("  Deck %s already gone on backend", deck_id)

    async def _sync_cards(self, token: str, deck_id: str) -> None:
        """Cards have no remote identity: push the deck's current card list."""

        deck = await self.decks.get_deck(deck_id)
        if deck is None:
            logger.warning("  Deck %s not found in local storage, skipping card sync", deck_id)
            return
        await self.client.update_deck(token, deck_id, deck_payload(deck))

    # ---------- auto sync ----------

    @property
    def auto_sync(self) -> Optional[AutoSync]:
        return self._auto_sync

    def setup_auto_sync(self, token: str) -> AutoSync:
        """Start background sync for ``token``, replacing any previous loop."""

        self.stop_auto_sync()
        self._auto_sync = AutoSync(self, token, self.interval, self.poll_interval)
        self._auto_sync.start()
        return self._auto_sync

    def stop_auto_sync(self) -> None:
        if self._auto_sync is not None:
            self._auto_sync.cancel()
            self._auto_sync = None
