"""
Per-account deck storage and the local deck/card actions.

``decks`` is the working set of whoever is logged in; ``decks_<email>`` is
that account's durable copy. Writes go through ``save_current_user_decks``
so the two keys always change together.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..core.errors import NotFoundError, ValidationError
from ..core.schemas import Card, Deck, now_ms, utc_now_iso
from ..core.session import SessionState
from ..core.store import LocalStore

if TYPE_CHECKING:
    from .sync_service import SyncQueueManager

logger = logging.getLogger(__name__)

DECKS_KEY = "decks"


def user_decks_key(email: str) -> str:
    return f"decks_{email}"


class UserDeckStore:
    def __init__(self, store: LocalStore, session: SessionState) -> None:
        self.store = store
        self.session = session

    async def current_decks(self) -> List[Dict[str, Any]]:
        decks = await self.store.get_json(DECKS_KEY, [])
        return decks if isinstance(decks, list) else []

    async def get_deck(self, deck_id: str) -> Optional[Dict[str, Any]]:
        for deck in await self.current_decks():
            if deck.get("id") == deck_id:
                return deck
        return None

    async def save_decks(self, decks: List[Dict[str, Any]], email: Optional[str] = None) -> None:
        """Write the shared working set and, with an email, that account's copy."""

        async with self.store.transaction() as tx:
            await tx.set_json(DECKS_KEY, decks)
            if email:
                await tx.set_json(user_decks_key(email), decks)
        if email:
            logger.debug("Saved %d decks for %s", len(decks), email)

    async def save_current_user_decks(self, decks: List[Dict[str, Any]]) -> None:
        await self.save_decks(decks, await self.session.current_email())

    async def load_user_decks(self, email: str) -> List[Dict[str, Any]]:
        """Copy ``decks_<email>`` into the shared key, if that account has a copy."""

        async with self.store.transaction() as tx:
            decks = await tx.get_json(user_decks_key(email))
            if not isinstance(decks, list):
                return []
            await tx.set_json(DECKS_KEY, decks)
        return decks

    async def move_user_decks(self, old_email: str, new_email: str) -> None:
        """Re-key an account's deck copy after its email changed."""

        async with self.store.transaction() as tx:
            decks = await tx.get_json(user_decks_key(old_email))
            if decks is None:
                return
            await tx.set_json(user_decks_key(new_email), decks)
            await tx.remove(user_decks_key(old_email))

    async def clear_current_decks(self) -> None:
        await self.store.remove(DECKS_KEY)


class DeckService:
    """Local deck and card edits; each change is saved and queued for sync."""

    def __init__(self, decks: UserDeckStore, sync: "SyncQueueManager") -> None:
        self.decks = decks
        self.sync = sync

    async def _load(self, deck_id: str) -> tuple[List[Dict[str, Any]], Dict[str, Any]]:
        decks = await self.decks.current_decks()
        for deck in decks:
            if deck.get("id") == deck_id:
                deck.setdefault("cards", [])
                return decks, deck
        raise NotFoundError(f"Deck {deck_id} not found")

    @staticmethod
    def _validate_deck(name: str, pomodoro_minutes: int, rest_minutes: int) -> None:
        if not name.strip():
            raise ValidationError("Please enter a deck name")
        if pomodoro_minutes <= 0:
            raise ValidationError("Pomodoro timer must be greater than 0")
        if rest_minutes < 0:
            raise ValidationError("Rest timer cannot be negative")

    @staticmethod
    def _validate_card(question: str, answer: str) -> Card:
        if not question.strip() or not answer.strip():
            raise ValidationError("Please enter both a question and an answer")
        return Card(question=question.strip(), answer=answer.strip())

    async def list_decks(self) -> List[Dict[str, Any]]:
        return await self.decks.current_decks()

    async def create_deck(self, name: str, pomodoro_minutes: int = 25, rest_minutes: int = 5) -> Dict[str, Any]:
        self._validate_deck(name, pomodoro_minutes, rest_minutes)
        deck = Deck(
            id=str(now_ms()),
            name=name.strip(),
            pomodoro_minutes=pomodoro_minutes,
            rest_minutes=rest_minutes,
        ).to_store()

        decks = await self.decks.current_decks()
        # two creates within the same millisecond
        while any(d.get("id") == deck["id"] for d in decks):
            deck["id"] = str(int(deck["id"]) + 1)
        decks.append(deck)
        await self.decks.save_current_user_decks(decks)
        await self.sync.enqueue("deck", "create", deck)
        return deck

    async def update_deck(
        self,
        deck_id: str,
        name: Optional[str] = None,
        pomodoro_minutes: Optional[int] = None,
        rest_minutes: Optional[int] = None,
    ) -> Dict[str, Any]:
        decks, deck = await self._load(deck_id)
        if name is not None:
            deck["name"] = name.strip()
        if pomodoro_minutes is not None:
            deck["pomodoroMinutes"] = pomodoro_minutes
        if rest_minutes is not None:
            deck["restMinutes"] = rest_minutes
        self._validate_deck(deck["name"], deck.get("pomodoroMinutes", 25), deck.get("restMinutes", 5))

        await self.decks.save_current_user_decks(decks)
        await self.sync.enqueue("deck", "update", deck, deck_id=deck_id)
        return deck

    async def delete_deck(self, deck_id: str) -> None:
        decks, deck = await self._load(deck_id)
        decks.remove(deck)
        await self.decks.save_current_user_decks(decks)
        await self.sync.enqueue("deck", "delete", {"id": deck_id, "name": deck.get("name")}, deck_id=deck_id)

    async def add_card(self, deck_id: str, question: str, answer: str) -> Dict[str, Any]:
        card = self._validate_card(question, answer).to_store()
        decks, deck = await self._load(deck_id)
        deck["cards"].append(card)
        await self.decks.save_current_user_decks(decks)
        await self.sync.enqueue("card", "create", card, deck_id=deck_id)
        return card

    async def update_card(self, deck_id: str, index: int, question: str, answer: str) -> Dict[str, Any]:
        card = self._validate_card(question, answer).to_store()
        decks, deck = await self._load(deck_id)
        if not 0 <= index < len(deck["cards"]):
            raise NotFoundError(f"Card {index} not found in deck {deck_id}")
        deck["cards"][index] = card
        await self.decks.save_current_user_decks(decks)
        await self.sync.enqueue("card", "update", card, deck_id=deck_id)
        return card

    async def delete_card(self, deck_id: str, index: int) -> Dict[str, Any]:
        decks, deck = await self._load(deck_id)
        if not 0 <= index < len(deck["cards"]):
            raise NotFoundError(f"Card {index} not found in deck {deck_id}")
        card = deck["cards"].pop(index)
        await self.decks.save_current_user_decks(decks)
        await self.sync.enqueue("card", "delete", card, deck_id=deck_id)
        return card

    async def mark_used(self, deck_id: str) -> None:
        """Stamp ``lastUsed``; local only, nothing is queued."""

        decks, deck = await self._load(deck_id)
        deck["lastUsed"] = utc_now_iso()
        await self.decks.save_current_user_decks(decks)
