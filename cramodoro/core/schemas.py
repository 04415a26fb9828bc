"""Pydantic records persisted in the local store or exchanged with the backend."""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

EntryType = Literal["deck", "card", "profile"]
EntryAction = Literal["create", "update", "delete"]


def now_ms() -> int:
    return int(time.time() * 1000)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class _Record(BaseModel):
    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }

    def to_store(self) -> Dict[str, Any]:
        """Camel-cased dict as written to the local store."""

        return self.model_dump(by_alias=True, exclude_none=True)


class Card(_Record):
    question: str
    answer: str


class Deck(_Record):
    """A deck in the local shape the app reads from ``decks``."""

    id: str
    name: str
    pomodoro_minutes: int = Field(default=25, alias="pomodoroMinutes")
    rest_minutes: int = Field(default=5, alias="restMinutes")
    cards: List[Card] = Field(default_factory=list)
    last_used: Optional[str] = Field(default=None, alias="lastUsed")

    @classmethod
    def from_remote(cls, data: Dict[str, Any]) -> "Deck":
        """Map a backend deck document (``_id``, ``userId``, ...) to the local shape."""

        return cls(
            id=str(data.get("_id") or data.get("id")),
            name=data.get("name") or "",
            pomodoro_minutes=data.get("pomodoroMinutes") or 25,
            rest_minutes=data.get("restMinutes") if data.get("restMinutes") is not None else 5,
            cards=[
                Card(question=c.get("question", ""), answer=c.get("answer", ""))
                for c in data.get("cards") or []
            ],
            last_used=data.get("lastUsed"),
        )


class LocalUser(_Record):
    """Offline account record owned by the credential vault."""

    email: str
    username: str
    password_hash: str = Field(default="", alias="passwordHash")
    created_at: str = Field(default_factory=utc_now_iso, alias="createdAt")
    name: Optional[str] = None
    bio: Optional[str] = None
    profile_picture: Optional[str] = Field(default=None, alias="profilePicture")

    def public(self) -> Dict[str, Any]:
        """Fields safe to hand to the UI (no password hash)."""

        return {
            "email": self.email,
            "username": self.username,
            "id": self.email,
            "createdAt": self.created_at,
            "name": self.name or self.username,
            "bio": self.bio,
            "profilePicture": self.profile_picture,
        }


class SyncQueueEntry(_Record):
    """One pending mutation waiting to be replayed against the backend."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: int = Field(default_factory=now_ms)
    type: EntryType
    action: EntryAction
    data: Dict[str, Any] = Field(default_factory=dict)
    deck_id: Optional[str] = Field(default=None, alias="deckId")


class AuthResult(BaseModel):
    """Token plus public user fields returned by signup/login."""

    token: str
    user: Dict[str, Any]
    mode: Literal["remote", "offline"] = "offline"
