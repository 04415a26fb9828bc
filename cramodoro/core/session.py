"""Identity tokens and the persisted "current session" snapshot."""

from __future__ import annotations

from typing import Any, Dict, Optional

from .schemas import now_ms
from .store import LocalStore

TOKEN_KEY = "authToken"
USER_DATA_KEY = "userData"

OFFLINE_PREFIX = "offline_"


# ---------- tokens ----------


def make_offline_token(email: str, timestamp: Optional[int] = None) -> str:
    """Build ``offline_<email>_<ms timestamp>``."""

    return f"{OFFLINE_PREFIX}{email}_{timestamp if timestamp is not None else now_ms()}"


def is_offline_token(token: Optional[str]) -> bool:
    return bool(token) and token.startswith(OFFLINE_PREFIX)


def email_from_offline_token(token: str) -> Optional[str]:
    """
    Recover the owning email from an offline token.

    The timestamp is split off the right-hand side so emails containing
    underscores survive the round trip.
    """
    if not is_offline_token(token):
        return None
    email, sep, stamp = token[len(OFFLINE_PREFIX):].rpartition("_")
    if not sep or not email or not stamp.isdigit():
        return None
    return email


# ---------- session snapshot ----------


class SessionState:
    """Reads and writes ``authToken`` / ``userData``."""

    def __init__(self, store: LocalStore) -> None:
        self.store = store

    async def get_token(self) -> Optional[str]:
        return await self.store.get(TOKEN_KEY)

    async def get_user(self) -> Optional[Dict[str, Any]]:
        user = await self.store.get_json(USER_DATA_KEY)
        return user if isinstance(user, dict) else None

    async def save(self, token: str, user: Dict[str, Any]) -> None:
        async with self.store.transaction() as tx:
            await tx.set(TOKEN_KEY, token)
            await tx.set_json(USER_DATA_KEY, user)

    async def update_user(self, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        async with self.store.transaction() as tx:
            user = await tx.get_json(USER_DATA_KEY)
            if not isinstance(user, dict):
                return None
            user.update(fields)
            await tx.set_json(USER_DATA_KEY, user)
            return user

    async def clear(self) -> None:
        await self.store.multi_remove([TOKEN_KEY, USER_DATA_KEY])

    async def current_email(self) -> Optional[str]:
        user = await self.get_user()
        if not user:
            return None
        if user.get("email"):
            return user["email"]
        # offline snapshots use the email as id; remote ids are object ids
        ident = user.get("id")
        return ident if isinstance(ident, str) and "@" in ident else None

    async def resolve_email(self, token: Optional[str]) -> Optional[str]:
        """Offline tokens are parsed directly; remote tokens fall back to the snapshot."""

        if not token:
            return None
        if is_offline_token(token):
            return email_from_offline_token(token)
        return await self.current_email()
