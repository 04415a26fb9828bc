# cramodoro/core/auth.py
"""
Offline account vault.

Each account is one canonical record under ``localUser_<email>``. A
username can be used to log in through the secondary index
``localUserIndex_<username>`` -> email, written in the same transaction as
the record so the two never drift apart.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, List, Optional

from .errors import AuthError, ConflictError, NotFoundError, ValidationError
from .schemas import AuthResult, LocalUser
from .session import SessionState, make_offline_token
from .store import LocalStore, StoreTransaction

logger = logging.getLogger(__name__)

USER_PREFIX = "localUser_"
INDEX_PREFIX = "localUserIndex_"

MIN_PASSWORD_LENGTH = 6


def user_key(identifier: str) -> str:
    return f"{USER_PREFIX}{identifier}"


def index_key(username: str) -> str:
    return f"{INDEX_PREFIX}{username}"


# ---------- password helpers ----------
def hash_password(password: str, salt: str) -> str:
    """Single SHA-256 round over password + application salt (hex digest)."""
    return hashlib.sha256((password + salt).encode("utf-8")).hexdigest()


def verify_password(password: str, password_hash: str, salt: str) -> bool:
    if not password_hash:
        return False
    return hash_password(password, salt) == password_hash


def default_username(email: str) -> str:
    return email.split("@")[0]


class LocalCredentialVault:
    """Signup, login and profile storage for accounts usable without the backend."""

    def __init__(self, store: LocalStore, session: SessionState, salt: str) -> None:
        self.store = store
        self.session = session
        self.salt = salt

    # ---------- record helpers ----------

    async def _read(self, reader: Any, identifier: str) -> Optional[LocalUser]:
        data = await reader.get_json(user_key(identifier))
        return LocalUser.model_validate(data) if isinstance(data, dict) else None

    async def _write(self, tx: StoreTransaction, user: LocalUser) -> None:
        await tx.set_json(user_key(user.email), user.to_store())
        if user.username and user.username != user.email:
            await tx.set(index_key(user.username), user.email)

    async def _drop_index(self, tx: StoreTransaction, username: Optional[str], email: str) -> None:
        if not username:
            return
        if await tx.get(index_key(username)) == email:
            await tx.remove(index_key(username))

    async def _find(self, identifier: str) -> Optional[LocalUser]:
        """Direct key, then username index, then (no "@") a scan by username."""

        user = await self._read(self.store, identifier)
        if user is not None:
            return user

        indexed_email = await self.store.get(index_key(identifier))
        if indexed_email:
            user = await self._read(self.store, indexed_email)
            if user is not None:
                return user

        if "@" in identifier:
            return None

        for key in await self.store.get_all_keys():
            if not key.startswith(USER_PREFIX):
                continue
            data = await self.store.get_json(key)
            if isinstance(data, dict) and data.get("username") == identifier:
                return LocalUser.model_validate(data)
        return None

    # ---------- auth ----------

    async def signup(self, email: str, password: str, confirm_password: str) -> AuthResult:
        if password != confirm_password:
            raise ValidationError("Passwords do not match")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        user = LocalUser(
            email=email,
            username=default_username(email),
            password_hash=hash_password(password, self.salt),
        )
        async with self.store.transaction() as tx:
            if await tx.get(user_key(email)) is not None:
                raise ConflictError("User already exists. Please login instead.")
            await self._write(tx, user)

        logger.info("Created offline account for %s", email)
        return AuthResult(token=make_offline_token(email), user=user.public(), mode="offline")

    async def login(self, username_or_email: str, password: str) -> AuthResult:
        user = await self._find(username_or_email)
        if user is None:
            raise NotFoundError("Invalid credentials. User not found.")
        if not verify_password(password, user.password_hash, self.salt):
            raise AuthError("Invalid credentials. Incorrect password.")
        return AuthResult(token=make_offline_token(user.email), user=user.public(), mode="offline")

    # ---------- profile ----------

    async def _resolve_email(self, token: str) -> str:
        email = await self.session.resolve_email(token)
        if not email:
            raise NotFoundError("Invalid token or user data not found")
        return email

    def _from_snapshot(self, snapshot: Dict[str, Any], email: str) -> LocalUser:
        return LocalUser(
            email=snapshot.get("email") or email,
            username=snapshot.get("username") or default_username(email),
            password_hash="",
            name=snapshot.get("name") or snapshot.get("username"),
            bio=snapshot.get("bio") or "",
            profile_picture=snapshot.get("profilePicture"),
        )

    async def get_profile(self, token: str) -> Dict[str, Any]:
        email = await self._resolve_email(token)
        user = await self._read(self.store, email)
        if user is not None:
            return user.public()

        snapshot = await self.session.get_user()
        if snapshot:
            logger.warning("Local account for %s not found, using session snapshot", email)
            return self._from_snapshot(snapshot, email).public()
        raise NotFoundError("User not found")

    async def update_profile(self, token: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge ``name``, ``bio``, ``profilePicture`` and ``username`` into the
        token owner's record, moving it to a new key when ``email`` changes.
        """
        email = await self._resolve_email(token)
        snapshot = await self.session.get_user()

        async with self.store.transaction() as tx:
            user = await self._read(tx, email)
            if user is None:
                if not snapshot:
                    raise NotFoundError("User not found")
                logger.warning("Local account for %s not found, creating it from session snapshot", email)
                user = self._from_snapshot(snapshot, email)
            old_username = user.username

            if updates.get("username"):
                user.username = updates["username"]
            if updates.get("name"):
                user.name = updates["name"]
            if updates.get("bio") is not None:
                user.bio = updates["bio"]
            if updates.get("profilePicture") is not None:
                user.profile_picture = updates["profilePicture"]

            new_email = updates.get("email")
            if new_email and new_email != email:
                if await tx.get(user_key(new_email)) is not None:
                    raise ConflictError("Another account already uses this email")
                await tx.remove(user_key(email))
                user.email = new_email
            if old_username != user.username or user.email != email:
                await self._drop_index(tx, old_username, email)
            await self._write(tx, user)

        return {"email": user.email, "username": user.username, "id": user.email}

    async def delete_account(self, token: str) -> None:
        email = await self._resolve_email(token)
        async with self.store.transaction() as tx:
            user = await self._read(tx, email)
            await tx.remove(user_key(email))
            if user is not None:
                await self._drop_index(tx, user.username, email)

    # ---------- backend cache ----------

    async def cache_backend_user(
        self,
        identifier: str,
        password: str,
        response: AuthResult,
    ) -> LocalUser:
        """
        Store a fresh record built only from a successful remote auth response.

        Any previously cached fields for this email are discarded.
        """
        remote_user = response.user
        email = remote_user.get("email") or identifier
        user = LocalUser(
            email=email,
            username=remote_user.get("username") or default_username(email),
            password_hash=hash_password(password, self.salt),
            name=remote_user.get("name"),
            bio=remote_user.get("bio"),
            profile_picture=remote_user.get("profilePicture"),
        )
        async with self.store.transaction() as tx:
            previous = await self._read(tx, email)
            if previous is not None and previous.username != user.username:
                await self._drop_index(tx, previous.username, email)
            await self._write(tx, user)
            if identifier != email and "@" not in identifier and identifier != user.username:
                await tx.set(index_key(identifier), email)

        logger.info("Cached backend credentials for offline use: %s", email)
        return user

    async def clear_all_cached_accounts(self, except_email: Optional[str] = None) -> int:
        """Remove every cached account (and its index entries); return how many records went."""

        async with self.store.transaction() as tx:
            keys = await tx.get_all_keys()
            removed = 0
            for key in keys:
                if key.startswith(USER_PREFIX):
                    if except_email and key == user_key(except_email):
                        continue
                    await tx.remove(key)
                    removed += 1
                elif key.startswith(INDEX_PREFIX):
                    if except_email and await tx.get(key) == except_email:
                        continue
                    await tx.remove(key)

        if removed:
            logger.info("Cleared %d cached accounts", removed)
        return removed

    # ---------- inspection ----------

    async def list_accounts(self) -> List[LocalUser]:
        accounts: List[LocalUser] = []
        for key in await self.store.get_all_keys():
            if key.startswith(USER_PREFIX):
                data = await self.store.get_json(key)
                if isinstance(data, dict):
                    accounts.append(LocalUser.model_validate(data))
        return accounts

    async def get_account(self, identifier: str) -> Optional[LocalUser]:
        return await self._find(identifier)
