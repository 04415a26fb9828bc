"""
Login / signup orchestration across the backend and the offline vault.

    PROBE -> unavailable -> LOCAL_AUTH -> DONE
    PROBE -> available   -> REMOTE_AUTH -> CACHE_LOCALLY -> MERGE_PROFILE -> DONE
    REMOTE_AUTH failed   -> LOCAL_AUTH -> DONE

Input validation runs before any I/O. Remote and local failures reach the
caller as a single AuthError whose message comes from the last attempt.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..core.auth import MIN_PASSWORD_LENGTH, LocalCredentialVault
from ..core.errors import AuthError, ConflictError, CramodoroError, NetworkError, NotFoundError, ValidationError
from ..core.schemas import AuthResult, Deck, LocalUser
from ..core.session import SessionState, email_from_offline_token, is_offline_token, make_offline_token
from .api_client import APIClient
from .decks_service import UserDeckStore
from .health import BackendHealthProber
from .sync_service import SyncQueueManager

logger = logging.getLogger(__name__)

_EMAIL = TypeAdapter(EmailStr)

REMOTE_PROFILE_FIELDS = ("name", "bio", "fontSize", "profilePicture")


def is_valid_email(value: str) -> bool:
    try:
        _EMAIL.validate_python(value)
    except PydanticValidationError:
        return False
    return True


def validate_login(identifier: str, password: str) -> str:
    identifier = (identifier or "").strip()
    if not identifier:
        raise ValidationError("Please enter your username or email")
    if "@" in identifier and not is_valid_email(identifier):
        raise ValidationError("Please enter a valid email address")
    if not password:
        raise ValidationError("Please enter your password")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return identifier


def validate_signup(email: str, password: str, confirm_password: str) -> str:
    email = (email or "").strip()
    if not email or not is_valid_email(email):
        raise ValidationError("Please enter a valid email address")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if password != confirm_password:
        raise ValidationError("Passwords do not match")
    return email


def validate_profile_update(fields: Dict[str, Any]) -> None:
    """Same limits the backend enforces on PUT /users/profile."""

    if "name" in fields:
        name = (fields["name"] or "").strip()
        if not 1 <= len(name) <= 50:
            raise ValidationError("Name must be between 1 and 50 characters")
    if fields.get("bio") is not None and len(fields["bio"]) > 500:
        raise ValidationError("Bio must be less than 500 characters")
    if fields.get("fontSize") is not None:
        try:
            size = int(fields["fontSize"])
        except (TypeError, ValueError):
            raise ValidationError("Font size must be between 10 and 24") from None
        if not 10 <= size <= 24:
            raise ValidationError("Font size must be between 10 and 24")
    if fields.get("email") and not is_valid_email(fields["email"]):
        raise ValidationError("Please enter a valid email address")


class AuthService:
    def __init__(
        self,
        session: SessionState,
        vault: LocalCredentialVault,
        prober: BackendHealthProber,
        client: APIClient,
        sync: SyncQueueManager,
        decks: UserDeckStore,
    ) -> None:
        self.session = session
        self.vault = vault
        self.prober = prober
        self.client = client
        self.sync = sync
        self.decks = decks

    # ---------- login / signup ----------

    async def login(self, username_or_email: str, password: str) -> AuthResult:
        identifier = validate_login(username_or_email, password)

        result: Optional[AuthResult] = None
        if await self.prober.check_health():
            try:
                result = await self.client.login(identifier, password)
            except CramodoroError as exc:
                logger.warning("Remote login failed, trying offline account: %s", exc.message)
            else:
                await self._cache_locally(identifier, password, result)
                result = await self._merge_profile(result)

        if result is None:
            result = await self._local(self.vault.login(identifier, password))

        await self._complete(result, fresh_remote=result.mode == "remote")
        return result

    async def signup(self, email: str, password: str, confirm_password: str) -> AuthResult:
        email = validate_signup(email, password, confirm_password)

        result: Optional[AuthResult] = None
        if await self.prober.check_health():
            try:
                result = await self.client.signup(email, password, confirm_password)
            except CramodoroError as exc:
                logger.warning("Remote signup failed, creating offline account: %s", exc.message)
            else:
                await self._cache_locally(email, password, result)

        if result is None:
            result = await self._local(self.vault.signup(email, password, confirm_password))

        await self._complete(result, fresh_remote=result.mode == "remote")
        return result

    @staticmethod
    async def _local(attempt: Any) -> AuthResult:
        try:
            return await attempt
        except (AuthError, NotFoundError, ConflictError) as exc:
            raise AuthError(exc.message) from exc

    async def _cache_locally(self, identifier: str, password: str, result: AuthResult) -> None:
        try:
            await self.vault.cache_backend_user(identifier, password, result)
        except Exception:
            logger.warning("Could not cache credentials for offline use", exc_info=True)

    async def _merge_profile(self, result: AuthResult) -> AuthResult:
        """bio / profilePicture are not in the auth response; fetch and merge them."""

        try:
            profile = await self.client.get_profile(result.token)
        except CramodoroError as exc:
            logger.warning("Could not fetch full profile, keeping basic data: %s", exc.message)
            return result
        return result.model_copy(update={"user": {**result.user, **profile}})

    async def _complete(self, result: AuthResult, fresh_remote: bool) -> None:
        await self.session.save(result.token, result.user)
        await self.decks.clear_current_decks()

        # remote ids are server object ids, never emails
        email = result.user.get("email")
        if is_offline_token(result.token):
            email = email_from_offline_token(result.token) or email
            if email:
                decks = await self.decks.load_user_decks(email)
                logger.info("Offline login for %s: loaded %d decks", email, len(decks))
        else:
            await self._load_remote_decks(result.token, email)

        if not fresh_remote:
            return

        try:
            await self.vault.clear_all_cached_accounts(except_email=email)
        except Exception:
            logger.warning("Could not clear other cached accounts", exc_info=True)
        try:
            await self.sync.clear()
        except Exception:
            logger.warning("Could not clear sync queue", exc_info=True)
        self.sync.setup_auto_sync(result.token)
        try:
            await self.sync.drain(result.token)
        except Exception:
            logger.warning("Initial sync failed", exc_info=True)

    async def _load_remote_decks(self, token: str, email: Optional[str]) -> None:
        try:
            remote = await self.client.list_decks(token)
        except CramodoroError as exc:
            logger.warning("Could not fetch decks from backend: %s", exc.message)
            if email:
                await self.decks.load_user_decks(email)
            return
        decks = [Deck.from_remote(item).to_store() for item in remote]
        await self.decks.save_decks(decks, email)
        logger.info("Loaded %d decks from backend", len(decks))

    # ---------- session lifecycle ----------

    async def restore_session(self) -> Optional[AuthResult]:
        """Resume a stored session on start-up; remote sessions get auto-sync back."""

        token = await self.session.get_token()
        user = await self.session.get_user()
        if not token or user is None:
            return None
        mode = "offline" if is_offline_token(token) else "remote"
        if mode == "remote":
            self.sync.setup_auto_sync(token)
            await self.sync.drain(token)
        return AuthResult(token=token, user=user, mode=mode)

    async def logout(self) -> None:
        self.sync.stop_auto_sync()
        self.prober.reset()
        await self.session.clear()
        await self.decks.clear_current_decks()
        logger.info("Logged out")

    async def _require_token(self) -> str:
        token = await self.session.get_token()
        if not token:
            raise AuthError("Not logged in")
        return token

    # ---------- profile ----------

    async def get_profile(self) -> Dict[str, Any]:
        token = await self._require_token()
        if not is_offline_token(token) and await self.prober.check_health():
            try:
                profile = await self.client.get_profile(token)
            except CramodoroError as exc:
                logger.warning("Could not fetch profile from backend: %s", exc.message)
            else:
                await self.session.update_user(profile)
                return profile
        return await self.vault.get_profile(token)

    async def update_profile(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        token = await self._require_token()
        validate_profile_update(fields)

        old_email = await self.session.resolve_email(token)
        new_email = fields.get("email")
        if new_email and new_email != old_email and await self.vault.get_account(new_email) is not None:
            raise ConflictError("Another account already uses this email")

        # a rejected remote update leaves local state untouched
        remote_fields = {key: fields[key] for key in REMOTE_PROFILE_FIELDS if fields.get(key) is not None}
        queue_remote = False
        if remote_fields:
            if not is_offline_token(token) and await self.prober.check_health():
                try:
                    await self.client.update_profile(token, remote_fields)
                except NetworkError as exc:
                    logger.warning("Profile update not sent, queueing it: %s", exc.message)
                    queue_remote = True
            else:
                queue_remote = True

        updated = await self.vault.update_profile(token, fields)
        snapshot = {key: value for key, value in fields.items() if value is not None}
        if old_email and updated["email"] != old_email:
            await self.decks.move_user_decks(old_email, updated["email"])
            if is_offline_token(token):
                token = make_offline_token(updated["email"])
                user = {**(await self.session.get_user() or {}), **snapshot, "id": updated["email"]}
                await self.session.save(token, user)
                snapshot = {}
        if snapshot:
            await self.session.update_user(snapshot)

        if queue_remote:
            await self.sync.enqueue("profile", "update", remote_fields)
        return updated

    async def delete_account(self) -> None:
        token = await self._require_token()
        if not is_offline_token(token):
            if not await self.prober.check_health():
                raise NetworkError("The backend is unreachable; try again when online")
            await self.client.delete_account(token)
        try:
            await self.vault.delete_account(token)
        except NotFoundError:
            logger.info("No offline account to delete")
        await self.logout()

    # ---------- offline caching ----------

    async def cache_account_for_offline(self, identifier: str, password: str) -> LocalUser:
        """
        Log in remotely, cache the account, then prove an offline login works.

        Errors propagate; nothing is cached when the remote login fails.
        """
        identifier = validate_login(identifier, password)
        response = await self.client.login(identifier, password)
        user = await self.vault.cache_backend_user(identifier, password, response)
        await self.vault.login(user.email, password)
        logger.info("Account %s is now available offline", user.email)
        return user
