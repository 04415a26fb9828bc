"""Error types shared by the local vault, the API client and the services."""

from __future__ import annotations

from typing import Any, Dict, Optional


class CramodoroError(Exception):
    """Base error; ``message`` is safe to show to the user."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(CramodoroError):
    """Input rejected before any storage or network I/O."""


class ConflictError(CramodoroError):
    """An account already exists under the requested key."""


class AuthError(CramodoroError):
    """Credentials did not match."""


class NotFoundError(CramodoroError):
    """A local record (or the identity owning a token) could not be found."""


class NetworkError(CramodoroError):
    """Timeout, abort or connection failure on every configured base URL."""


class RemoteRejection(CramodoroError):
    """The backend answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status: int,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.payload = payload or {}
