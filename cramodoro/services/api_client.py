"""
HTTP API client for talking to the Cramodoro backend.

Usage pattern:

    prober = BackendHealthProber(settings.lan_url, settings.tunnel_url)
    client = APIClient(prober, timeout=settings.request_timeout)

    result = await client.login("ada@example.com", "secret123")
    decks = await client.list_decks(result.token)

Every request tries the base URLs in the order the prober prefers (LAN or
tunnel first). Only network-class failures move on to the next URL; an
HTTP error answer from the backend is raised straight away.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..core.errors import NetworkError, RemoteRejection
from ..core.schemas import AuthResult
from .health import BackendHealthProber

logger = logging.getLogger(__name__)

NETWORK_FAILURE_MESSAGE = "Network request failed - is the backend server running?"


class APIClient:
    """Reusable HTTP client for the Cramodoro backend."""

    def __init__(
        self,
        prober: BackendHealthProber,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.prober = prober
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    # ---------- Internal helpers ----------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    @staticmethod
    def _auth_header(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    @staticmethod
    def _parse_response(resp: httpx.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            data = None

        if not resp.is_success:
            message = "Something went wrong"
            if isinstance(data, dict):
                error = data.get("error")
                if isinstance(error, dict) and error.get("message"):
                    message = error["message"]
                elif data.get("message"):
                    message = data["message"]
            raise RemoteRejection(message, status=resp.status_code, payload=data if isinstance(data, dict) else None)

        return data if isinstance(data, dict) else {}

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        token: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Send one request, falling back to the next base URL on network failure.

        Raises NetworkError once every URL failed at the transport level and
        RemoteRejection for any non-2xx answer.
        """
        client = await self._ensure_client()
        merged_headers = dict(headers or {})
        if token:
            merged_headers.update(self._auth_header(token))

        urls = self.prober.ordered_urls()
        last_exc: Optional[httpx.TransportError] = None
        for base_url in urls:
            url = f"{base_url}{endpoint}"
            try:
                resp = await client.request(method, url, json=json, headers=merged_headers)
            except httpx.TransportError as exc:
                last_exc = exc
                logger.warning("%s %s failed: %r", method, url, exc)
                continue
            return self._parse_response(resp)

        if isinstance(last_exc, httpx.TimeoutException):
            raise NetworkError(f"Request to {endpoint} timed out") from last_exc
        raise NetworkError(NETWORK_FAILURE_MESSAGE) from last_exc

    async def close(self) -> None:
        """Close underlying HTTP connection pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ---- Health check ----

    async def health(self) -> Dict[str, Any]:
        return await self.request("GET", "/health")

    # ---- Authentication ----

    async def signup(self, email: str, password: str, confirm_password: str) -> AuthResult:
        data = await self.request(
            "POST",
            "/auth/signup",
            json={"email": email, "password": password, "confirmPassword": confirm_password},
        )
        return self._auth_result(data, "/auth/signup")

    async def login(self, username_or_email: str, password: str) -> AuthResult:
        data = await self.request(
            "POST",
            "/auth/login",
            json={"usernameOrEmail": username_or_email, "password": password},
        )
        return self._auth_result(data, "/auth/login")

    @staticmethod
    def _auth_result(data: Dict[str, Any], endpoint: str) -> AuthResult:
        token = data.get("token")
        if not token or not isinstance(data.get("user"), dict):
            raise RemoteRejection(f"{endpoint} did not return a token", status=200, payload=data)
        return AuthResult(token=token, user=data["user"], mode="remote")

    # ---- Users ----

    async def get_profile(self, token: str) -> Dict[str, Any]:
        data = await self.request("GET", "/users/profile", token=token)
        return data.get("user") or {}

    async def update_profile(self, token: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("PUT", "/users/profile", token=token, json=fields)

    async def delete_account(self, token: str) -> Dict[str, Any]:
        return await self.request("DELETE", "/users/profile", token=token)

    # ---- Decks ----

    async def list_decks(self, token: str) -> List[Dict[str, Any]]:
        data = await self.request("GET", "/decks", token=token)
        decks = data.get("decks")
        if not isinstance(decks, list):
            raise RemoteRejection("Expected a list of decks from /decks", status=200, payload=data)
        return decks

    async def create_deck(
        self,
        token: str,
        deck: Dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        POST /decks. ``idempotency_key`` is sent unchanged on every attempt so
        a retried create does not produce a second deck.
        """
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        return await self.request("POST", "/decks", token=token, json=deck, headers=headers)

    async def update_deck(self, token: str, deck_id: str, deck: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("PUT", f"/decks/{deck_id}", token=token, json=deck)

    async def delete_deck(self, token: str, deck_id: str) -> Dict[str, Any]:
        return await self.request("DELETE", f"/decks/{deck_id}", token=token)
