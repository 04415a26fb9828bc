"""In-process stand-in for the Cramodoro REST API used by the client tests."""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import httpx
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from cramodoro.core.events import NetworkState

LAN_HOST = "lan.local"
TUNNEL_HOST = "tunnel.example"
LAN_URL = f"http://{LAN_HOST}:5000/api"
TUNNEL_URL = f"https://{TUNNEL_HOST}/api"
SALT = "cramodoro-salt-2026-secure"

OFFLINE = NetworkState(is_connected=False, is_internet_reachable=False)
ONLINE = NetworkState(is_connected=True, is_internet_reachable=True)


def _object_id() -> str:
    return uuid.uuid4().hex[:24]


@dataclass
class FailureRule:
    method: str
    path: str
    status: int
    message: str
    times: int


@dataclass
class FakeBackend:
    """Users, tokens and decks held in memory, plus one-shot failure injection."""

    users: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    tokens: Dict[str, str] = field(default_factory=dict)
    decks: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    idempotency: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    failures: List[FailureRule] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.app = self._build_app()

    # ---------- test helpers ----------

    def add_user(self, email: str, password: str, username: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
        user = {
            "id": _object_id(),
            "email": email,
            "username": username or email.split("@")[0],
            "password": password,
            "name": fields.get("name"),
            "bio": fields.get("bio", ""),
            "profilePicture": fields.get("profilePicture"),
            "fontSize": fields.get("fontSize", 16),
        }
        self.users[email] = user
        return user

    def add_deck(self, email: str, name: str, cards: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
        deck = {
            "_id": _object_id(),
            "userId": self.users[email]["id"],
            "name": name,
            "pomodoroMinutes": 25,
            "restMinutes": 5,
            "cards": cards or [],
        }
        self.decks[deck["_id"]] = deck
        return deck

    def issue_token(self, email: str) -> str:
        token = f"jwt-{uuid.uuid4().hex}"
        self.tokens[token] = email
        return token

    def decks_of(self, email: str) -> List[Dict[str, Any]]:
        return self.decks_of_id(self.users[email]["id"])

    def fail(self, method: str, path: str, status: int = 500, message: str = "Internal server error", times: int = 1) -> None:
        """Answer the next ``times`` requests matching ``method`` and ``path`` prefix with an error."""

        self.failures.append(FailureRule(method.upper(), path, status, message, times))

    def _take_failure(self, method: str, path: str) -> Optional[FailureRule]:
        for rule in self.failures:
            if rule.method == method and path.startswith(rule.path):
                rule.times -= 1
                if rule.times <= 0:
                    self.failures.remove(rule)
                return rule
        return None

    @staticmethod
    def _public(user: Dict[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in user.items() if key != "password"}

    # ---------- app ----------

    def _build_app(self) -> FastAPI:
        backend = self
        app = FastAPI(title="Fake Cramodoro backend")
        router = APIRouter(prefix="/api")

        @app.exception_handler(HTTPException)
        async def _error_body(request: Request, exc: HTTPException) -> JSONResponse:
            return JSONResponse(
                status_code=exc.status_code,
                content={"error": {"message": exc.detail, "status": exc.status_code}},
            )

        @app.middleware("http")
        async def _inject_failures(request: Request, call_next):
            rule = backend._take_failure(request.method, request.url.path)
            if rule is not None:
                return JSONResponse(
                    status_code=rule.status,
                    content={"error": {"message": rule.message, "status": rule.status}},
                )
            return await call_next(request)

        def current_user(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
            token = (authorization or "").removeprefix("Bearer ").strip()
            email = backend.tokens.get(token)
            if email is None or email not in backend.users:
                raise HTTPException(status_code=401, detail="No token, authorization denied")
            return backend.users[email]

        def owned_deck(deck_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
            deck = backend.decks.get(deck_id)
            if deck is None or deck["userId"] != user["id"]:
                raise HTTPException(status_code=404, detail="Deck not found")
            return deck

        @router.get("/health")
        async def health() -> Dict[str, str]:
            return {"status": "OK", "message": "Cramodoro API is running"}

        @router.post("/auth/signup", status_code=201)
        async def signup(payload: Dict[str, Any]) -> Dict[str, Any]:
            email = payload.get("email", "")
            if payload.get("password") != payload.get("confirmPassword"):
                raise HTTPException(status_code=400, detail="Passwords do not match")
            if email in backend.users:
                raise HTTPException(status_code=400, detail="User with this email already exists")
            user = backend.add_user(email, payload.get("password", ""))
            return {
                "message": "User created successfully",
                "token": backend.issue_token(email),
                "user": {"id": user["id"], "email": email, "name": user["name"], "bio": user["bio"]},
            }

        @router.post("/auth/login")
        async def login(payload: Dict[str, Any]) -> Dict[str, Any]:
            identifier = payload.get("usernameOrEmail", "")
            user = backend.users.get(identifier.lower())
            if user is None:
                user = next((u for u in backend.users.values() if u["username"] == identifier), None)
            if user is None or user["password"] != payload.get("password"):
                raise HTTPException(status_code=401, detail="Invalid credentials")
            return {
                "message": "Login successful",
                "token": backend.issue_token(user["email"]),
                "user": {"id": user["id"], "email": user["email"], "name": user["name"], "bio": user["bio"]},
            }

        @router.get("/users/profile")
        async def get_profile(user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
            return {"user": backend._public(user)}

        @router.put("/users/profile")
        async def update_profile(
            payload: Dict[str, Any], user: Dict[str, Any] = Depends(current_user)
        ) -> Dict[str, Any]:
            if "name" in payload and not 1 <= len((payload["name"] or "").strip()) <= 50:
                raise HTTPException(status_code=400, detail="Name must be between 1 and 50 characters")
            for key in ("name", "bio", "fontSize", "profilePicture"):
                if key in payload:
                    user[key] = payload[key]
            return {"message": "Profile updated successfully", "user": backend._public(user)}

        @router.delete("/users/profile")
        async def delete_profile(user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
            backend.users.pop(user["email"], None)
            for deck in backend.decks_of_id(user["id"]):
                backend.decks.pop(deck["_id"], None)
            return {"message": "Account deleted successfully"}

        @router.get("/decks")
        async def list_decks(user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
            return {"decks": backend.decks_of_id(user["id"])}

        @router.post("/decks", status_code=201)
        async def create_deck(
            payload: Dict[str, Any],
            user: Dict[str, Any] = Depends(current_user),
            idempotency_key: Optional[str] = Header(None),
        ) -> Dict[str, Any]:
            if idempotency_key and idempotency_key in backend.idempotency:
                return {"deck": backend.idempotency[idempotency_key]}
            deck = {
                "_id": _object_id(),
                "userId": user["id"],
                "name": payload.get("name"),
                "pomodoroMinutes": payload.get("pomodoroMinutes", 25),
                "restMinutes": payload.get("restMinutes", 5),
                "cards": payload.get("cards") or [],
            }
            backend.decks[deck["_id"]] = deck
            if idempotency_key:
                backend.idempotency[idempotency_key] = deck
            return {"deck": deck}

        @router.put("/decks/{deck_id}")
        async def update_deck(
            deck_id: str, payload: Dict[str, Any], user: Dict[str, Any] = Depends(current_user)
        ) -> Dict[str, Any]:
            deck = owned_deck(deck_id, user)
            for key in ("name", "pomodoroMinutes", "restMinutes", "cards"):
                if key in payload:
                    deck[key] = payload[key]
            return {"deck": deck}

        @router.delete("/decks/{deck_id}")
        async def delete_deck(deck_id: str, user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
            owned_deck(deck_id, user)
            backend.decks.pop(deck_id)
            return {"message": "Deck deleted successfully"}

        app.include_router(router)
        return app

    def decks_of_id(self, user_id: str) -> List[Dict[str, Any]]:
        return [deck for deck in self.decks.values() if deck["userId"] == user_id]


class RoutingTransport(httpx.AsyncBaseTransport):
    """
    Sends every request to the fake backend, unless its host is marked
    offline (connection refused) or slow (read timeout).
    """

    def __init__(self, app: FastAPI) -> None:
        self._inner = httpx.ASGITransport(app=app)
        self.offline_hosts: Set[str] = set()
        self.timeout_hosts: Set[str] = set()
        self.requests: List[httpx.Request] = []

    def go_offline(self) -> None:
        self.offline_hosts.update({LAN_HOST, TUNNEL_HOST})

    def go_online(self) -> None:
        self.offline_hosts.clear()
        self.timeout_hosts.clear()

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host in self.timeout_hosts:
            raise httpx.ReadTimeout("timed out", request=request)
        if host in self.offline_hosts:
            raise httpx.ConnectError("connection refused", request=request)
        return await self._inner.handle_async_request(request)


async def start_tcp_listener() -> asyncio.AbstractServer:
    """Local port that accepts and drops connections, standing in for a reachable backend host."""

    return await asyncio.start_server(lambda reader, writer: writer.close(), "127.0.0.1", 0)


async def closed_port() -> int:
    """A local port nothing listens on."""

    server = await start_tcp_listener()
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()
    return port
