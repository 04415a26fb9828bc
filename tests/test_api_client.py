"""Tests for the REST client and its base-URL fallback."""
import pytest
import pytest_asyncio

from cramodoro.core.errors import NetworkError, RemoteRejection
from cramodoro.services.api_client import APIClient
from cramodoro.services.health import BackendHealthProber

from .fake_backend import LAN_HOST, LAN_URL, TUNNEL_HOST, TUNNEL_URL, FakeBackend, RoutingTransport


@pytest_asyncio.fixture
async def client(transport: RoutingTransport) -> APIClient:
    client = APIClient(BackendHealthProber(LAN_URL, TUNNEL_URL, transport=transport), transport=transport)
    yield client
    await client.close()


@pytest.mark.asyncio
async def test_signup_and_login(client: APIClient, backend: FakeBackend) -> None:
    signup = await client.signup("ada@example.com", "secret123", "secret123")
    assert signup.mode == "remote"
    assert signup.user["email"] == "ada@example.com"

    login = await client.login("ada", "secret123")
    assert backend.tokens[login.token] == "ada@example.com"

    profile = await client.get_profile(login.token)
    assert profile["username"] == "ada"
    assert "password" not in profile


@pytest.mark.asyncio
async def test_error_body_message_is_surfaced(client: APIClient, transport: RoutingTransport) -> None:
    with pytest.raises(RemoteRejection) as info:
        await client.login("nobody@example.com", "secret123")

    assert info.value.message == "Invalid credentials"
    assert info.value.status == 401
    # rejections are not retried against the other base URL
    assert len(transport.calls("POST", "/api/auth/login")) == 1


@pytest.mark.asyncio
async def test_falls_back_to_next_url_on_network_failure(
    client: APIClient, backend: FakeBackend, transport: RoutingTransport
) -> None:
    backend.add_user("ada@example.com", "secret123")
    transport.offline_hosts.add(LAN_HOST)

    result = await client.login("ada@example.com", "secret123")

    assert result.mode == "remote"
    hosts = [r.url.host for r in transport.calls("POST", "/api/auth/login")]
    assert hosts == [LAN_HOST, TUNNEL_HOST]


@pytest.mark.asyncio
async def test_prefers_tunnel_after_successful_probe(client: APIClient, transport: RoutingTransport) -> None:
    assert await client.prober.check_health()

    await client.health()

    assert transport.requests[-1].url.host == TUNNEL_HOST


@pytest.mark.asyncio
async def test_all_urls_down_raises_network_error(client: APIClient, transport: RoutingTransport) -> None:
    transport.go_offline()

    with pytest.raises(NetworkError, match="is the backend server running"):
        await client.login("ada@example.com", "secret123")
    assert len(transport.calls("POST", "/api/auth/login")) == 2


@pytest.mark.asyncio
async def test_timeout_is_classified(client: APIClient, transport: RoutingTransport) -> None:
    transport.timeout_hosts.update({LAN_HOST, TUNNEL_HOST})

    with pytest.raises(NetworkError, match="timed out"):
        await client.list_decks("jwt-token")


@pytest.mark.asyncio
async def test_deck_endpoints(client: APIClient, backend: FakeBackend, transport: RoutingTransport) -> None:
    token = (await client.signup("ada@example.com", "secret123", "secret123")).token

    created = await client.create_deck(token, {"name": "Biology", "cards": []}, idempotency_key="entry-1")
    deck_id = created["deck"]["_id"]
    again = await client.create_deck(token, {"name": "Biology", "cards": []}, idempotency_key="entry-1")

    assert again["deck"]["_id"] == deck_id
    assert len(backend.decks) == 1
    assert transport.calls("POST", "/api/decks")[0].headers["Idempotency-Key"] == "entry-1"

    await client.update_deck(token, deck_id, {"name": "Cell Biology"})
    assert [d["name"] for d in await client.list_decks(token)] == ["Cell Biology"]

    await client.delete_deck(token, deck_id)
    with pytest.raises(RemoteRejection) as info:
        await client.delete_deck(token, deck_id)
    assert info.value.status == 404
    assert info.value.message == "Deck not found"


@pytest.mark.asyncio
async def test_missing_token_in_auth_response(client: APIClient, backend: FakeBackend) -> None:
    backend.fail("POST", "/api/auth/login", status=200, message="ok")

    with pytest.raises(RemoteRejection, match="did not return a token"):
        await client.login("ada@example.com", "secret123")
