"""Tests for identity tokens and the session snapshot."""
import pytest

from cramodoro.core.session import (
    SessionState,
    email_from_offline_token,
    is_offline_token,
    make_offline_token,
)


def test_offline_token_round_trip() -> None:
    token = make_offline_token("ada@example.com", timestamp=1700000000000)

    assert token == "offline_ada@example.com_1700000000000"
    assert is_offline_token(token)
    assert email_from_offline_token(token) == "ada@example.com"


def test_offline_token_with_underscore_in_email() -> None:
    token = make_offline_token("ada_lovelace@example.com")

    assert email_from_offline_token(token) == "ada_lovelace@example.com"


@pytest.mark.parametrize("token", ["eyJhbGciOi.remote", "offline_", "offline_ada@example.com_notanumber", ""])
def test_email_from_malformed_or_remote_token(token: str) -> None:
    assert email_from_offline_token(token) is None


@pytest.mark.asyncio
async def test_save_update_and_clear(session: SessionState) -> None:
    await session.save("jwt-token", {"id": "507f", "email": "ada@example.com", "name": "Ada"})

    assert await session.get_token() == "jwt-token"
    assert await session.current_email() == "ada@example.com"

    user = await session.update_user({"bio": "Mathematician"})
    assert user["bio"] == "Mathematician"
    assert (await session.get_user())["name"] == "Ada"

    await session.clear()
    assert await session.get_token() is None
    assert await session.get_user() is None
    assert await session.update_user({"bio": "x"}) is None


@pytest.mark.asyncio
async def test_resolve_email(session: SessionState) -> None:
    assert await session.resolve_email(None) is None
    assert await session.resolve_email("jwt-token") is None

    await session.save("jwt-token", {"id": "ada@example.com"})
    assert await session.resolve_email("jwt-token") == "ada@example.com"
    assert await session.resolve_email("offline_bob@example.com_1") == "bob@example.com"
