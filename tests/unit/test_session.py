"""Unit tests for provider credential caching and authorization."""

from __future__ import annotations

import httpx
import pytest
from jose import jwt

from messaging.exceptions import AuthenticationUnavailable, NoCredentialsConfigured
from messaging.session import (
    LOGIN_PATHS,
    AuthSession,
    ProviderCredentials,
    classify_credential,
)
from messaging.types import CredentialKind

BASE_URL = "https://provider.local/api"


class _FakeClock:
    """Controllable wall clock for expiry tests."""

    def __init__(self) -> None:
        self.current = 1_000.0

    def now(self) -> float:
        """Return current synthetic time."""
        return self.current


def _token(claims: dict[str, object] | None = None) -> str:
    return jwt.encode(claims or {"sub": "manager"}, "secret", algorithm="HS256")


def test_classify_credential() -> None:
    """Three dot-separated segments is a JWT; anything else is a static key."""
    assert classify_credential("a.b.c") is CredentialKind.JWT
    assert classify_credential("plain-key") is CredentialKind.STATIC_KEY
    assert classify_credential("a..c") is CredentialKind.STATIC_KEY


@pytest.mark.asyncio
async def test_login_happens_once_within_ttl() -> None:
    """Repeated credential reads reuse the cached token."""
    login_calls = 0
    token = _token()

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal login_calls
        login_calls += 1
        return httpx.Response(200, json={"token": token})

    clock = _FakeClock()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        session = AuthSession(
            http_client,
            BASE_URL,
            ProviderCredentials(email="ops@shop.local", password="pw"),
            ttl_seconds=60,
            now=clock.now,
        )
        first = await session.get_credential()
        clock.current += 59
        second = await session.get_credential()

    assert login_calls == 1
    assert first is second
    assert first.kind is CredentialKind.JWT


@pytest.mark.asyncio
async def test_expired_credential_is_minted_again() -> None:
    """Passing the TTL triggers exactly one more login."""
    login_calls = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal login_calls
        login_calls += 1
        return httpx.Response(200, json={"data": {"token": _token({"n": login_calls})}})

    clock = _FakeClock()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        session = AuthSession(
            http_client,
            BASE_URL,
            ProviderCredentials(email="ops@shop.local", password="pw"),
            ttl_seconds=60,
            now=clock.now,
        )
        await session.get_credential()
        clock.current += 60
        await session.get_credential()

    assert login_calls == 2


@pytest.mark.asyncio
async def test_exp_claim_caps_expiry() -> None:
    """A token expiring before the default TTL keeps its own expiry."""
    clock = _FakeClock()
    token = _token({"exp": int(clock.current) + 30})

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"accessToken": token})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        session = AuthSession(
            http_client,
            BASE_URL,
            ProviderCredentials(email="ops@shop.local", password="pw"),
            now=clock.now,
        )
        credential = await session.get_credential()

    assert credential.expires_at == clock.current + 30


@pytest.mark.asyncio
async def test_login_falls_through_paths_in_order() -> None:
    """Failed login paths are skipped until one returns a token."""
    seen_paths: list[str] = []
    token = _token()

    async def handler(request: httpx.Request) -> httpx.Response:
        seen_paths.append(request.url.path)
        if len(seen_paths) == 1:
            return httpx.Response(404, text="<html>not found</html>")
        if len(seen_paths) == 2:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"token": token})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        session = AuthSession(
            http_client, BASE_URL, ProviderCredentials(email="ops@shop.local", password="pw")
        )
        await session.get_credential()

    assert seen_paths == [f"/api{path}" for path in LOGIN_PATHS[:3]]


@pytest.mark.asyncio
async def test_static_key_used_when_login_fails() -> None:
    """A configured API key is the fallback after every login path fails."""

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "bad credentials"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        session = AuthSession(
            http_client,
            BASE_URL,
            ProviderCredentials(email="ops@shop.local", password="pw", api_key="static-key"),
        )
        credential = await session.get_credential()

    assert credential.value == "static-key"
    assert credential.kind is CredentialKind.STATIC_KEY
    assert credential.expires_at is None


@pytest.mark.asyncio
async def test_all_logins_failing_without_key_raises() -> None:
    """Login configured but unusable surfaces as authentication unavailable."""

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="not json")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        session = AuthSession(
            http_client, BASE_URL, ProviderCredentials(email="ops@shop.local", password="pw")
        )
        with pytest.raises(AuthenticationUnavailable):
            await session.get_credential()


@pytest.mark.asyncio
async def test_no_credentials_configured_raises_without_requests() -> None:
    """Nothing configured fails fast without touching the network."""

    async def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        session = AuthSession(http_client, BASE_URL, ProviderCredentials())
        with pytest.raises(NoCredentialsConfigured):
            await session.get_credential()


@pytest.mark.asyncio
async def test_global_key_is_used_when_instance_key_missing() -> None:
    """The global key backs up a missing instance API key."""
    async with httpx.AsyncClient() as http_client:
        session = AuthSession(
            http_client, BASE_URL, ProviderCredentials(global_api_key="global-key")
        )
        credential = await session.get_credential()

    assert credential.value == "global-key"


@pytest.mark.asyncio
async def test_authorize_uses_scheme_matching_kind() -> None:
    """JWTs go in a bearer header; static keys go in the apikey header."""
    async with httpx.AsyncClient() as http_client:
        key_session = AuthSession(http_client, BASE_URL, ProviderCredentials(api_key="k-1"))
        await key_session.get_credential()
        key_request = key_session.authorize(http_client.build_request("GET", BASE_URL))

        jwt_value = _token()
        jwt_session = AuthSession(http_client, BASE_URL, ProviderCredentials(api_key=jwt_value))
        await jwt_session.get_credential()
        jwt_request = jwt_session.authorize(http_client.build_request("GET", BASE_URL))

    assert key_request.headers["apikey"] == "k-1"
    assert "Authorization" not in key_request.headers
    assert jwt_request.headers["Authorization"] == f"Bearer {jwt_value}"


@pytest.mark.asyncio
async def test_authorize_without_credential_raises() -> None:
    """Requests cannot be authorized before a credential is minted."""
    async with httpx.AsyncClient() as http_client:
        session = AuthSession(http_client, BASE_URL, ProviderCredentials(api_key="k-1"))
        with pytest.raises(NoCredentialsConfigured):
            session.authorize(http_client.build_request("GET", BASE_URL))


@pytest.mark.asyncio
async def test_repeated_unauthorized_expires_credential() -> None:
    """Two consecutive 401s force a new login; a success resets the streak."""
    login_calls = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal login_calls
        login_calls += 1
        return httpx.Response(200, json={"token": _token({"n": login_calls})})

    clock = _FakeClock()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        session = AuthSession(
            http_client,
            BASE_URL,
            ProviderCredentials(email="ops@shop.local", password="pw"),
            now=clock.now,
        )
        first = await session.get_credential()

        session.record_response(401)
        session.record_response(200)
        session.record_response(401)
        assert await session.get_credential() is first

        session.record_response(401)
        request = session.authorize(http_client.build_request("GET", BASE_URL))
        assert request.headers["Authorization"] == f"Bearer {first.value}"

        second = await session.get_credential()

    assert login_calls == 2
    assert second.value != first.value
