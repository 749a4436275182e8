from __future__ import annotations

import time
from typing import Any
from urllib.parse import parse_qs, urlparse

import jwt
import pytest

from hourlog.identity import (
    IdentityError,
    MicrosoftIdentityProvider,
    StaticIdentityProvider,
    TokenCache,
    TokenSet,
    is_admin,
)


class FakeResponse:
    def __init__(self, status_code: int, payload: dict[str, Any]) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> dict[str, Any]:
        return self._payload


class FakeSession:
    def __init__(self, responses: list[FakeResponse]) -> None:
        self.responses = list(responses)
        self.posts: list[dict[str, Any]] = []

    def post(self, url, data=None, timeout=None):
        self.posts.append({"url": url, "data": data})
        return self.responses.pop(0)


def _id_token(email: str, name: str = "Alice Example") -> str:
    return jwt.encode({"preferred_username": email, "name": name}, "test-secret-key-32-chars-aaaaaaaa", algorithm="HS256")


def _provider(session: FakeSession) -> MicrosoftIdentityProvider:
    return MicrosoftIdentityProvider(
        tenant_id="tenant-1",
        client_id="client-1",
        client_secret="s3cret",
        redirect_uri="http://localhost:8010/auth/callback",
        session=session,
    )


def test_authorization_url_carries_state_and_scopes() -> None:
    url = _provider(FakeSession([])).authorization_url("state-123")
    parsed = urlparse(url)
    assert parsed.netloc == "login.microsoftonline.com"
    assert parsed.path == "/tenant-1/oauth2/v2.0/authorize"
    query = parse_qs(parsed.query)
    assert query["state"] == ["state-123"]
    assert query["client_id"] == ["client-1"]
    assert "Sites.ReadWrite.All" in query["scope"][0].split()
    assert "offline_access" in query["scope"][0].split()


def test_complete_sign_in_exchanges_code() -> None:
    session = FakeSession(
        [FakeResponse(200, {"access_token": "at-1", "refresh_token": "rt-1", "expires_in": 3600, "id_token": _id_token("alice@example.com")})]
    )
    result = _provider(session).complete_sign_in("auth-code")
    assert result.user.email == "alice@example.com"
    assert result.user.name == "Alice Example"
    assert result.tokens.access_token == "at-1"
    assert result.tokens.refresh_token == "rt-1"
    assert not result.tokens.expired()

    sent = session.posts[0]
    assert sent["url"].endswith("/tenant-1/oauth2/v2.0/token")
    assert sent["data"]["grant_type"] == "authorization_code"
    assert sent["data"]["code"] == "auth-code"
    assert sent["data"]["client_secret"] == "s3cret"


def test_token_endpoint_error_is_reported() -> None:
    session = FakeSession([FakeResponse(400, {"error": "invalid_grant", "error_description": "AADSTS70000: code expired"})])
    with pytest.raises(IdentityError, match="code expired"):
        _provider(session).complete_sign_in("old-code")


def test_silent_sign_in_keeps_refresh_token_when_not_rotated() -> None:
    session = FakeSession([FakeResponse(200, {"access_token": "at-2", "expires_in": 600, "id_token": _id_token("alice@example.com")})])
    result = _provider(session).silent_sign_in("rt-1")
    assert result.tokens.access_token == "at-2"
    assert result.tokens.refresh_token == "rt-1"
    assert session.posts[0]["data"]["grant_type"] == "refresh_token"

    with pytest.raises(IdentityError):
        _provider(FakeSession([])).silent_sign_in("")


def test_token_cache_refreshes_expired_tokens() -> None:
    session = FakeSession([FakeResponse(200, {"access_token": "fresh", "refresh_token": "rt-2", "id_token": _id_token("alice@example.com")})])
    provider = _provider(session)
    cache = TokenCache()
    cache.put("sid-1", TokenSet(access_token="stale", refresh_token="rt-1", expires_at=time.time() - 10))

    assert cache.access_token("sid-1", provider) == "fresh"
    assert cache.get("sid-1").refresh_token == "rt-2"
    assert cache.access_token("sid-1", provider) == "fresh"
    assert len(session.posts) == 1

    cache.drop("sid-1")
    with pytest.raises(IdentityError):
        cache.access_token("sid-1", provider)


def test_token_cache_drops_session_when_refresh_fails() -> None:
    session = FakeSession([FakeResponse(400, {"error": "invalid_grant", "error_description": "refresh token revoked"})])
    cache = TokenCache()
    cache.put("sid-1", TokenSet(access_token="stale", refresh_token="rt-1", expires_at=time.time() - 10))

    with pytest.raises(IdentityError):
        cache.access_token("sid-1", _provider(session))
    assert cache.get("sid-1") is None
    assert len(cache) == 0


def test_token_cache_prunes_idle_sessions() -> None:
    cache = TokenCache(max_idle=3600)
    tokens = TokenSet(access_token="at", refresh_token="rt", expires_at=time.time() + 600)
    cache.put("old", tokens, now=1000.0)
    cache.put("active", tokens, now=1000.0)
    assert cache.get("active", now=4000.0) is tokens

    cache.put("new", tokens, now=4700.0)
    assert len(cache) == 2
    assert cache.get("old", now=4700.0) is None
    assert cache.get("active", now=4700.0) is tokens
    assert cache.get("new", now=9000.0) is None


def test_static_provider_trusts_email() -> None:
    provider = StaticIdentityProvider()
    result = provider.complete_sign_in(" bob@example.com ")
    assert result.user.email == "bob@example.com"
    assert provider.silent_sign_in(result.tokens.refresh_token).user.email == "bob@example.com"
    with pytest.raises(IdentityError):
        provider.complete_sign_in("not-an-email")


def test_is_admin_ignores_case() -> None:
    admins = ("admin@example.com",)
    assert is_admin("Admin@Example.com", admins)
    assert not is_admin("alice@example.com", admins)
    assert not is_admin(None, admins)
