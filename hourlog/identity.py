from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Iterable
from urllib.parse import urlencode

import jwt
import requests

from hourlog.config import ConfigError, Settings
from hourlog.entries import validate_email


log = logging.getLogger("hourlog.identity")

AUTHORITY_ROOT = "https://login.microsoftonline.com"
DEFAULT_SCOPES = ("openid", "profile", "offline_access", "User.Read", "Sites.ReadWrite.All")
STATIC_TOKEN_TTL_SECONDS = 12 * 3600
SESSION_MAX_AGE_SECONDS = 14 * 24 * 3600


class IdentityError(RuntimeError):
    pass


@dataclass(frozen=True)
class SignedInUser:
    email: str
    name: str


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    refresh_token: str
    expires_at: float

    def expired(self, *, now: float | None = None, skew: float = 60.0) -> bool:
        current = time.time() if now is None else now
        return current + skew >= self.expires_at


@dataclass(frozen=True)
class SignInResult:
    user: SignedInUser
    tokens: TokenSet


def is_admin(email: str | None, admins: Iterable[str]) -> bool:
    if not email:
        return False
    return email.strip().lower() in {a.strip().lower() for a in admins}


def claims_from_id_token(id_token: str) -> dict[str, Any]:
    # The ID token arrives straight from the token endpoint over TLS.
    try:
        return jwt.decode(id_token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise IdentityError(f"invalid id_token: {e}") from e


def user_from_claims(claims: dict[str, Any]) -> SignedInUser:
    email = str(claims.get("preferred_username") or claims.get("email") or claims.get("upn") or "").strip()
    if not email:
        raise IdentityError("id_token has no email claim")
    name = str(claims.get("name") or email.split("@")[0]).strip()
    return SignedInUser(email=email, name=name)


class BaseIdentityProvider:
    interactive = True

    def authorization_url(self, state: str) -> str:  # pragma: no cover - interface
        raise NotImplementedError

    def complete_sign_in(self, code: str) -> SignInResult:  # pragma: no cover - interface
        raise NotImplementedError

    def silent_sign_in(self, refresh_token: str) -> SignInResult:  # pragma: no cover - interface
        raise NotImplementedError


class MicrosoftIdentityProvider(BaseIdentityProvider):
    """OAuth 2.0 authorization-code flow against the Microsoft identity platform.

    `complete_sign_in` is the interactive half (after the browser redirect),
    `silent_sign_in` trades a refresh token for fresh tokens without user
    interaction.
    """

    def __init__(
        self,
        *,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: Iterable[str] = DEFAULT_SCOPES,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        missing = [name for name, value in (("tenant_id", tenant_id), ("client_id", client_id), ("redirect_uri", redirect_uri)) if not value]
        if missing:
            raise ConfigError(f"OAuth settings missing: {', '.join(missing)}")
        self._authority = f"{AUTHORITY_ROOT}/{tenant_id}/oauth2/v2.0"
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._scopes = " ".join(scopes)
        self._timeout = timeout
        self._session = session or requests.Session()

    def authorization_url(self, state: str) -> str:
        query = urlencode(
            {
                "client_id": self._client_id,
                "response_type": "code",
                "redirect_uri": self._redirect_uri,
                "response_mode": "query",
                "scope": self._scopes,
                "state": state,
                "prompt": "select_account",
            }
        )
        return f"{self._authority}/authorize?{query}"

    def _token_request(self, data: dict[str, str]) -> dict[str, Any]:
        payload = {"client_id": self._client_id, "scope": self._scopes, **data}
        if self._client_secret:
            payload["client_secret"] = self._client_secret
        try:
            response = self._session.post(f"{self._authority}/token", data=payload, timeout=self._timeout)
        except requests.RequestException as e:
            log.error("Token request failed: %s", e)
            raise IdentityError(f"token request failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise IdentityError(f"non-JSON token response: HTTP {response.status_code}") from e
        if response.status_code != 200 or "access_token" not in body:
            description = str(body.get("error_description") or body.get("error") or f"HTTP {response.status_code}")
            log.warning("Token endpoint rejected %s grant: %s", data.get("grant_type"), description.splitlines()[0])
            raise IdentityError(description)
        return body

    def _result(self, body: dict[str, Any], *, previous_refresh: str = "") -> SignInResult:
        claims = claims_from_id_token(str(body.get("id_token") or "")) if body.get("id_token") else {}
        user = user_from_claims(claims)
        tokens = TokenSet(
            access_token=str(body["access_token"]),
            refresh_token=str(body.get("refresh_token") or previous_refresh),
            expires_at=time.time() + float(body.get("expires_in") or 3600),
        )
        return SignInResult(user=user, tokens=tokens)

    def complete_sign_in(self, code: str) -> SignInResult:
        if not code:
            raise IdentityError("authorization code is missing")
        body = self._token_request({"grant_type": "authorization_code", "code": code, "redirect_uri": self._redirect_uri})
        result = self._result(body)
        log.info("Signed in %s", result.user.email)
        return result

    def silent_sign_in(self, refresh_token: str) -> SignInResult:
        if not refresh_token:
            raise IdentityError("no refresh token; interactive sign-in required")
        body = self._token_request({"grant_type": "refresh_token", "refresh_token": refresh_token})
        return self._result(body, previous_refresh=refresh_token)


class StaticIdentityProvider(BaseIdentityProvider):
    """Development sign-in: the login form's email address is trusted as-is."""

    interactive = False

    def authorization_url(self, state: str) -> str:
        return "/login"

    def _issue(self, email: str) -> SignInResult:
        email = email.strip()
        if not validate_email(email):
            raise IdentityError("Please enter a valid email address")
        tokens = TokenSet(
            access_token=f"static:{email}",
            refresh_token=f"static:{email}",
            expires_at=time.time() + STATIC_TOKEN_TTL_SECONDS,
        )
        return SignInResult(user=SignedInUser(email=email, name=email.split("@")[0]), tokens=tokens)

    def complete_sign_in(self, code: str) -> SignInResult:
        return self._issue(code)

    def silent_sign_in(self, refresh_token: str) -> SignInResult:
        if not refresh_token.startswith("static:"):
            raise IdentityError("interactive sign-in required")
        return self._issue(refresh_token.split(":", 1)[1])


class TokenCache:
    """Server-side token store keyed by session id.

    Entries unused for longer than `max_idle` seconds are pruned on the next
    write, so sessions that never sign out do not pile up.
    """

    def __init__(self, max_idle: float = SESSION_MAX_AGE_SECONDS) -> None:
        self._tokens: dict[str, tuple[TokenSet, float]] = {}
        self._lock = threading.Lock()
        self._max_idle = max_idle

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)

    def put(self, sid: str, tokens: TokenSet, *, now: float | None = None) -> None:
        current = time.time() if now is None else now
        with self._lock:
            self._prune(current)
            self._tokens[sid] = (tokens, current)

    def get(self, sid: str | None, *, now: float | None = None) -> TokenSet | None:
        if not sid:
            return None
        current = time.time() if now is None else now
        with self._lock:
            entry = self._tokens.get(sid)
            if entry is None:
                return None
            tokens, last_used = entry
            if current - last_used > self._max_idle:
                del self._tokens[sid]
                return None
            self._tokens[sid] = (tokens, current)
            return tokens

    def drop(self, sid: str | None) -> None:
        if not sid:
            return
        with self._lock:
            self._tokens.pop(sid, None)

    def _prune(self, now: float) -> None:
        stale = [sid for sid, (_, last_used) in self._tokens.items() if now - last_used > self._max_idle]
        for sid in stale:
            del self._tokens[sid]
        if stale:
            log.info("Pruned %d idle token cache entries", len(stale))

    def access_token(self, sid: str | None, provider: BaseIdentityProvider) -> str:
        """Current access token for the session, refreshed silently when expired.

        A failed refresh drops the session's tokens before re-raising.
        """
        tokens = self.get(sid)
        if tokens is None:
            raise IdentityError("not signed in")
        if tokens.expired():
            log.info("Access token expired; attempting silent sign-in")
            try:
                tokens = provider.silent_sign_in(tokens.refresh_token).tokens
            except IdentityError:
                self.drop(sid)
                raise
            self.put(str(sid), tokens)
        return tokens.access_token


def provider_from_settings(settings: Settings) -> BaseIdentityProvider:
    if settings.auth_mode == "static":
        return StaticIdentityProvider()
    return MicrosoftIdentityProvider(
        tenant_id=settings.tenant_id,
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        redirect_uri=settings.redirect_uri,
        timeout=settings.request_timeout,
    )
