from __future__ import annotations

import hmac
import secrets
from typing import Iterable

from hourlog.identity import SignedInUser, is_admin


SESSION_SID_KEY = "sid"
SESSION_EMAIL_KEY = "auth_email"
SESSION_NAME_KEY = "auth_name"
SESSION_CSRF_KEY = "csrf_token"
SESSION_STATE_KEY = "oauth_state"
SESSION_NEXT_KEY = "login_next"


def ensure_csrf_token(session: dict) -> str:
    token = session.get(SESSION_CSRF_KEY)
    if isinstance(token, str) and token:
        return token
    token = secrets.token_urlsafe(32)
    session[SESSION_CSRF_KEY] = token
    return token


def validate_csrf(session: dict, token: str | None) -> bool:
    expected = session.get(SESSION_CSRF_KEY)
    if not expected or not isinstance(expected, str):
        return False
    if not token:
        return False
    return hmac.compare_digest(expected, str(token))


def new_oauth_state(session: dict, next_path: str) -> str:
    state = secrets.token_urlsafe(24)
    session[SESSION_STATE_KEY] = state
    session[SESSION_NEXT_KEY] = next_path
    return state


def pop_oauth_state(session: dict, state: str | None) -> tuple[bool, str]:
    expected = session.pop(SESSION_STATE_KEY, None)
    next_path = str(session.pop(SESSION_NEXT_KEY, "/") or "/")
    if not expected or not state:
        return False, next_path
    return hmac.compare_digest(str(expected), str(state)), next_path


def login_session(session: dict, user: SignedInUser) -> str:
    sid = secrets.token_urlsafe(24)
    session[SESSION_SID_KEY] = sid
    session[SESSION_EMAIL_KEY] = user.email
    session[SESSION_NAME_KEY] = user.name
    ensure_csrf_token(session)
    return sid


def logout_session(session: dict) -> str | None:
    sid = session.pop(SESSION_SID_KEY, None)
    session.pop(SESSION_EMAIL_KEY, None)
    session.pop(SESSION_NAME_KEY, None)
    return sid


def get_session_id(session: dict) -> str | None:
    sid = session.get(SESSION_SID_KEY)
    return str(sid) if sid else None


def get_user_email(session: dict) -> str | None:
    email = session.get(SESSION_EMAIL_KEY)
    return str(email) if email else None


def get_user_name(session: dict) -> str:
    return str(session.get(SESSION_NAME_KEY) or "")


def session_is_admin(session: dict, admins: Iterable[str]) -> bool:
    return is_admin(get_user_email(session), admins)
