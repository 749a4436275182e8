from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Callable, Mapping
from urllib.parse import quote, urlencode

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from hourlog.admin import ERROR_MESSAGES as ADMIN_ERROR_MESSAGES
from hourlog.admin import CascadeDeleteError
from hourlog.auth import (
    ensure_csrf_token,
    get_session_id,
    get_user_email,
    get_user_name,
    login_session,
    logout_session,
    new_oauth_state,
    pop_oauth_state,
    session_is_admin,
    validate_csrf,
)
from hourlog.catalog import CALCULATION_METHODS, HOLIDAY_TEAMS, METHOD_THEORETICAL, TEAMS
from hourlog.config import load_settings
from hourlog.entries import ERROR_MESSAGES as ENTRY_ERROR_MESSAGES
from hourlog.entries import EntryForm, group_by_date, week_start, week_total
from hourlog.identity import SESSION_MAX_AGE_SECONDS, IdentityError, SignInResult, TokenCache, provider_from_settings
from hourlog.liststore import StorageError, build_gateway
from hourlog.services import Services, build_services


log = logging.getLogger("hourlog")

LOAD_FAILED = "Failed to load data. Please refresh the page."
SAVE_FAILED = "Failed to save changes. Please try again."
ENTRY_FIELDS = ("client", "project", "activity", "date", "hours", "notes")


@dataclass(frozen=True)
class CurrentUser:
    email: str
    name: str
    is_admin: bool


def _https_only() -> bool:
    raw = (os.getenv("HOURLOG_HTTPS_ONLY", "0") or "0").strip().lower()
    return raw in {"1", "true", "yes", "on"}


def _parse_allowed_hosts(raw: str) -> list[str]:
    parts = [p.strip() for p in str(raw or "").split(",") if p.strip()]
    out = [p for p in parts if p != "*"]
    if not out:
        return ["localhost", "127.0.0.1"]
    return out


def _parse_trusted_proxies(raw: str) -> list[str] | str:
    text = str(raw or "").strip()
    if text == "*":
        return "*"
    out = [x.strip() for x in text.split(",") if x.strip()]
    return out if out else ["127.0.0.1"]


def _safe_next(next_path: str | None) -> str:
    if not next_path:
        return "/"
    p = str(next_path).strip()
    if not p.startswith("/") or p.startswith("//") or "://" in p:
        return "/"
    return p


def _parse_month(raw: str | None, today: date) -> tuple[int, int]:
    text = str(raw or "").strip()
    try:
        year_s, month_s = text.split("-", 1)
        year, month = int(year_s), int(month_s)
        if 1 <= month <= 12 and 1900 <= year <= 2200:
            return year, month
    except ValueError:
        pass
    return today.year, today.month


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _fmt_hours(hours: float) -> str:
    return f"{hours:.2f}"


def _checked(data: Mapping[str, Any], key: str) -> bool:
    return str(data.get(key, "") or "").strip().lower() in {"1", "true", "yes", "on"}


def _field(data: Mapping[str, Any], key: str) -> str:
    return str(data.get(key, "") or "").strip()


def _api_error(message: str, code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=code, content={"ok": False, "error": message})


def _redirect(path: str, *, error: str = "", msg: str = "", params: Mapping[str, str] | None = None) -> RedirectResponse:
    query = {k: v for k, v in (params or {}).items() if v}
    if error:
        query["error"] = error
    if msg:
        query["msg"] = msg
    url = f"{path}?{urlencode(query)}" if query else path
    return RedirectResponse(url=url, status_code=303)


def _message_for(error: Exception) -> str:
    code = str(error)
    return ENTRY_ERROR_MESSAGES.get(code) or ADMIN_ERROR_MESSAGES.get(code) or "The request could not be completed"


SETTINGS = load_settings()
IDENTITY = provider_from_settings(SETTINGS)
TOKENS = TokenCache()
SHARED_GATEWAY = build_gateway(SETTINGS) if SETTINGS.storage == "memory" else None

TEMPLATES_DIR = Path(__file__).parent / "templates"
STATIC_DIR = Path(__file__).parent / "static"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

app = FastAPI(title="hourlog")
app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

_session_secret_env = (os.getenv("HOURLOG_SECRET_KEY", "") or "").strip()
_session_secret = _session_secret_env or secrets.token_urlsafe(48)
_https = _https_only()
_allowed_hosts_raw = (os.getenv("HOURLOG_ALLOWED_HOSTS", "localhost,127.0.0.1") or "").strip()
_allowed_hosts = _parse_allowed_hosts(_allowed_hosts_raw)
_trusted_proxies_raw = (os.getenv("HOURLOG_TRUSTED_PROXIES", "127.0.0.1") or "127.0.0.1").strip()
_trusted_proxies: list[str] | str = _parse_trusted_proxies(_trusted_proxies_raw)


@app.on_event("startup")
def _startup() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    log.info("hourlog starting (storage=%s, auth=%s, admins=%d)", SETTINGS.storage, SETTINGS.auth_mode, len(SETTINGS.admins))
    if not _session_secret_env:
        log.warning("HOURLOG_SECRET_KEY is not set. Session secret will rotate on restart.")
    if "*" in _allowed_hosts_raw:
        log.warning("HOURLOG_ALLOWED_HOSTS cannot include '*'. Ignored wildcard and using explicit hosts.")
    if not _https:
        log.warning("HOURLOG_HTTPS_ONLY is off. Enable it in production.")
    if SETTINGS.auth_mode == "static":
        log.warning("HOURLOG_AUTH_MODE=static trusts any email typed on the login page. Development only.")


def _security_headers(response) -> None:
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "same-origin"
    response.headers["Content-Security-Policy"] = (
        "default-src 'self'; style-src 'self'; script-src 'self'; img-src 'self' data:; "
        "form-action 'self' https://login.microsoftonline.com; base-uri 'self'; frame-ancestors 'none'"
    )
    if _https:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"


@app.middleware("http")
async def _auth_middleware(request: Request, call_next):  # type: ignore
    path = request.url.path
    public = {"/login", "/health", "/auth/start", "/auth/callback"}
    is_api = path.startswith("/api/")
    if path.startswith("/static") or path in public:
        resp = await call_next(request)
        _security_headers(resp)
        return resp

    if get_user_email(request.session) is None:
        if is_api:
            resp = JSONResponse(status_code=401, content={"ok": False, "error": "authentication required"})
        else:
            resp = RedirectResponse(url=f"/login?next={quote(path)}", status_code=303)
        _security_headers(resp)
        return resp

    if TOKENS.get(get_session_id(request.session)) is None:
        logout_session(request.session)
        if is_api:
            resp = JSONResponse(status_code=401, content={"ok": False, "error": "session expired"})
        else:
            resp = RedirectResponse(url="/login", status_code=303)
        _security_headers(resp)
        return resp

    resp = await call_next(request)
    _security_headers(resp)
    return resp


# Registered after _auth_middleware: the session layer must wrap it.
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=_trusted_proxies)
app.add_middleware(
    SessionMiddleware,
    secret_key=_session_secret,
    session_cookie="hourlog_session",
    max_age=SESSION_MAX_AGE_SECONDS,
    https_only=_https,
    same_site="lax",
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=_allowed_hosts)


def _require_user(request: Request) -> CurrentUser:
    email = get_user_email(request.session)
    if email is None:
        raise HTTPException(status_code=401)
    return CurrentUser(
        email=email,
        name=get_user_name(request.session),
        is_admin=session_is_admin(request.session, SETTINGS.admins),
    )


def _require_admin(request: Request) -> CurrentUser:
    user = _require_user(request)
    if not user.is_admin:
        raise HTTPException(status_code=403)
    return user


def _access_token(sid: str | None) -> str:
    try:
        return TOKENS.access_token(sid, IDENTITY)
    except IdentityError as e:
        raise StorageError(f"sign-in required: {e}") from e


def _services(request: Request) -> Services:
    gateway = SHARED_GATEWAY
    if gateway is None:
        sid = get_session_id(request.session)
        gateway = build_gateway(SETTINGS, lambda: _access_token(sid))
    return build_services(gateway, SETTINGS.lists)


def _render(request: Request, name: str, context: dict[str, Any], *, status_code: int = 200) -> HTMLResponse:
    csrf_token = ensure_csrf_token(request.session)
    email = get_user_email(request.session)
    user = None
    if email:
        user = CurrentUser(email=email, name=get_user_name(request.session), is_admin=session_is_admin(request.session, SETTINGS.admins))
    merged = {
        "csrf_token": csrf_token,
        "current_user": user,
        "fmt_hours": _fmt_hours,
        "flash_error": str(request.query_params.get("error", "") or ""),
        "flash_message": str(request.query_params.get("msg", "") or ""),
        **context,
    }
    return templates.TemplateResponse(request, name, merged, status_code=status_code)


def _validate_csrf_or_redirect(request: Request, csrf_token: str | None, redirect_to: str) -> RedirectResponse | None:
    if validate_csrf(request.session, csrf_token):
        return None
    return _redirect(redirect_to, error="Your session expired. Please try again.")


def _start_session(request: Request, result: SignInResult) -> None:
    previous = logout_session(request.session)
    TOKENS.drop(previous)
    sid = login_session(request.session, result.user)
    TOKENS.put(sid, result.tokens)


@app.get("/health", response_class=PlainTextResponse)
def health() -> str:
    return "ok"


@app.get("/login", response_class=HTMLResponse)
def login_page(request: Request, next: str = "/"):  # noqa: A002
    if get_user_email(request.session) is not None and TOKENS.get(get_session_id(request.session)) is not None:
        return RedirectResponse(url="/", status_code=303)
    return _render(
        request,
        "login.html",
        {"title": "Sign in", "next": _safe_next(next), "error": "", "interactive": IDENTITY.interactive},
    )


@app.post("/login")
async def login(request: Request):
    form = await request.form()
    next_path = _safe_next(str(form.get("next", "/")))
    if IDENTITY.interactive:
        return RedirectResponse(url=f"/auth/start?next={quote(next_path)}", status_code=303)

    try:
        result = IDENTITY.complete_sign_in(_field(form, "email"))
    except IdentityError as e:
        return _render(
            request,
            "login.html",
            {"title": "Sign in", "next": next_path, "error": str(e), "interactive": False},
            status_code=401,
        )
    _start_session(request, result)
    return RedirectResponse(url=next_path, status_code=303)


@app.get("/auth/start")
def auth_start(request: Request, next: str = "/"):  # noqa: A002
    if not IDENTITY.interactive:
        return RedirectResponse(url="/login", status_code=303)
    state = new_oauth_state(request.session, _safe_next(next))
    return RedirectResponse(url=IDENTITY.authorization_url(state), status_code=303)


@app.get("/auth/callback", response_class=HTMLResponse)
def auth_callback(request: Request, code: str = "", state: str = "", error: str = "", error_description: str = ""):
    state_ok, next_path = pop_oauth_state(request.session, state)
    context = {"title": "Sign in", "next": next_path, "interactive": IDENTITY.interactive}
    if error:
        log.warning("Sign-in was rejected by the identity provider: %s", error)
        return _render(request, "login.html", {**context, "error": error_description or error}, status_code=401)
    if not state_ok:
        return _render(request, "login.html", {**context, "error": "Sign-in expired. Please try again."}, status_code=400)

    try:
        result = IDENTITY.complete_sign_in(code)
    except IdentityError as e:
        log.warning("Sign-in failed: %s", e)
        return _render(request, "login.html", {**context, "error": "Sign-in failed. Please try again."}, status_code=401)
    _start_session(request, result)
    return RedirectResponse(url=next_path, status_code=303)


@app.post("/logout")
async def logout(request: Request):
    form = await request.form()
    redirect = _validate_csrf_or_redirect(request, str(form.get("csrf_token", "") or ""), "/")
    if redirect:
        return redirect
    TOKENS.drop(logout_session(request.session))
    return RedirectResponse(url="/login", status_code=303)


@app.get("/")
def index() -> RedirectResponse:
    return RedirectResponse(url="/entries", status_code=303)


def _form_kwargs(raw: Mapping[str, Any]) -> dict[str, str]:
    return {
        "client_code": _field(raw, "client"),
        "project_name": _field(raw, "project"),
        "activity_task": _field(raw, "activity"),
        "entry_date": _field(raw, "date"),
        "hours": _field(raw, "hours"),
        "notes": str(raw.get("notes", "") or ""),
    }


def _entry_query(raw: Mapping[str, Any]) -> dict[str, str]:
    return {key: str(raw.get(key, "") or "") for key in ENTRY_FIELDS}


def _entries_context(services: Services, user: CurrentUser, form: EntryForm, entries: list, today: date) -> dict[str, Any]:
    return {
        "title": "Time Entries",
        "form": form,
        "clients": services.catalog.clients_for_user(user.email),
        "groups": group_by_date(entries),
        "week_total": week_total(entries, today),
        "week_start": week_start(today),
        "today": today,
    }


@app.get("/entries", response_class=HTMLResponse)
def entries_page(request: Request, copy: str = ""):
    user = _require_user(request)
    services = _services(request)
    today = date.today()
    try:
        services.catalog.load()
        entries = services.recorder.list_entries(user.email)
    except StorageError:
        log.exception("Failed to load time entries for %s", user.email)
        context = _entries_context(services, user, EntryForm(date=today.isoformat()), [], today)
        return _render(request, "entries.html", {**context, "flash_error": LOAD_FAILED}, status_code=502)

    flash: dict[str, str] = {}
    if copy:
        try:
            form = services.recorder.copy_form(user.email, copy, today)
        except ValueError as e:
            form = services.recorder.form(entry_date=today.isoformat())
            flash["flash_error"] = _message_for(e)
    else:
        kwargs = _form_kwargs(request.query_params)
        kwargs["entry_date"] = kwargs["entry_date"] or today.isoformat()
        form = services.recorder.form(**kwargs)

    return _render(request, "entries.html", {**_entries_context(services, user, form, entries, today), **flash})


@app.post("/entries")
async def entries_create(request: Request):
    user = _require_user(request)
    data = await request.form()
    redirect = _validate_csrf_or_redirect(request, str(data.get("csrf_token", "") or ""), "/entries")
    if redirect:
        return redirect

    services = _services(request)
    try:
        services.catalog.load()
        form = services.recorder.form(**_form_kwargs(data))
        services.recorder.create_entry(user.email, form)
    except ValueError as e:
        return _redirect("/entries", error=_message_for(e), params=_entry_query(data))
    except StorageError:
        log.exception("Failed to save time entry for %s", user.email)
        return _redirect("/entries", error=SAVE_FAILED, params=_entry_query(data))
    return _redirect("/entries", msg="Time entry saved")


@app.get("/entries/{entry_id}/edit", response_class=HTMLResponse)
def entries_edit_page(request: Request, entry_id: str):
    user = _require_user(request)
    services = _services(request)
    try:
        services.catalog.load()
        entry = services.recorder.get_entry(user.email, entry_id)
    except StorageError:
        log.exception("Failed to load time entry %s", entry_id)
        return _redirect("/entries", error=LOAD_FAILED)
    if entry is None:
        return _redirect("/entries", error=ENTRY_ERROR_MESSAGES["entry_not_found"])

    if "client" in request.query_params:
        form = services.recorder.form(**_form_kwargs(request.query_params))
    else:
        form = services.recorder.form_for_entry(entry)
    return _render(
        request,
        "entry_edit.html",
        {
            "title": "Edit Time Entry",
            "entry": entry,
            "form": form,
            "clients": services.catalog.clients_for_user(user.email),
        },
    )


@app.post("/entries/{entry_id}/update")
async def entries_update(request: Request, entry_id: str):
    user = _require_user(request)
    data = await request.form()
    edit_path = f"/entries/{quote(entry_id)}/edit"
    redirect = _validate_csrf_or_redirect(request, str(data.get("csrf_token", "") or ""), edit_path)
    if redirect:
        return redirect

    services = _services(request)
    try:
        services.catalog.load()
        form = services.recorder.form(**_form_kwargs(data))
        services.recorder.update_entry(user.email, entry_id, form)
    except ValueError as e:
        return _redirect(edit_path, error=_message_for(e), params=_entry_query(data))
    except StorageError:
        log.exception("Failed to update time entry %s", entry_id)
        return _redirect(edit_path, error=SAVE_FAILED, params=_entry_query(data))
    return _redirect("/entries", msg="Time entry updated")


@app.post("/entries/{entry_id}/delete")
async def entries_delete(request: Request, entry_id: str):
    user = _require_user(request)
    data = await request.form()
    redirect = _validate_csrf_or_redirect(request, str(data.get("csrf_token", "") or ""), "/entries")
    if redirect:
        return redirect

    services = _services(request)
    try:
        services.recorder.delete_entry(user.email, entry_id)
    except ValueError as e:
        return _redirect("/entries", error=_message_for(e))
    except StorageError:
        log.exception("Failed to delete time entry %s", entry_id)
        return _redirect("/entries", error="Failed to delete time entry. Please try again.")
    return _redirect("/entries", msg="Time entry deleted")


@app.get("/api/v1/options/projects")
def api_project_options(request: Request, client: str = ""):
    user = _require_user(request)
    services = _services(request)
    try:
        services.catalog.load()
    except StorageError:
        log.exception("Failed to load catalog")
        return _api_error(LOAD_FAILED, 502)
    if client not in {c.code for c in services.catalog.clients_for_user(user.email)}:
        return _api_error(ENTRY_ERROR_MESSAGES["client_not_assigned"], 403)
    projects = services.catalog.projects_for_client(client)
    return {"ok": True, "projects": [{"name": p.name, "description": p.description, "billable": p.billable} for p in projects]}


@app.get("/api/v1/options/activities")
def api_activity_options(request: Request, project: str = ""):
    user = _require_user(request)
    services = _services(request)
    try:
        services.catalog.load()
    except StorageError:
        log.exception("Failed to load catalog")
        return _api_error(LOAD_FAILED, 502)
    found = services.catalog.project_by_name(project)
    allowed = {c.code for c in services.catalog.clients_for_user(user.email)}
    if found is None or found.client_code not in allowed:
        return _api_error(ENTRY_ERROR_MESSAGES["project_not_found"], 404)
    activities = services.catalog.activities_for_project(project)
    return {"ok": True, "activities": [{"name": a.name, "description": a.description, "billable": a.billable} for a in activities]}


@app.get("/api/v1/entries")
def api_entries(request: Request):
    user = _require_user(request)
    services = _services(request)
    try:
        entries = services.recorder.list_entries(user.email)
    except StorageError:
        log.exception("Failed to load time entries for %s", user.email)
        return _api_error(LOAD_FAILED, 502)
    today = date.today()
    return {
        "ok": True,
        "week_total": week_total(entries, today),
        "entries": [
            {
                "id": e.id,
                "date": e.date.isoformat(),
                "client_code": e.client_code,
                "project_name": e.project_name,
                "activity_task": e.activity_task,
                "hours": e.hours,
                "notes": e.notes,
            }
            for e in entries
        ],
    }


def _utilization_rows(services: Services, user: CurrentUser, year: int, month: int, scope: str) -> list:
    services.catalog.load()
    if scope == "all":
        return services.calculator.for_all(year, month)
    return services.calculator.for_user(user.email, year, month)


@app.get("/metrics", response_class=HTMLResponse)
def metrics_page(request: Request, month: str = "", scope: str = ""):
    user = _require_user(request)
    today = date.today()
    year, month_no = _parse_month(month, today)
    scope = scope if scope in {"all", "mine"} else ("all" if user.is_admin else "mine")
    if scope == "all" and not user.is_admin:
        scope = "mine"

    services = _services(request)
    context: dict[str, Any] = {
        "title": "Utilization Metrics",
        "month": f"{year:04d}-{month_no:02d}",
        "prev_month": "%04d-%02d" % _shift_month(year, month_no, -1),
        "next_month": "%04d-%02d" % _shift_month(year, month_no, 1),
        "scope": scope,
        "rows": [],
        "client_names": {},
    }
    try:
        rows = _utilization_rows(services, user, year, month_no, scope)
    except StorageError:
        log.exception("Failed to load metrics for %s", user.email)
        return _render(request, "metrics.html", {**context, "flash_error": LOAD_FAILED}, status_code=502)

    context["rows"] = rows
    context["client_names"] = {c.code: c.name for c in services.catalog.clients}
    return _render(request, "metrics.html", context)


@app.get("/api/v1/utilization")
def api_utilization(request: Request, month: str = "", scope: str = "mine"):
    user = _require_user(request)
    if scope == "all" and not user.is_admin:
        return _api_error("admin only", 403)
    year, month_no = _parse_month(month, date.today())
    services = _services(request)
    try:
        rows = _utilization_rows(services, user, year, month_no, "all" if scope == "all" else "mine")
    except StorageError:
        log.exception("Failed to compute utilization")
        return _api_error(LOAD_FAILED, 502)
    return {"ok": True, "month": f"{year:04d}-{month_no:02d}", "rows": [r.as_dict() for r in rows]}


ADMIN_TABS = ("clients", "projects", "activities", "access", "rules", "holidays")


@app.get("/admin", response_class=HTMLResponse)
def admin_page(request: Request, tab: str = "clients", edit: str = ""):
    _require_admin(request)
    tab = tab if tab in ADMIN_TABS else "clients"
    services = _services(request)
    context: dict[str, Any] = {
        "title": "Admin",
        "tab": tab,
        "tabs": ADMIN_TABS,
        "edit_id": edit,
        "catalog": services.catalog,
        "counts": services.admin.counts(),
        "teams": TEAMS,
        "holiday_teams": HOLIDAY_TEAMS,
        "methods": CALCULATION_METHODS,
        "default_method": METHOD_THEORETICAL,
        "current_year": date.today().year,
    }
    try:
        services.catalog.load()
    except StorageError:
        log.exception("Failed to load admin catalog")
        return _render(request, "admin.html", {**context, "flash_error": LOAD_FAILED}, status_code=502)
    context["counts"] = services.admin.counts()
    return _render(request, "admin.html", context)


async def _admin_post(request: Request, tab: str, action: Callable[[Services, Mapping[str, Any]], str]) -> RedirectResponse:
    _require_admin(request)
    data = await request.form()
    redirect = _validate_csrf_or_redirect(request, str(data.get("csrf_token", "") or ""), f"/admin?tab={tab}")
    if redirect:
        return redirect

    services = _services(request)
    try:
        services.catalog.load()
        message = action(services, data)
    except ValueError as e:
        return _redirect("/admin", error=_message_for(e), params={"tab": tab})
    except StorageError:
        log.exception("Admin change on %s failed", tab)
        return _redirect("/admin", error=SAVE_FAILED, params={"tab": tab})
    return _redirect("/admin", msg=message, params={"tab": tab})


@app.post("/admin/clients")
async def admin_client_create(request: Request):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.save_client(code=_field(d, "code"), name=_field(d, "name"), description=_field(d, "description"))
        return "Client created"

    return await _admin_post(request, "clients", action)


@app.post("/admin/clients/{client_id}/update")
async def admin_client_update(request: Request, client_id: str):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.save_client(code="", name=_field(d, "name"), description=_field(d, "description"), client_id=client_id)
        return "Client updated"

    return await _admin_post(request, "clients", action)


@app.get("/admin/clients/{client_id}/delete", response_class=HTMLResponse)
def admin_client_delete_confirm(request: Request, client_id: str):
    _require_admin(request)
    services = _services(request)
    try:
        services.catalog.load()
        plan = services.admin.plan_client_delete(client_id)
    except ValueError as e:
        return _redirect("/admin", error=_message_for(e), params={"tab": "clients"})
    except StorageError:
        log.exception("Failed to load client %s for delete", client_id)
        return _redirect("/admin", error=LOAD_FAILED, params={"tab": "clients"})
    return _render(request, "admin_confirm_delete.html", {"title": "Delete Client", "plan": plan})


@app.post("/admin/clients/{client_id}/delete")
async def admin_client_delete(request: Request, client_id: str):
    _require_admin(request)
    data = await request.form()
    redirect = _validate_csrf_or_redirect(request, str(data.get("csrf_token", "") or ""), "/admin?tab=clients")
    if redirect:
        return redirect

    services = _services(request)
    try:
        services.catalog.load()
        result = services.admin.delete_client(client_id)
    except ValueError as e:
        return _redirect("/admin", error=_message_for(e), params={"tab": "clients"})
    except CascadeDeleteError as e:
        if e.partial:
            msg = (
                f"Client delete stopped after {len(e.completed)} step(s) while removing {e.failed_step.label}. "
                "Delete the client again to finish."
            )
        else:
            msg = "Failed to delete client. Nothing was removed."
        return _redirect("/admin", error=msg, params={"tab": "clients"})
    except StorageError:
        log.exception("Failed to delete client %s", client_id)
        return _redirect("/admin", error=SAVE_FAILED, params={"tab": "clients"})

    msg = (
        f"Client {result.client_code} deleted with {result.projects_deleted} project(s) "
        f"and {result.assignments_deleted} user access record(s)"
    )
    return _redirect("/admin", msg=msg, params={"tab": "clients"})


@app.post("/admin/projects")
async def admin_project_create(request: Request):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.save_project(
            client_code=_field(d, "client_code"),
            name=_field(d, "name"),
            description=_field(d, "description"),
            billable=_checked(d, "billable"),
        )
        return "Project created"

    return await _admin_post(request, "projects", action)


@app.post("/admin/projects/{project_id}/update")
async def admin_project_update(request: Request, project_id: str):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.save_project(
            client_code=_field(d, "client_code"),
            name=_field(d, "name"),
            description=_field(d, "description"),
            billable=_checked(d, "billable"),
            project_id=project_id,
        )
        return "Project updated"

    return await _admin_post(request, "projects", action)


@app.post("/admin/projects/{project_id}/delete")
async def admin_project_delete(request: Request, project_id: str):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.delete_project(project_id)
        return "Project deleted"

    return await _admin_post(request, "projects", action)


@app.post("/admin/activities")
async def admin_activity_create(request: Request):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.save_activity(
            project_name=_field(d, "project_name"),
            name=_field(d, "name"),
            description=_field(d, "description"),
            billable=_checked(d, "billable"),
        )
        return "Activity created"

    return await _admin_post(request, "activities", action)


@app.post("/admin/activities/{activity_id}/update")
async def admin_activity_update(request: Request, activity_id: str):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.save_activity(
            project_name=_field(d, "project_name"),
            name=_field(d, "name"),
            description=_field(d, "description"),
            billable=_checked(d, "billable"),
            activity_id=activity_id,
        )
        return "Activity updated"

    return await _admin_post(request, "activities", action)


@app.post("/admin/activities/{activity_id}/delete")
async def admin_activity_delete(request: Request, activity_id: str):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.delete_activity(activity_id)
        return "Activity deleted"

    return await _admin_post(request, "activities", action)


@app.post("/admin/access")
async def admin_access_create(request: Request):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.assign_user(
            user_email=_field(d, "email"),
            client_code=_field(d, "client_code"),
            team=_field(d, "team"),
            allocation_percent=_field(d, "allocation") or "100",
        )
        return "User access granted"

    return await _admin_post(request, "access", action)


@app.post("/admin/access/{assignment_id}/update")
async def admin_access_update(request: Request, assignment_id: str):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.update_assignment(assignment_id, team=_field(d, "team"), allocation_percent=_field(d, "allocation"))
        return "User access updated"

    return await _admin_post(request, "access", action)


@app.post("/admin/access/{assignment_id}/delete")
async def admin_access_delete(request: Request, assignment_id: str):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.remove_assignment(assignment_id)
        return "User access removed"

    return await _admin_post(request, "access", action)


def _rule_kwargs(d: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "client_code": _field(d, "client_code"),
        "target_utilization": _field(d, "target") or "80",
        "count_only_billable": _checked(d, "count_only_billable"),
        "standard_hours_per_week": _field(d, "standard_hours") or "40",
        "holiday_calendar": _field(d, "holiday_calendar") or "Both",
        "calculation_method": _field(d, "method") or METHOD_THEORETICAL,
    }


@app.post("/admin/rules")
async def admin_rule_create(request: Request):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.save_rule(**_rule_kwargs(d))
        return "Utilization rule created"

    return await _admin_post(request, "rules", action)


@app.post("/admin/rules/{rule_id}/update")
async def admin_rule_update(request: Request, rule_id: str):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.save_rule(**_rule_kwargs(d), rule_id=rule_id)
        return "Utilization rule updated"

    return await _admin_post(request, "rules", action)


@app.post("/admin/rules/{rule_id}/delete")
async def admin_rule_delete(request: Request, rule_id: str):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.delete_rule(rule_id)
        return "Utilization rule deleted"

    return await _admin_post(request, "rules", action)


@app.post("/admin/holidays")
async def admin_holiday_create(request: Request):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.save_holiday(name=_field(d, "name"), holiday_date=_field(d, "date"), team=_field(d, "team"))
        return "Holiday created"

    return await _admin_post(request, "holidays", action)


@app.post("/admin/holidays/import")
async def admin_holiday_import(request: Request):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        created = s.admin.import_public_holidays(
            year=_field(d, "year"),
            country=_field(d, "country"),
            team=_field(d, "team"),
            subdiv=_field(d, "subdiv") or None,
        )
        return f"Imported {created} public holiday(s)"

    return await _admin_post(request, "holidays", action)


@app.post("/admin/holidays/{holiday_id}/update")
async def admin_holiday_update(request: Request, holiday_id: str):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.save_holiday(name=_field(d, "name"), holiday_date=_field(d, "date"), team=_field(d, "team"), holiday_id=holiday_id)
        return "Holiday updated"

    return await _admin_post(request, "holidays", action)


@app.post("/admin/holidays/{holiday_id}/delete")
async def admin_holiday_delete(request: Request, holiday_id: str):
    def action(s: Services, d: Mapping[str, Any]) -> str:
        s.admin.delete_holiday(holiday_id)
        return "Holiday deleted"

    return await _admin_post(request, "holidays", action)
