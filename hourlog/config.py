from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv


STORAGE_BACKENDS = {"graph", "memory"}
AUTH_MODES = {"oauth", "static"}


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class ListNames:
    time_entries: str = "TimeEntries"
    clients: str = "Clients"
    projects: str = "Projects"
    activities: str = "Activities"
    access: str = "UserClientAccess"
    rules: str = "ClientUtilizationRules"
    holidays: str = "Holidays"


@dataclass(frozen=True)
class Settings:
    storage: str
    auth_mode: str
    admins: tuple[str, ...]
    site_path: str
    tenant_id: str
    client_id: str
    client_secret: str
    redirect_uri: str
    request_timeout: float
    seed_file: Path | None
    lists: ListNames


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or default).strip()


def parse_admins(raw: Any) -> tuple[str, ...]:
    if isinstance(raw, (list, tuple)):
        parts = [str(x) for x in raw]
    else:
        parts = str(raw or "").split(",")
    out: list[str] = []
    for part in parts:
        email = part.strip().lower()
        if email and email not in out:
            out.append(email)
    return tuple(out)


def load_yaml_config(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config not found: {path}")

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping (YAML dict).")

    for key in ("azure", "lists"):
        section = raw.get(key, {}) or {}
        if not isinstance(section, dict):
            raise ConfigError(f"{key} must be a mapping.")
        raw[key] = section

    admins = raw.get("admins", []) or []
    if not isinstance(admins, (list, str)):
        raise ConfigError("admins must be a list of email addresses.")

    unknown = set(raw["lists"]) - set(ListNames.__dataclass_fields__)
    if unknown:
        raise ConfigError(f"lists has unknown keys: {', '.join(sorted(unknown))}")
    return raw


def _resolve_path(raw: str, *, base: Path) -> Path:
    p = Path(raw)
    if not p.is_absolute():
        p = (base / p).resolve()
    return p


def load_settings(config_path: Path | None = None) -> Settings:
    """Build settings from `.env`, an optional YAML file and the environment.

    Environment variables win over YAML keys. The YAML path comes from the
    argument or `HOURLOG_CONFIG`.
    """
    load_dotenv(dotenv_path=str(Path.cwd() / ".env"))

    if config_path is None and _env("HOURLOG_CONFIG"):
        config_path = Path(_env("HOURLOG_CONFIG"))
    raw: dict[str, Any] = load_yaml_config(config_path) if config_path else {"azure": {}, "lists": {}}
    base_dir = config_path.parent if config_path else Path.cwd()
    azure = raw["azure"]

    storage = (_env("HOURLOG_STORAGE") or str(raw.get("storage", "graph"))).strip().lower()
    if storage in {"inmemory", "mem"}:
        storage = "memory"
    if storage not in STORAGE_BACKENDS:
        raise ConfigError(f"storage must be one of: {', '.join(sorted(STORAGE_BACKENDS))}")

    auth_mode = (_env("HOURLOG_AUTH_MODE") or str(raw.get("auth_mode", "oauth"))).strip().lower()
    if auth_mode not in AUTH_MODES:
        raise ConfigError(f"auth_mode must be one of: {', '.join(sorted(AUTH_MODES))}")

    admins_env = os.getenv("HOURLOG_ADMINS")
    admins = parse_admins(admins_env if admins_env is not None else raw.get("admins", []))

    timeout_raw = _env("HOURLOG_REQUEST_TIMEOUT") or str(raw.get("request_timeout", 30))
    try:
        request_timeout = float(timeout_raw)
    except ValueError as e:
        raise ConfigError(f"request_timeout must be a number: {timeout_raw!r}") from e
    if request_timeout <= 0:
        raise ConfigError("request_timeout must be positive.")

    seed_raw = _env("HOURLOG_SEED_FILE") or str(raw.get("seed_file", "") or "").strip()
    seed_file = _resolve_path(seed_raw, base=base_dir) if seed_raw else None

    return Settings(
        storage=storage,
        auth_mode=auth_mode,
        admins=admins,
        site_path=_env("HOURLOG_SITE_PATH") or str(raw.get("site_path", "") or "").strip(),
        tenant_id=_env("HOURLOG_TENANT_ID") or str(azure.get("tenant_id", "") or "").strip(),
        client_id=_env("HOURLOG_CLIENT_ID") or str(azure.get("client_id", "") or "").strip(),
        client_secret=_env("HOURLOG_CLIENT_SECRET") or str(azure.get("client_secret", "") or "").strip(),
        redirect_uri=_env("HOURLOG_REDIRECT_URI") or str(azure.get("redirect_uri", "") or "").strip(),
        request_timeout=request_timeout,
        seed_file=seed_file,
        lists=ListNames(**{k: str(v) for k, v in raw["lists"].items()}),
    )
