from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable

import requests
import yaml

from hourlog.config import ConfigError, Settings


log = logging.getLogger("hourlog.liststore")

GRAPH_ROOT = "https://graph.microsoft.com/v1.0"


class StorageError(RuntimeError):
    pass


class BaseListGateway:
    """Generic access to named collections of `{"id": ..., "fields": {...}}` items."""

    def list_items(self, list_name: str) -> list[dict[str, Any]]:  # pragma: no cover - interface
        raise NotImplementedError

    def create_item(self, list_name: str, fields: dict[str, Any]) -> dict[str, Any]:  # pragma: no cover - interface
        raise NotImplementedError

    def update_item(self, list_name: str, item_id: str, fields: dict[str, Any]) -> dict[str, Any]:  # pragma: no cover - interface
        raise NotImplementedError

    def delete_item(self, list_name: str, item_id: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class MemoryListGateway(BaseListGateway):
    def __init__(self) -> None:
        self._items: dict[str, list[dict[str, Any]]] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    def list_items(self, list_name: str) -> list[dict[str, Any]]:
        with self._lock:
            return [{"id": item["id"], "fields": dict(item["fields"])} for item in self._items.get(list_name, [])]

    def create_item(self, list_name: str, fields: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            item = {"id": str(self._next_id), "fields": dict(fields)}
            self._next_id += 1
            self._items.setdefault(list_name, []).append(item)
            return {"id": item["id"], "fields": dict(item["fields"])}

    def update_item(self, list_name: str, item_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            for item in self._items.get(list_name, []):
                if item["id"] == str(item_id):
                    item["fields"].update(fields)
                    return {"id": item["id"], "fields": dict(item["fields"])}
        raise StorageError(f"item_not_found: {list_name}/{item_id}")

    def delete_item(self, list_name: str, item_id: str) -> None:
        with self._lock:
            items = self._items.get(list_name, [])
            self._items[list_name] = [item for item in items if item["id"] != str(item_id)]

    def seed(self, data: dict[str, list[dict[str, Any]]]) -> None:
        for list_name, rows in data.items():
            for fields in rows or []:
                if not isinstance(fields, dict):
                    raise StorageError(f"seed rows for {list_name} must be mappings")
                self.create_item(list_name, fields)

    @classmethod
    def from_yaml(cls, path: Path) -> "MemoryListGateway":
        if not path.exists():
            raise ConfigError(f"Seed file not found: {path}")
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            raise ConfigError("Seed file root must be a mapping of list name to rows.")
        gateway = cls()
        gateway.seed(raw)
        log.info("Seeded memory store from %s (%d lists)", path, len(raw))
        return gateway


class GraphListGateway(BaseListGateway):
    """SharePoint lists through Microsoft Graph.

    Every call carries a bearer token obtained from `token_provider`. Non-2xx
    responses and transport failures surface as `StorageError`; nothing is
    retried. Deleting an item that no longer exists is treated as success so
    that multi-step deletes can be re-run.
    """

    def __init__(
        self,
        site_path: str,
        token_provider: Callable[[], str],
        *,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not site_path:
            raise ConfigError("HOURLOG_SITE_PATH is required for graph storage")
        self._base = f"{GRAPH_ROOT}/sites/{site_path}/lists"
        self._token_provider = token_provider
        self._timeout = timeout
        self._session = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        token = self._token_provider()
        if not token:
            raise StorageError("access token is missing")
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        url: str,
        *,
        body: dict[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> requests.Response | None:
        try:
            response = self._session.request(method, url, headers=self._headers(), json=body, timeout=self._timeout)
        except requests.RequestException as e:
            log.error("Data store request failed: %s %s (%s)", method, url, e)
            raise StorageError(f"{method} {url} failed: {e}") from e

        if allow_missing and response.status_code == 404:
            log.info("Data store item already gone: %s", url)
            return None
        if response.status_code >= 400:
            log.error("Data store returned HTTP %s for %s %s: %s", response.status_code, method, url, response.text[:200])
            raise StorageError(f"HTTP {response.status_code}: {response.text[:200]}")
        return response

    @staticmethod
    def _json(response: requests.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise StorageError(f"non-JSON response: {response.text[:200]}") from e
        if not isinstance(payload, dict):
            raise StorageError(f"invalid payload type: {type(payload).__name__}")
        return payload

    def list_items(self, list_name: str) -> list[dict[str, Any]]:
        url = f"{self._base}/{list_name}/items?expand=fields"
        items: list[dict[str, Any]] = []
        while url:
            payload = self._json(self._request("GET", url))
            for raw in payload.get("value") or []:
                items.append({"id": str(raw.get("id", "")), "fields": dict(raw.get("fields") or {})})
            url = str(payload.get("@odata.nextLink") or "")
        return items

    def create_item(self, list_name: str, fields: dict[str, Any]) -> dict[str, Any]:
        response = self._request("POST", f"{self._base}/{list_name}/items", body={"fields": fields})
        payload = self._json(response)
        return {"id": str(payload.get("id", "")), "fields": dict(payload.get("fields") or fields)}

    def update_item(self, list_name: str, item_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        response = self._request("PATCH", f"{self._base}/{list_name}/items/{item_id}/fields", body=fields)
        return {"id": str(item_id), "fields": self._json(response)}

    def delete_item(self, list_name: str, item_id: str) -> None:
        self._request("DELETE", f"{self._base}/{list_name}/items/{item_id}", allow_missing=True)


def build_gateway(settings: Settings, token_provider: Callable[[], str] | None = None) -> BaseListGateway:
    if settings.storage == "memory":
        if settings.seed_file is not None:
            return MemoryListGateway.from_yaml(settings.seed_file)
        return MemoryListGateway()

    if token_provider is None:
        raise ConfigError("graph storage needs an access token provider")
    return GraphListGateway(settings.site_path, token_provider, timeout=settings.request_timeout)
