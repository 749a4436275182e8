#!/usr/bin/env python3
from __future__ import annotations

import os
import sys

import requests

GRAPH_ROOT = "https://graph.microsoft.com/v1.0"
LISTS = ["Clients", "Projects", "Activities", "UserClientAccess", "ClientUtilizationRules", "Holidays", "TimeEntries"]


def fetch_json(url: str, token: str) -> dict:
    response = requests.get(url, headers={"Authorization": f"Bearer {token}", "Accept": "application/json"}, timeout=15)
    if response.status_code != 200:
        raise RuntimeError(f"HTTP {response.status_code}: {response.text[:200]}")
    try:
        payload = response.json()
    except ValueError as exc:
        raise RuntimeError(f"non-JSON response: {response.text[:200]}") from exc
    if not isinstance(payload, dict):
        raise RuntimeError(f"invalid payload type: {type(payload).__name__}")
    return payload


def main() -> int:
    site_path = (os.getenv("HOURLOG_SITE_PATH") or "").strip()
    token = (os.getenv("HOURLOG_ACCESS_TOKEN") or "").strip()
    if not site_path or not token:
        print("Set HOURLOG_SITE_PATH and HOURLOG_ACCESS_TOKEN.", file=sys.stderr)
        return 2

    for name in LISTS:
        url = f"{GRAPH_ROOT}/sites/{site_path}/lists/{name}/items?expand=fields&$top=5"
        payload = fetch_json(url, token)
        items = payload.get("value") or []
        fields = sorted((items[0].get("fields") or {}).keys()) if items else []
        print(f"[ok] {name}: {len(items)} item(s) on first page; fields={fields}")

    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception as exc:
        print(f"[fail] {exc}", file=sys.stderr)
        raise SystemExit(1)
