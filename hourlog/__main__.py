from __future__ import annotations

import argparse
import logging
import os
from datetime import date
from pathlib import Path


def _resolve_config(raw: Path | None) -> Path | None:
    if raw is None:
        return None
    p = Path(raw)
    if not p.is_absolute():
        p = (Path.cwd() / p).resolve()
    return p


def _parse_report_month(raw: str) -> tuple[int, int]:
    try:
        year_s, month_s = raw.split("-", 1)
        year, month = int(year_s), int(month_s)
    except ValueError as e:
        raise SystemExit(f"--report expects YYYY-MM, got {raw!r}") from e
    if not 1 <= month <= 12:
        raise SystemExit(f"--report month out of range: {raw!r}")
    return year, month


def _print_report(*, config_path: Path | None, month: str, email: str | None) -> int:
    from hourlog.config import ConfigError, load_settings
    from hourlog.liststore import StorageError, build_gateway
    from hourlog.services import build_services

    year, month_no = _parse_report_month(month) if month != "current" else (date.today().year, date.today().month)
    try:
        settings = load_settings(config_path)
        token = (os.getenv("HOURLOG_ACCESS_TOKEN", "") or "").strip()
        services = build_services(build_gateway(settings, lambda: token), settings.lists)
        services.catalog.load()
        rows = services.calculator.for_user(email, year, month_no) if email else services.calculator.for_all(year, month_no)
    except (ConfigError, StorageError) as e:
        print(f"Failed to build report: {e}")
        return 1

    print(f"Utilization {year:04d}-{month_no:02d}")
    if not rows:
        print("No client assignments found.")
        return 0
    print(f"{'user':32} {'client':10} {'billable':>9} {'total':>8} {'available':>10} {'util%':>7} {'target':>7}")
    for r in rows:
        flag = " !" if r.below_target else ""
        print(
            f"{r.user_email:32} {r.client_code:10} {r.billable_hours:9.2f} {r.total_hours:8.2f} "
            f"{r.available_hours:10.2f} {r.utilization:7.1f} {r.target:7.1f}{flag}"
        )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="hourlog")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8010)
    parser.add_argument("--reload", action="store_true")
    parser.add_argument("--config", type=Path, default=None, help="YAML settings file (also HOURLOG_CONFIG)")
    parser.add_argument("--report", metavar="YYYY-MM", help="Print utilization for a month ('current' for this month) and exit")
    parser.add_argument("--email", help="Limit --report to one user")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    config_path = _resolve_config(args.config)
    if args.report:
        return _print_report(config_path=config_path, month=args.report, email=args.email)

    if config_path is not None:
        os.environ["HOURLOG_CONFIG"] = str(config_path)

    import uvicorn

    uvicorn.run("hourlog.app:app", host=args.host, port=args.port, reload=bool(args.reload))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
