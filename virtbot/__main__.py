"""CLI entry point: ``python -m virtbot {dashboard,bot,genkey}``."""

from __future__ import annotations

import argparse
import os

import uvicorn

from virtbot.core.config import load_config
from virtbot.logging import configure_logging
from virtbot.storage.crypto import generate_key
from virtbot.storage.panels import init_db


def run_dashboard(reload_enabled: bool | None = None) -> None:
    """Run the FastAPI dashboard with config/env host and port overrides."""
    config = load_config()
    host = os.getenv("UVICORN_HOST", os.getenv("HOST", config.dashboard.host))
    port = int(os.getenv("UVICORN_PORT", os.getenv("PORT", str(config.dashboard.port))))
    if reload_enabled is None:
        reload_enabled = os.getenv("UVICORN_RELOAD", os.getenv("RELOAD", "false")).lower() == "true"

    uvicorn.run("virtbot.main:app", host=host, port=port, reload=reload_enabled, log_config=None)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="virtbot", description="Discord VM management bot and dashboard API")
    sub = parser.add_subparsers(dest="command", required=True)
    dashboard = sub.add_parser("dashboard", help="Run the dashboard API")
    dashboard.add_argument("--reload", action="store_true", default=None, help="Reload on code changes")
    sub.add_parser("bot", help="Run the Discord bot")
    sub.add_parser("genkey", help="Print a new credentials encryption key")
    args = parser.parse_args(argv)

    if args.command == "genkey":
        print(generate_key())
        return

    configure_logging()
    init_db()
    if args.command == "dashboard":
        run_dashboard(args.reload)
    else:
        from virtbot.bot.client import run_bot

        run_bot()


if __name__ == "__main__":  # pragma: no cover - convenience entry point
    main()
