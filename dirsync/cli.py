"""CLI entry point: sync, scheduler, status."""

from __future__ import annotations

import argparse
import importlib
import json
import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv

from dirsync.base_provider import BaseProvider
from dirsync.config import SyncConfig, load_config
from dirsync.db import Database
from dirsync.errors import ConfigError, DirectorySyncError
from dirsync.logging_config import configure_logging

logger = logging.getLogger("dirsync.cli")

PROVIDER_REGISTRY: dict[str, tuple[str, str]] = {
    # name -> (module_path, class_name)
    "okta": ("dirsync.providers.okta", "OktaProvider"),
}


def _get_provider(name: str, config: SyncConfig, db: Optional[Database]) -> BaseProvider:
    """Instantiate a provider by name."""
    entry = PROVIDER_REGISTRY.get(name)
    if not entry:
        raise ConfigError(f"unknown provider {name!r}")
    module_path, class_name = entry
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)
    return cls(config, db)


def _open_database(config: SyncConfig) -> Optional[Database]:
    if config.database is None:
        return None
    db = Database(config.database)
    db.ensure_schema()
    return db


def cmd_sync(args: argparse.Namespace) -> None:
    """Run a one-shot sync and print the normalized directory as JSON."""
    config = load_config()
    db = _open_database(config)
    provider = _get_provider(args.provider, config, db)

    try:
        logger.info("Starting sync for %s", args.provider)
        result = provider.sync_with_tracking(full=args.full)
        payload = json.dumps(result.to_dict(), indent=2)
        if args.output:
            with open(args.output, "w", encoding="utf-8") as fh:
                fh.write(payload + "\n")
            logger.info("Wrote directory to %s: %s", args.output, result.counts())
        else:
            print(payload)
    finally:
        provider.close()
        if db is not None:
            db.close()


def cmd_scheduler(args: argparse.Namespace) -> None:
    """Start the APScheduler-based scheduling loop."""
    from dirsync.scheduler import start_scheduler

    config = load_config()
    db = _open_database(config)
    provider = _get_provider(args.provider, config, db)
    try:
        start_scheduler(provider, config)
    finally:
        provider.close()
        if db is not None:
            db.close()


def cmd_status(args: argparse.Namespace) -> None:
    """Show recent sync runs."""
    config = load_config()
    db = _open_database(config)
    if db is None:
        raise ConfigError("run tracking is not configured; set DATABASE_URL")

    try:
        runs = db.get_recent_runs(
            tenant_id=config.tenant_id,
            provider=args.provider,
            limit=args.limit,
        )
        if not runs:
            print("No sync runs found.")
            return

        fmt = "{:<36}  {:<8}  {:<8}  {:<5}  {:<20}  {:<20}  {:>8}  {}"
        print(fmt.format(
            "RUN ID", "PROVIDER", "STATUS", "FULL",
            "STARTED", "FINISHED", "RECORDS", "ERROR",
        ))
        print("-" * 140)
        for r in runs:
            started = str(r["started_at"])[:19] if r["started_at"] else ""
            finished = str(r["finished_at"])[:19] if r["finished_at"] else ""
            full = "" if r.get("full_sync") is None else ("yes" if r["full_sync"] else "no")
            error = (r.get("error_message") or "")[:40]
            print(fmt.format(
                str(r["id"])[:36],
                r["provider"],
                r["status"],
                full,
                started,
                finished,
                r.get("records_upserted", 0),
                error,
            ))
    finally:
        db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dirsync",
        description="Identity provider directory synchronization",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Run one-shot sync")
    sync_parser.add_argument(
        "--provider", "-p",
        choices=sorted(PROVIDER_REGISTRY),
        default="okta",
        help="Provider to sync (default: okta)",
    )
    sync_parser.add_argument(
        "--full",
        action="store_true",
        help="Ignore any incremental state and list every group",
    )
    sync_parser.add_argument(
        "--output", "-o",
        help="Write the directory JSON to this file instead of stdout",
    )
    sync_parser.set_defaults(func=cmd_sync)

    sched_parser = subparsers.add_parser("scheduler", help="Start scheduled sync loop")
    sched_parser.add_argument(
        "--provider", "-p",
        choices=sorted(PROVIDER_REGISTRY),
        default="okta",
    )
    sched_parser.set_defaults(func=cmd_scheduler)

    status_parser = subparsers.add_parser("status", help="Show recent sync runs")
    status_parser.add_argument(
        "--provider", "-p",
        choices=sorted(PROVIDER_REGISTRY),
        default=None,
        help="Filter by provider",
    )
    status_parser.add_argument(
        "--limit", "-l",
        type=int,
        default=10,
        help="Number of runs to show (default: 10)",
    )
    status_parser.set_defaults(func=cmd_status)
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main CLI entry point."""
    load_dotenv()
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    args = build_parser().parse_args(argv)
    try:
        args.func(args)
    except (ConfigError, DirectorySyncError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
