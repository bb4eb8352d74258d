"""Command-line entry point.

Usage:
    python -m token_metrics_tracker serve
    python -m token_metrics_tracker cycle
    python -m token_metrics_tracker dispatch
    python -m token_metrics_tracker work [--budget SECONDS]
    python -m token_metrics_tracker init-db
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from token_metrics_tracker.config import Settings, get_settings
from token_metrics_tracker.pipeline import TrackerService
from token_metrics_tracker.storage.database import DatabaseManager

logger = logging.getLogger("token_metrics_tracker")


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _cycle(settings: Settings) -> int:
    async with TrackerService(settings) as service:
        run_stats = await service.run_cycle()
    if run_stats is None:
        return 1
    return 0


async def _dispatch(settings: Settings) -> int:
    async with TrackerService(settings) as service:
        queued = await service.dispatch()
    print(f"Queued {queued} batches")
    return 0


async def _work(settings: Settings, budget: float | None, keep_polling: bool) -> int:
    async with TrackerService(settings) as service:
        run_stats = await service.work(budget, stop_when_drained=not keep_polling)
    print(
        f"Processed {run_stats.mints_processed} mints "
        f"(skipped {run_stats.mints_skipped}, failed {run_stats.mints_failed}, "
        f"alerts {run_stats.alerts_triggered})"
    )
    return 0


async def _init_db(settings: Settings) -> int:
    db = DatabaseManager(settings.database.url)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()
    return 0


def _serve(settings: Settings) -> int:
    import uvicorn

    from token_metrics_tracker.api.app import create_app
    from token_metrics_tracker.scheduler import TrackerScheduler

    service = TrackerService(settings)
    scheduler = (
        TrackerScheduler(service, interval_minutes=settings.scheduler.interval_minutes)
        if settings.scheduler.enabled
        else None
    )
    app = create_app(service, scheduler=scheduler)
    uvicorn.run(app, host=settings.api.host, port=settings.api.port, log_level=settings.log_level.lower())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="token_metrics_tracker",
        description="Track token risk metrics and fire threshold alerts",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Run the HTTP API and the cycle scheduler")
    sub.add_parser("cycle", help="Run one dispatch + processing cycle and exit")
    sub.add_parser("dispatch", help="Queue batches for all tracked mints and exit")
    work = sub.add_parser("work", help="Process queued batches within a time budget")
    work.add_argument("--budget", type=float, default=None, help="Seconds to spend (default: WORKER_BUDGET_SECONDS)")
    work.add_argument(
        "--keep-polling",
        action="store_true",
        help="Keep waiting for batches until the budget expires even when the queue is empty",
    )
    sub.add_parser("init-db", help="Create database tables")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    _configure_logging(settings)

    try:
        settings.validate_requirements(command=args.command)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        return 2

    logger.info("Starting %s with settings: %s", args.command, settings.redacted_summary())

    if args.command == "serve":
        return _serve(settings)
    if args.command == "cycle":
        return asyncio.run(_cycle(settings))
    if args.command == "dispatch":
        return asyncio.run(_dispatch(settings))
    if args.command == "work":
        return asyncio.run(_work(settings, args.budget, args.keep_polling))
    if args.command == "init-db":
        return asyncio.run(_init_db(settings))
    return 2


if __name__ == "__main__":
    sys.exit(main())
