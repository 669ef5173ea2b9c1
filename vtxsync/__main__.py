"""VTX Sync process entry-point.

Usage:
    python -m vtxsync [--once] [--dry-run] [--log-level LEVEL] [--log-format FORMAT]

The orchestration logic lives in ``vtxsync.orchestrator``.  This module
calls ``configure_logging()`` first so that every subsequent import already
has a working logger, then hands off to the orchestrator.

Default behaviour (no ``--once``) is continuous: triggers fire on the
calendar until the process is stopped.  Pass ``--once`` to execute a single
retry-wrapped sync (with notifications) and exit ``0`` on success, ``1`` on
failure.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from vtxsync.core import configure_logging
from vtxsync.core.exceptions import ConfigError
from vtxsync.core.run_context import RunContext
from vtxsync.core.settings import Settings


async def _run_once(ctx: RunContext, settings: Settings) -> bool:
    """Run one retry-wrapped sync and route its notifications."""
    from vtxsync.api.http_client import ApiHttpClient  # noqa: PLC0415
    from vtxsync.orchestrator.scheduler import (  # noqa: PLC0415
        Scheduler,
        build_notifier,
        require_credentials,
    )

    require_credentials(ctx, settings)
    async with ApiHttpClient(user_agent=settings.user_agent) as http:
        scheduler = Scheduler(settings, build_notifier(ctx, settings, http))
        result = await scheduler.tick(jitter=False)
    return result is not None and result.success


def main() -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    parser = argparse.ArgumentParser(
        prog="vtxsync",
        description="Scheduled CARB export from Pacific Track into VTX Uploads.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sync (with one retry) and exit instead of following the calendar.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log notification payloads without actually sending e-mails.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )

    args = parser.parse_args()

    # Configure logging BEFORE any other vtxsync imports so that every module
    # obtains a correctly-configured logger on first import.
    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"vtxsync: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)
    logger.info("VTX Sync starting up")

    try:
        settings = Settings()
    except ValueError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)

    ctx = RunContext(dry_run=args.dry_run or settings.dry_run)
    logger.info("Run context: %s", ctx)

    # Lazy import keeps startup fast when module is imported without running.
    from vtxsync.orchestrator.scheduler import run_continuous  # noqa: PLC0415

    try:
        if args.once:
            logger.info("Running a single sync (--once mode).")
            ok = asyncio.run(_run_once(ctx, settings))
            sys.exit(0 if ok else 1)
        else:
            logger.info("Running in continuous mode (Ctrl+C to stop).")
            asyncio.run(run_continuous(ctx=ctx, settings=settings))
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted — exiting.")
        sys.exit(0)
    except asyncio.CancelledError:
        # Raised when run_continuous() is stopped via SIGTERM; the handler in
        # scheduler.py already logged the shutdown.
        logger.info("Shutdown complete — exiting.")
        sys.exit(0)


if __name__ == "__main__":
    main()
