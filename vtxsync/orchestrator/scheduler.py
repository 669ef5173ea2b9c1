"""Calendar scheduler for VTX Sync.

Fires a sync trigger on a fixed wall-clock calendar (by default minutes
``{0, 30}`` of hours 5–22 inclusive in ``America/Los_Angeles``) and wraps
every trigger with:

* an **overlap guard** — a trigger arriving while a run is in flight is
  skipped, never queued;
* the shared :class:`~vtxsync.orchestrator.circuit_breaker.CircuitBreaker`
  — while open, triggers are skipped without touching the counter;
* a random start delay drawn from ``[0, SYNC_DELAY_MAX_S)`` so runs do not
  hit the portal on exact half-hour marks;
* the retry-once policy of :func:`~vtxsync.orchestrator.retry.run_with_retry`;
* notification routing and status publication.

Architecture
~~~~~~~~~~~~
The calendar loop uses ``asyncio.sleep`` until the next fire time; no
external scheduler library is required.  Each trigger is spawned as its own
task so a slow run never delays the calendar, which is what makes the
overlap guard meaningful.  :func:`next_run_time` is pure and DST-aware via
:mod:`zoneinfo`.

Typical usage::

    import asyncio
    from vtxsync.core.run_context import RunContext
    from vtxsync.orchestrator.scheduler import run_continuous

    asyncio.run(run_continuous(RunContext()))
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import random
import signal
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any, NoReturn
from zoneinfo import ZoneInfo

from vtxsync.api.http_client import ApiHttpClient
from vtxsync.core import events
from vtxsync.core.exceptions import ConfigError
from vtxsync.core.ids import generate_run_id
from vtxsync.core.models import SyncResult, TriggerCalendar
from vtxsync.core.run_context import RunContext
from vtxsync.core.settings import Settings
from vtxsync.notifiers.notifier import Notifier
from vtxsync.notifiers.resend import ResendClient
from vtxsync.orchestrator.circuit_breaker import CircuitBreaker
from vtxsync.orchestrator.health import create_app, serve_health
from vtxsync.orchestrator.retry import run_with_retry
from vtxsync.orchestrator.status import StatusTracker, write_status_file
from vtxsync.orchestrator.sync import run_sync

__all__ = [
    "Scheduler",
    "build_notifier",
    "next_jitter",
    "next_run_time",
    "require_credentials",
    "run_continuous",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Calendar helpers (pure, no I/O)
# ---------------------------------------------------------------------------


def _exists(local: datetime) -> bool:
    """Return ``False`` for wall times inside a DST gap."""
    round_trip = local.astimezone(UTC).astimezone(local.tzinfo)
    return round_trip.replace(tzinfo=None) == local.replace(tzinfo=None)


def next_run_time(now: datetime, calendar: TriggerCalendar) -> datetime:
    """Return the first calendar point strictly after *now*.

    Args:
        now: Timezone-aware reference time (any zone).
        calendar: Trigger calendar to evaluate.

    Returns:
        Aware datetime in the calendar's timezone.

    Raises:
        ValueError: If *now* is naive.
    """
    if now.tzinfo is None:
        raise ValueError("next_run_time requires a timezone-aware datetime.")

    tz = ZoneInfo(calendar.timezone)
    local_now = now.astimezone(tz)
    now_utc = now.astimezone(UTC)

    for day_offset in range(3):
        day = local_now.date() + timedelta(days=day_offset)
        for hour in range(calendar.start_hour, calendar.end_hour + 1):
            for minute in calendar.minutes:
                candidate = datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz)
                if not _exists(candidate):
                    continue
                if candidate.astimezone(UTC) > now_utc:
                    return candidate

    # Every calendar has at least one point per day; reaching here means the
    # three-day horizon was exhausted by DST gaps alone.
    raise ValueError(f"No trigger time found after {now.isoformat()} for {calendar.describe()}.")


def next_jitter(max_s: float, rng: random.Random | Any = random) -> float:
    """Return a start delay in ``[0, max_s)``; ``0`` when *max_s* is not positive."""
    if max_s <= 0:
        return 0.0
    return rng.random() * max_s


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class Scheduler:
    """Owns the overlap guard, the breaker, and the trigger routine.

    Args:
        settings: Application settings.
        notifier: Outcome notifier.
        breaker: Shared circuit breaker.  Built from settings if ``None``.
        status: Status tracker.  Built from settings if ``None``.
        attempt: Coroutine function running one attempt for a run id.
            Defaults to :func:`~vtxsync.orchestrator.sync.run_sync` bound to
            *settings*.
        sleep: Awaitable sleep used for jitter and the retry delay.
        clock: Callable returning an aware UTC datetime.
        rng: Random source for the jitter.
    """

    def __init__(
        self,
        settings: Settings,
        notifier: Notifier,
        *,
        breaker: CircuitBreaker | None = None,
        status: StatusTracker | None = None,
        attempt: Callable[[str], Awaitable[SyncResult]] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        rng: random.Random | Any = random,
    ) -> None:
        self._settings = settings
        self._notifier = notifier
        self._calendar = settings.trigger_calendar
        self._breaker = breaker or CircuitBreaker(
            settings.circuit_failure_threshold,
            timedelta(seconds=settings.circuit_reset_s),
            clock=clock,
        )
        self._status = status or StatusTracker(
            functools.partial(_next_for, calendar=self._calendar),
            breaker=self._breaker,
            clock=clock,
        )
        self._attempt = attempt or functools.partial(run_sync, settings=settings)
        self._sleep = sleep
        self._clock = clock
        self._rng = rng
        self._in_flight = False
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def status(self) -> StatusTracker:
        return self._status

    @property
    def calendar(self) -> TriggerCalendar:
        return self._calendar

    # ------------------------------------------------------------------
    # Trigger routine
    # ------------------------------------------------------------------

    async def tick(self, *, jitter: bool = True) -> SyncResult | None:
        """Handle one calendar trigger.

        Args:
            jitter: Apply the random start delay.  Disabled for manual runs.

        Returns:
            The terminal :class:`SyncResult`, or ``None`` when the trigger
            was skipped (run in flight, circuit open) or failed unexpectedly.
        """
        if self._in_flight:
            logger.info(
                "Trigger skipped: previous run still in flight.",
                extra={"event": events.TICK_SKIPPED_IN_FLIGHT},
            )
            return None

        if self._breaker.is_open():
            circuit = self._breaker.status()
            remaining = circuit.remaining(self._clock())
            logger.warning(
                "Trigger skipped: circuit open after %d consecutive failures "
                "(opened %s, resets %s, %.0f s remaining).",
                circuit.consecutive_failures,
                circuit.opened_at.isoformat() if circuit.opened_at else "-",
                circuit.will_reset_at.isoformat() if circuit.will_reset_at else "-",
                remaining.total_seconds(),
                extra={"event": events.TICK_SKIPPED_CIRCUIT_OPEN},
            )
            return None

        self._in_flight = True
        try:
            run_id = generate_run_id(self._clock())
            delay = next_jitter(self._settings.sync_delay_max_s, self._rng) if jitter else 0.0
            logger.info("Trigger accepted as %s; starting in %.1f s.", run_id, delay)
            await self._sleep(delay)

            result = await run_with_retry(
                run_id,
                self._attempt,
                retry_delay_s=self._settings.retry_delay_s,
                sleep=self._sleep,
            )

            if result.success:
                self._breaker.record_success()
                await self._notify(self._notifier.send_success, result)
            else:
                self._breaker.record_failure()
                if result.is_retry_exhausted:
                    await self._notify(self._notifier.send_alert, result)
                    await self._notify(self._notifier.send_failure, result)

            self._status.record(result)
            write_status_file(self._status.snapshot(), self._settings.status_path)
            return result
        except Exception:
            logger.exception("Unexpected error in trigger routine.", extra={"event": events.TICK_ERROR})
            return None
        finally:
            self._in_flight = False

    async def _notify(
        self,
        send: Callable[[SyncResult], Awaitable[Any]],
        result: SyncResult,
    ) -> None:
        """Run one notification; failures are logged and never propagated."""
        try:
            await send(result)
        except Exception:
            logger.exception(
                "Notification %s failed for %s.",
                getattr(send, "__name__", send),
                result.run_id,
                extra={"event": events.NOTIFY_ERROR},
            )

    # ------------------------------------------------------------------
    # Calendar loop
    # ------------------------------------------------------------------

    async def run_calendar(self) -> NoReturn:
        """Sleep until each calendar point and spawn :meth:`tick` as a task."""
        logger.info("Trigger calendar: %s.", self._calendar.describe())
        last_fire: datetime | None = None

        while True:
            now = self._clock()
            fire_at = next_run_time(now, self._calendar)
            if last_fire is not None and fire_at <= last_fire:
                fire_at = next_run_time(last_fire, self._calendar)

            wait_s = max(0.0, (fire_at - now).total_seconds())
            logger.info("Next trigger at %s (in %.0f s).", fire_at.isoformat(), wait_s)
            await self._sleep(wait_s)
            last_fire = fire_at

            task = asyncio.create_task(self.tick(), name=f"vtxsync-tick-{fire_at:%H%M}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def shutdown(self) -> None:
        """Cancel triggers spawned by :meth:`run_calendar` and wait for them to unwind.

        Must complete before the shared HTTP client closes, so an in-flight
        run releases its browser and download directory first.
        """
        pending = [task for task in self._tasks if not task.done()]
        if not pending:
            return
        logger.info("Cancelling %d in-flight trigger(s).", len(pending))
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)


def _next_for(now: datetime, *, calendar: TriggerCalendar) -> datetime:
    return next_run_time(now, calendar)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def require_credentials(ctx: RunContext, settings: Settings) -> None:
    """Refuse to start a live process without portal and upload credentials.

    In dry-run mode the missing names are only logged, so the calendar and
    notification wiring can be exercised locally.

    Raises:
        ConfigError: A required credential is empty and *ctx* is live.
    """
    missing = settings.missing_credentials
    if not missing:
        return
    if ctx.dry_run:
        logger.warning("Missing %s; runs will fail until they are set.", ", ".join(missing))
        return
    raise ConfigError(
        f"Live mode requires {', '.join(missing)}. Set them in .env (or env vars)."
    )


def build_notifier(
    ctx: RunContext,
    settings: Settings,
    http: ApiHttpClient | None,
) -> Notifier:
    """Build the :class:`Notifier`; the e-mail client is attached only when configured."""
    client = None
    if settings.email_configured and http is not None:
        client = ResendClient(settings.resend_api_key, settings.notification_email_from, http)
    elif settings.enable_email_notifications:
        logger.warning("E-mail notifications enabled but RESEND_API_KEY or sender missing.")
    return Notifier(
        ctx,
        client,
        recipients=settings.notification_recipients,
        timezone=settings.schedule_timezone,
        alert_contact=settings.alert_email,
    )


async def run_continuous(
    ctx: RunContext,
    settings: Settings | None = None,
) -> NoReturn:
    """Run VTX Sync on its trigger calendar until cancelled.

    Starts the calendar loop and, when ``HEALTH_PORT`` is non-zero, the
    health server, and runs them concurrently via :func:`asyncio.gather`.
    Stop the process with ``SIGINT`` (Ctrl+C) or ``SIGTERM``.

    A ``SIGTERM`` handler is registered on the running loop; it cancels the
    calendar and health tasks.  On the way out :meth:`Scheduler.shutdown`
    cancels any spawned trigger and waits for it, so the in-flight run unwinds
    through its ``finally`` blocks (browser closed, download directory
    removed) while the shared HTTP client is still open.  The handler is
    removed in the same ``finally`` block.

    Args:
        ctx: Runtime operating-mode flags.
        settings: Application settings.  Loaded from environment if ``None``.

    Raises:
        ConfigError: Required credentials are missing in live mode.
        asyncio.CancelledError: On normal shutdown.
    """
    if settings is None:
        settings = Settings()
    require_credentials(ctx, settings)

    logger.info("VTX Sync entering continuous mode (%s).", ctx)

    async with ApiHttpClient(user_agent=settings.user_agent) as http:
        scheduler = Scheduler(settings, build_notifier(ctx, settings, http))

        tasks = [asyncio.create_task(scheduler.run_calendar(), name="vtxsync-calendar")]
        if settings.health_port > 0:
            app = create_app(scheduler.status)
            tasks.append(
                asyncio.create_task(
                    serve_health(app, settings.health_host, settings.health_port),
                    name="vtxsync-health",
                )
            )

        loop = asyncio.get_running_loop()
        _shutdown_signal: list[str] = []

        def _request_graceful_shutdown(signame: str) -> None:
            if not _shutdown_signal:
                _shutdown_signal.append(signame)
                logger.info(
                    "Received %s — graceful shutdown requested; cancelling active tasks.",
                    signame,
                )
            for task in tasks:
                task.cancel()

        loop.add_signal_handler(signal.SIGTERM, lambda: _request_graceful_shutdown("SIGTERM"))

        try:
            await asyncio.gather(*tasks)
        except (asyncio.CancelledError, KeyboardInterrupt):
            if _shutdown_signal:
                logger.info("Shutting down after %s.", _shutdown_signal[0])
            else:
                logger.info("Continuous loop cancelled — stopping tasks.")
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            with contextlib.suppress(Exception):
                loop.remove_signal_handler(signal.SIGTERM)
            await scheduler.shutdown()

    raise RuntimeError("run_continuous exited unexpectedly — this is a bug")
