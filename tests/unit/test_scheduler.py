"""Unit tests for :mod:`vtxsync.orchestrator.scheduler`.

Tests cover:
- ``next_run_time`` — window boundaries, strictness, timezone conversion,
  and both DST transitions.
- ``next_jitter`` — half-open range.
- ``Scheduler.tick`` — overlap guard, circuit gate, jitter, notification
  routing, breaker bookkeeping, status publication, and isolation of
  notifier and unexpected failures.
- ``Scheduler.run_calendar`` — sleeps until the next point and spawns ticks
  without firing the same point twice.
- ``Scheduler.shutdown`` — spawned ticks are cancelled and awaited before
  the shared HTTP client closes.
- ``require_credentials`` — live startup refuses missing credentials.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import pytest

from vtxsync.core.exceptions import ConfigError, EmailError
from vtxsync.core.models import ErrorCategory, Phase, SyncResult, TriggerCalendar
from vtxsync.core.run_context import RunContext
from vtxsync.core.settings import Settings
from vtxsync.notifiers.notifier import Notifier
from vtxsync.orchestrator.circuit_breaker import CircuitBreaker
from vtxsync.orchestrator.scheduler import (
    Scheduler,
    next_jitter,
    next_run_time,
    require_credentials,
    run_continuous,
)

_LA = ZoneInfo("America/Los_Angeles")
_NOW = datetime(2026, 1, 18, 13, 10, tzinfo=UTC)  # 05:10 PST


def _la(*args: int) -> datetime:
    return datetime(*args, tzinfo=_LA)


# ---------------------------------------------------------------------------
# next_run_time
# ---------------------------------------------------------------------------


class TestNextRunTime:
    cal = TriggerCalendar()

    def test_before_window_opens(self) -> None:
        assert next_run_time(_la(2026, 1, 18, 4, 59), self.cal) == _la(2026, 1, 18, 5, 0)

    def test_strictly_after(self) -> None:
        assert next_run_time(_la(2026, 1, 18, 5, 0), self.cal) == _la(2026, 1, 18, 5, 30)

    def test_last_point_of_day(self) -> None:
        assert next_run_time(_la(2026, 1, 18, 22, 15), self.cal) == _la(2026, 1, 18, 22, 30)

    def test_after_window_rolls_to_next_day(self) -> None:
        assert next_run_time(_la(2026, 1, 18, 22, 30), self.cal) == _la(2026, 1, 19, 5, 0)

    def test_midnight(self) -> None:
        assert next_run_time(_la(2026, 1, 18, 0, 0), self.cal) == _la(2026, 1, 18, 5, 0)

    def test_utc_input_returned_in_calendar_zone(self) -> None:
        result = next_run_time(_NOW, self.cal)
        assert result == _la(2026, 1, 18, 5, 30)
        assert result.tzinfo == _LA

    def test_naive_rejected(self) -> None:
        with pytest.raises(ValueError):
            next_run_time(datetime(2026, 1, 18, 5, 0), self.cal)

    def test_custom_minutes(self) -> None:
        cal = TriggerCalendar(start_hour=8, end_hour=9, minutes=(15, 45))
        assert next_run_time(_la(2026, 1, 18, 9, 45), cal) == _la(2026, 1, 19, 8, 15)

    def test_spring_forward_gap_skipped(self) -> None:
        """02:30 does not exist on 2026-03-08 in Los Angeles."""
        cal = TriggerCalendar(start_hour=0, end_hour=23, minutes=(30,))
        result = next_run_time(_la(2026, 3, 8, 1, 45), cal)
        assert result == _la(2026, 3, 8, 3, 30)
        assert result.utcoffset() == timedelta(hours=-7)

    def test_fall_back_day_uses_standard_offset(self) -> None:
        result = next_run_time(_la(2026, 11, 1, 0, 0), self.cal)
        assert result == _la(2026, 11, 1, 5, 0)
        assert result.utcoffset() == timedelta(hours=-8)

    def test_summer_offset(self) -> None:
        result = next_run_time(datetime(2026, 7, 1, 12, 0, tzinfo=UTC), self.cal)
        assert result == _la(2026, 7, 1, 5, 30)
        assert result.utcoffset() == timedelta(hours=-7)


class TestNextJitter:
    def test_zero_allowed(self) -> None:
        rng = MagicMock()
        rng.random.return_value = 0.0
        assert next_jitter(60.0, rng) == 0.0

    def test_upper_bound_exclusive(self) -> None:
        for _ in range(200):
            assert 0.0 <= next_jitter(60.0) < 60.0

    def test_disabled(self) -> None:
        assert next_jitter(0.0) == 0.0


# ---------------------------------------------------------------------------
# Scheduler.tick
# ---------------------------------------------------------------------------


def _ok(run_id: str) -> SyncResult:
    return SyncResult(
        run_id=run_id,
        start_time=_NOW,
        end_time=_NOW + timedelta(seconds=20),
        success=True,
        phase=Phase.COMPLETE,
    )


def _failed(run_id: str) -> SyncResult:
    return SyncResult(
        run_id=run_id,
        start_time=_NOW,
        end_time=_NOW + timedelta(seconds=20),
        success=False,
        phase=Phase.UPLOAD,
        error="HTTP 500",
        error_category=ErrorCategory.UPLOAD,
    )


def _notifier() -> MagicMock:
    notifier = MagicMock(spec=Notifier)
    notifier.send_success = AsyncMock(return_value=True)
    notifier.send_failure = AsyncMock(return_value=True)
    notifier.send_alert = AsyncMock()
    return notifier


def _rng(value: float = 0.5) -> MagicMock:
    rng = MagicMock()
    rng.random.return_value = value
    return rng


def _scheduler(
    settings: Settings,
    attempt: object,
    *,
    notifier: MagicMock | None = None,
    sleep: AsyncMock | None = None,
    **kwargs: object,
) -> Scheduler:
    return Scheduler(
        settings,
        notifier or _notifier(),
        attempt=attempt,  # type: ignore[arg-type]
        sleep=sleep or AsyncMock(),
        clock=lambda: _NOW,
        rng=_rng(),
        **kwargs,  # type: ignore[arg-type]
    )


class TestTick:
    @pytest.mark.asyncio
    async def test_success_path(self, settings: Settings) -> None:
        notifier = _notifier()
        sleep = AsyncMock()
        attempt = AsyncMock(side_effect=_ok)
        scheduler = _scheduler(settings, attempt, notifier=notifier, sleep=sleep)

        result = await scheduler.tick()

        assert result is not None and result.success
        assert result.run_id.startswith("sync-20260118T131000-")
        sleep.assert_awaited_once_with(30.0)  # 0.5 * SYNC_DELAY_MAX_S
        notifier.send_success.assert_awaited_once_with(result)
        notifier.send_alert.assert_not_awaited()
        notifier.send_failure.assert_not_awaited()
        assert scheduler.breaker.consecutive_failures == 0
        assert scheduler.in_flight is False
        assert scheduler.status.last_result == result

    @pytest.mark.asyncio
    async def test_status_file_written(self, settings: Settings) -> None:
        scheduler = _scheduler(settings, AsyncMock(side_effect=_ok))
        await scheduler.tick()
        snapshot = json.loads(Path(settings.status_path).read_text(encoding="utf-8"))
        assert snapshot["status"] == "ok"
        assert snapshot["last_run_status"] == "success"

    @pytest.mark.asyncio
    async def test_no_jitter_for_manual_runs(self, settings: Settings) -> None:
        sleep = AsyncMock()
        scheduler = _scheduler(settings, AsyncMock(side_effect=_ok), sleep=sleep)
        await scheduler.tick(jitter=False)
        sleep.assert_awaited_once_with(0.0)

    @pytest.mark.asyncio
    async def test_retry_exhausted_alerts_and_emails(self, settings: Settings) -> None:
        notifier = _notifier()
        attempt = AsyncMock(side_effect=_failed)
        scheduler = _scheduler(settings, attempt, notifier=notifier)

        result = await scheduler.tick()

        assert result is not None
        assert result.is_retry_exhausted is True
        assert attempt.await_count == 2
        notifier.send_alert.assert_awaited_once_with(result)
        notifier.send_failure.assert_awaited_once_with(result)
        notifier.send_success.assert_not_awaited()
        assert scheduler.breaker.consecutive_failures == 1
        snapshot = json.loads(Path(settings.status_path).read_text(encoding="utf-8"))
        assert snapshot["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_recovered_retry_never_alerts(self, settings: Settings) -> None:
        notifier = _notifier()
        attempt = AsyncMock(side_effect=[_failed("a"), _ok("b")])
        scheduler = _scheduler(settings, attempt, notifier=notifier)

        result = await scheduler.tick()

        assert result is not None and result.success and result.was_retry
        notifier.send_alert.assert_not_awaited()
        notifier.send_failure.assert_not_awaited()
        notifier.send_success.assert_awaited_once()
        assert scheduler.breaker.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_retry_delay_from_settings(self, settings: Settings) -> None:
        sleep = AsyncMock()
        scheduler = _scheduler(settings, AsyncMock(side_effect=[_failed("a"), _ok("b")]), sleep=sleep)
        await scheduler.tick()
        assert [c.args[0] for c in sleep.await_args_list] == [30.0, settings.retry_delay_s]

    @pytest.mark.asyncio
    async def test_overlapping_trigger_skipped(self, settings: Settings) -> None:
        release = asyncio.Event()
        calls: list[str] = []

        async def _slow(run_id: str) -> SyncResult:
            calls.append(run_id)
            await release.wait()
            return _ok(run_id)

        scheduler = _scheduler(settings, _slow)
        first = asyncio.create_task(scheduler.tick())
        while not calls:
            await asyncio.sleep(0)

        assert scheduler.in_flight is True
        assert await scheduler.tick() is None
        assert scheduler.in_flight is True
        assert len(calls) == 1

        release.set()
        result = await first
        assert result is not None and result.success
        assert scheduler.in_flight is False

    @pytest.mark.asyncio
    async def test_open_circuit_skips_without_counting(self, settings: Settings) -> None:
        breaker = CircuitBreaker(clock=lambda: _NOW)
        for _ in range(5):
            breaker.record_failure()
        attempt = AsyncMock(side_effect=_ok)
        scheduler = _scheduler(settings, attempt, breaker=breaker)

        assert await scheduler.tick() is None

        attempt.assert_not_awaited()
        assert breaker.consecutive_failures == 5
        assert scheduler.in_flight is False

    @pytest.mark.asyncio
    async def test_five_exhausted_runs_open_circuit(self, settings: Settings) -> None:
        attempt = AsyncMock(side_effect=_failed)
        scheduler = _scheduler(settings, attempt)

        for _ in range(5):
            await scheduler.tick()

        assert scheduler.breaker.is_open() is True
        assert attempt.await_count == 10
        assert await scheduler.tick() is None
        assert attempt.await_count == 10

    @pytest.mark.asyncio
    async def test_notifier_failure_isolated(self, settings: Settings) -> None:
        notifier = _notifier()
        notifier.send_success = AsyncMock(side_effect=EmailError("down"))
        scheduler = _scheduler(settings, AsyncMock(side_effect=_ok), notifier=notifier)

        result = await scheduler.tick()

        assert result is not None and result.success
        assert scheduler.status.last_result == result
        assert scheduler.in_flight is False

    @pytest.mark.asyncio
    async def test_alert_failure_does_not_block_failure_email(self, settings: Settings) -> None:
        notifier = _notifier()
        notifier.send_alert = AsyncMock(side_effect=RuntimeError("log sink down"))
        scheduler = _scheduler(settings, AsyncMock(side_effect=_failed), notifier=notifier)

        await scheduler.tick()

        notifier.send_failure.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unexpected_error_logged_and_guard_released(self, settings: Settings) -> None:
        status = MagicMock()
        status.record.side_effect = RuntimeError("boom")
        scheduler = _scheduler(settings, AsyncMock(side_effect=_ok), status=status)

        assert await scheduler.tick() is None
        assert scheduler.in_flight is False


# ---------------------------------------------------------------------------
# Scheduler.run_calendar
# ---------------------------------------------------------------------------


class TestRunCalendar:
    @pytest.mark.asyncio
    async def test_sleeps_until_next_point_and_spawns_tick(self, settings: Settings) -> None:
        sleep = AsyncMock(side_effect=[None, asyncio.CancelledError()])
        scheduler = _scheduler(settings, AsyncMock(side_effect=_ok), sleep=sleep)
        scheduler.tick = AsyncMock(return_value=None)  # type: ignore[method-assign]

        with pytest.raises(asyncio.CancelledError):
            await scheduler.run_calendar()

        waits = [c.args[0] for c in sleep.await_args_list]
        # 05:10 PST → 05:30 (1200 s); the frozen clock must not refire 05:30.
        assert waits == [1200.0, 3000.0]
        scheduler.tick.assert_called_once()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_spawned_tick(self, settings: Settings) -> None:
        started = asyncio.Event()
        cancelled: list[str] = []

        async def _blocked(run_id: str) -> SyncResult:
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.append(run_id)
                raise
            return _ok(run_id)

        async def _sleep(delay: float) -> None:
            # Second calendar wait (05:30 → 06:00) parks the loop.
            if delay >= 3000:
                await asyncio.Event().wait()

        scheduler = _scheduler(settings, _blocked, sleep=AsyncMock(side_effect=_sleep))
        calendar = asyncio.create_task(scheduler.run_calendar())
        await asyncio.wait_for(started.wait(), timeout=1)

        calendar.cancel()
        with pytest.raises(asyncio.CancelledError):
            await calendar
        # Cancelling the calendar leaves the spawned run alone.
        assert scheduler.in_flight is True

        await scheduler.shutdown()

        assert len(cancelled) == 1
        assert scheduler.in_flight is False

    @pytest.mark.asyncio
    async def test_shutdown_without_ticks_is_noop(self, settings: Settings) -> None:
        scheduler = _scheduler(settings, AsyncMock(side_effect=_ok))
        await scheduler.shutdown()
        assert scheduler.in_flight is False


class _RecordingHttp:
    def __init__(self, order: list[str]) -> None:
        self._order = order

    async def __aenter__(self) -> _RecordingHttp:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self._order.append("http-closed")


class TestRunContinuousShutdown:
    @pytest.mark.asyncio
    async def test_ticks_drained_before_http_client_closes(
        self, settings: Settings, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        order: list[str] = []
        scheduler = MagicMock(spec=Scheduler)
        scheduler.run_calendar = AsyncMock(side_effect=asyncio.CancelledError())
        scheduler.shutdown = AsyncMock(side_effect=lambda: order.append("ticks-drained"))
        monkeypatch.setattr(
            "vtxsync.orchestrator.scheduler.ApiHttpClient", lambda **_: _RecordingHttp(order)
        )
        monkeypatch.setattr("vtxsync.orchestrator.scheduler.Scheduler", lambda *_: scheduler)
        monkeypatch.setattr("vtxsync.orchestrator.scheduler.build_notifier", MagicMock())

        with pytest.raises(asyncio.CancelledError):
            await run_continuous(RunContext(), settings)

        assert order == ["ticks-drained", "http-closed"]


# ---------------------------------------------------------------------------
# Startup credential guard
# ---------------------------------------------------------------------------


class TestRequireCredentials:
    def test_complete_settings_pass(self, settings: Settings) -> None:
        require_credentials(RunContext(), settings)

    def test_live_mode_missing_credentials_raise(self, clean_env: None) -> None:
        with pytest.raises(ConfigError) as exc_info:
            require_credentials(RunContext(), Settings(pacific_track_email="ops@example.com"))
        message = str(exc_info.value)
        assert "PACIFIC_TRACK_PASSWORD" in message
        assert "SUPABASE_URL" in message
        assert "PACIFIC_TRACK_EMAIL" not in message

    def test_dry_run_only_warns(self, clean_env: None, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level("WARNING", logger="vtxsync.orchestrator.scheduler"):
            require_credentials(RunContext(dry_run=True), Settings())
        assert "SERVICE_ACCOUNT_EMAIL" in caplog.text

    @pytest.mark.asyncio
    async def test_run_continuous_refuses_to_start(self, clean_env: None) -> None:
        with pytest.raises(ConfigError):
            await run_continuous(RunContext(), Settings())
