"""Read-only status surface for operators.

:class:`StatusTracker` remembers the last terminal
:class:`~vtxsync.core.models.SyncResult` and renders the snapshot served by
``GET /health`` and written to the JSON status file after every trigger::

    {
      "status": "ok" | "degraded",
      "last_run_time": "2026-01-18T13:30:41+00:00" | null,
      "last_run_status": "success" | "failure" | null,
      "next_run_time": "2026-01-18T06:00:00-08:00",
      "last_run_details": {...} | null,
      "circuit": {"is_open": false, "consecutive_failures": 0, ...}
    }

``status`` is ``degraded`` exactly when the last run failed.  A run that
failed once and then succeeded on retry reports ``ok``.

The status file is rewritten after *every* trigger.  Write errors are logged
at WARNING level and never propagated.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from vtxsync.core.models import SyncResult
from vtxsync.orchestrator.circuit_breaker import CircuitBreaker

__all__ = ["StatusTracker", "write_status_file"]

logger = logging.getLogger(__name__)


def _iso(moment: datetime | None) -> str | None:
    return moment.isoformat() if moment is not None else None


class StatusTracker:
    """Holds the last terminal run and renders status snapshots.

    Args:
        next_run: Pure function mapping "now" to the next scheduled fire
            time, usually :func:`~vtxsync.orchestrator.scheduler.next_run_time`
            bound to the active calendar.
        breaker: Optional breaker whose snapshot is included.
        clock: Callable returning an aware UTC datetime.
    """

    def __init__(
        self,
        next_run: Callable[[datetime], datetime],
        *,
        breaker: CircuitBreaker | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._next_run = next_run
        self._breaker = breaker
        self._clock = clock
        self._last: SyncResult | None = None

    @property
    def last_result(self) -> SyncResult | None:
        return self._last

    def record(self, result: SyncResult) -> None:
        """Remember *result* as the latest terminal run."""
        self._last = result

    def snapshot(self, now: datetime | None = None) -> dict[str, Any]:
        """Return the JSON-serialisable status snapshot."""
        now = now or self._clock()
        last = self._last

        payload: dict[str, Any] = {
            "status": "degraded" if last is not None and not last.success else "ok",
            "last_run_time": _iso(last.end_time) if last else None,
            "last_run_status": (
                None if last is None else ("success" if last.success else "failure")
            ),
            "next_run_time": _iso(self._next_run(now)),
            "last_run_details": _details(last) if last else None,
        }

        if self._breaker is not None:
            circuit = self._breaker.status()
            payload["circuit"] = {
                "is_open": circuit.is_open,
                "consecutive_failures": circuit.consecutive_failures,
                "opened_at": _iso(circuit.opened_at),
                "will_reset_at": _iso(circuit.will_reset_at),
            }
        return payload


def _details(result: SyncResult) -> dict[str, Any]:
    return {
        "run_id": result.run_id,
        "duration_s": round(result.duration_s, 1),
        "new_records": result.new_records,
        "duplicates": result.duplicates,
        "total_rows": result.total_rows,
        "upload_skipped": result.upload_skipped,
        "was_retry": result.was_retry,
        "error": result.error,
        "error_category": str(result.error_category) if result.error_category else None,
        "phase": str(result.phase),
    }


def write_status_file(snapshot: dict[str, Any], path: str) -> None:
    """Write *snapshot* as JSON to *path*; failures are logged, never raised."""
    try:
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(snapshot, fh, indent=2)
    except OSError:
        logger.warning("Failed to write status file '%s'.", path, exc_info=True)
