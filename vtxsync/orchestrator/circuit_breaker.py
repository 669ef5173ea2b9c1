"""Process-wide circuit breaker for sync runs.

Stops the scheduler from hammering the portal (and the team's inbox) when
the export is failing persistently.  After a fixed number of consecutive
failed runs the circuit **opens** and scheduled triggers are skipped until
either a run succeeds or a fixed reset window elapses.

State machine
~~~~~~~~~~~~~
::

    CLOSED ──(threshold consecutive failures)──▶ OPEN
      ▲                                           │
      ├──────────────(record_success)─────────────┤
      └──────────(reset window elapsed)───────────┘

There is no half-open trial state: after the window elapses the next
scheduled trigger simply runs normally, and its outcome counts like any
other.

The counter and the open timestamp are written only by this class.  Other
components see them through :meth:`CircuitBreaker.status`.  State lives in
memory only and resets when the process restarts.

Typical usage::

    breaker = CircuitBreaker()

    if breaker.is_open():
        logger.info("Circuit open — skipping trigger")
    else:
        result = await run_with_retry(...)
        if result.success:
            breaker.record_success()
        else:
            breaker.record_failure()
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Final

from vtxsync.core import events

__all__ = ["CircuitBreaker", "CircuitStatus"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Default number of consecutive failed runs before the circuit opens.
_DEFAULT_FAILURE_THRESHOLD: Final[int] = 5

#: Default time an open circuit waits before resetting itself.
_DEFAULT_RESET_AFTER: Final[timedelta] = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CircuitStatus:
    """Read-only snapshot of the breaker.

    Attributes:
        is_open: Whether triggers are currently blocked.
        consecutive_failures: Failed runs since the last success / reset.
        opened_at: When the circuit opened, or ``None``.
        will_reset_at: When an open circuit resets itself, or ``None``.
    """

    is_open: bool
    consecutive_failures: int
    opened_at: datetime | None
    will_reset_at: datetime | None

    def remaining(self, now: datetime) -> timedelta:
        """Time left until auto-reset (zero when closed or already due)."""
        if self.will_reset_at is None:
            return timedelta(0)
        return max(self.will_reset_at - now, timedelta(0))


# ---------------------------------------------------------------------------
# Breaker
# ---------------------------------------------------------------------------


class CircuitBreaker:
    """Consecutive-failure gate shared across scheduler triggers.

    Args:
        failure_threshold: Consecutive failures that open the circuit.
        reset_after: How long an open circuit stays open.
        clock: Callable returning an aware UTC :class:`datetime`.
            Override in tests for deterministic behaviour.
    """

    def __init__(
        self,
        failure_threshold: int = _DEFAULT_FAILURE_THRESHOLD,
        reset_after: timedelta = _DEFAULT_RESET_AFTER,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be ≥ 1, got {failure_threshold!r}.")
        self._failure_threshold = failure_threshold
        self._reset_after = reset_after
        self._clock = clock
        self._consecutive_failures = 0
        self._opened_at: datetime | None = None

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def opened_at(self) -> datetime | None:
        return self._opened_at

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def record_failure(self) -> None:
        """Count a failed run; open the circuit when the threshold is reached."""
        self._consecutive_failures += 1

        if self._consecutive_failures >= self._failure_threshold and self._opened_at is None:
            self._opened_at = self._clock()
            logger.warning(
                "Circuit OPEN after %d consecutive failures; triggers blocked until %s.",
                self._consecutive_failures,
                (self._opened_at + self._reset_after).isoformat(),
                extra={"event": events.CIRCUIT_OPENED},
            )
            return

        logger.debug(
            "Run failure %d / %d recorded.",
            self._consecutive_failures,
            self._failure_threshold,
        )

    def record_success(self) -> None:
        """Reset the counter and close the circuit if it was open."""
        was_open = self._opened_at is not None
        previous = self._consecutive_failures
        self._consecutive_failures = 0
        self._opened_at = None

        if was_open:
            logger.info(
                "Circuit CLOSED after a successful run (was %d consecutive failures).",
                previous,
                extra={"event": events.CIRCUIT_CLOSED},
            )
        elif previous:
            logger.debug("Run succeeded — resetting %d consecutive failure(s).", previous)

    def is_open(self) -> bool:
        """Return ``True`` while triggers should be skipped.

        An open circuit whose reset window has elapsed is reset here (counter
        and open time cleared) and reported closed.
        """
        if self._consecutive_failures < self._failure_threshold or self._opened_at is None:
            return False

        elapsed = self._clock() - self._opened_at
        if elapsed >= self._reset_after:
            logger.info(
                "Circuit reset window (%s) elapsed; allowing runs again.",
                self._reset_after,
                extra={"event": events.CIRCUIT_AUTO_RESET},
            )
            self._consecutive_failures = 0
            self._opened_at = None
            return False

        return True

    def status(self) -> CircuitStatus:
        """Return a snapshot without triggering an auto-reset."""
        will_reset_at = self._opened_at + self._reset_after if self._opened_at else None
        return CircuitStatus(
            is_open=self._opened_at is not None
            and self._consecutive_failures >= self._failure_threshold,
            consecutive_failures=self._consecutive_failures,
            opened_at=self._opened_at,
            will_reset_at=will_reset_at,
        )
