"""Structured log event name constants for VTX Sync.

Every key transition in the orchestrator emits a log record with an
``event`` field (passed via ``extra={"event": events.X}``).  In
``LOG_FORMAT=json`` mode the value surfaces as ``extra.event``; in text mode
the message text is self-describing and the event is not interpolated.

Usage example::

    import logging
    from vtxsync.core import events

    logger = logging.getLogger(__name__)

    logger.info("Run started", extra={"event": events.RUN_START})
"""

from __future__ import annotations

__all__ = [
    # Scheduler
    "TICK_SKIPPED_IN_FLIGHT",
    "TICK_SKIPPED_CIRCUIT_OPEN",
    "TICK_ERROR",
    # Run lifecycle
    "RUN_START",
    "RUN_SUCCESS",
    "RUN_FAILURE",
    "RUN_RETRY_SCHEDULED",
    "RUN_RETRY_EXHAUSTED",
    # Export phases
    "PHASE_START",
    "PHASE_FAILED",
    "DOWNLOAD_EVENT",
    "DOWNLOAD_CAPTURED",
    # Circuit breaker
    "CIRCUIT_OPENED",
    "CIRCUIT_CLOSED",
    "CIRCUIT_AUTO_RESET",
    # Notifications
    "NOTIFY_SENT",
    "NOTIFY_ERROR",
    "ALERT",
]

# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

#: A trigger fired while a previous attempt was still in flight.
TICK_SKIPPED_IN_FLIGHT: str = "TICK_SKIPPED_IN_FLIGHT"

#: A trigger fired while the circuit breaker was open.
TICK_SKIPPED_CIRCUIT_OPEN: str = "TICK_SKIPPED_CIRCUIT_OPEN"

#: An unexpected exception escaped a scheduler tick (logged, never raised).
TICK_ERROR: str = "TICK_ERROR"

# ---------------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------------

#: Emitted once at the start of every run attempt (primary and retry).
RUN_START: str = "RUN_START"

#: A run attempt finished successfully.
RUN_SUCCESS: str = "RUN_SUCCESS"

#: A run attempt finished with a categorised failure.
RUN_FAILURE: str = "RUN_FAILURE"

#: The primary attempt failed and the single retry has been scheduled.
RUN_RETRY_SCHEDULED: str = "RUN_RETRY_SCHEDULED"

#: The retry attempt failed as well.
RUN_RETRY_EXHAUSTED: str = "RUN_RETRY_EXHAUSTED"

# ---------------------------------------------------------------------------
# Export phases
# ---------------------------------------------------------------------------

#: A browser phase (login, navigate, trigger-export, await-download) started.
PHASE_START: str = "PHASE_START"

#: A browser phase raised; a screenshot was attempted.
PHASE_FAILED: str = "PHASE_FAILED"

#: Advisory browser download lifecycle notification.
DOWNLOAD_EVENT: str = "DOWNLOAD_EVENT"

#: A stable, signature-checked file was read from the download directory.
DOWNLOAD_CAPTURED: str = "DOWNLOAD_CAPTURED"

# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------

#: Consecutive failures reached the threshold; attempts are now blocked.
CIRCUIT_OPENED: str = "CIRCUIT_OPENED"

#: A successful run closed an open circuit.
CIRCUIT_CLOSED: str = "CIRCUIT_CLOSED"

#: The reset window elapsed and the circuit closed without a success.
CIRCUIT_AUTO_RESET: str = "CIRCUIT_AUTO_RESET"

# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

#: A success / failure e-mail was delivered (or logged in dry-run mode).
NOTIFY_SENT: str = "NOTIFY_SENT"

#: A notification attempt failed; the scheduler outcome is unaffected.
NOTIFY_ERROR: str = "NOTIFY_ERROR"

#: Retry-exhausted operator alert.
ALERT: str = "ALERT"
