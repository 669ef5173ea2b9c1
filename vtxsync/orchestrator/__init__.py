"""Scheduling, retry policy, failure isolation, and the status surface.

Public API
----------
* :func:`~vtxsync.orchestrator.scheduler.run_continuous` — default runtime
  entry-point; fires triggers on the calendar until stopped.
* :class:`~vtxsync.orchestrator.scheduler.Scheduler` — overlap guard,
  breaker gate, jitter, and notification routing for a single trigger.
* :func:`~vtxsync.orchestrator.scheduler.next_run_time` — pure calendar
  helper; also exposed for testing.
* :func:`~vtxsync.orchestrator.retry.run_with_retry` — retry-once policy.
* :func:`~vtxsync.orchestrator.sync.run_sync` — one export + upload attempt.
* :class:`~vtxsync.orchestrator.circuit_breaker.CircuitBreaker` —
  consecutive-failure gate with timed auto-reset.
* :class:`~vtxsync.orchestrator.status.StatusTracker` /
  :func:`~vtxsync.orchestrator.health.create_app` — ``GET /health``.
"""

from vtxsync.orchestrator.circuit_breaker import CircuitBreaker, CircuitStatus
from vtxsync.orchestrator.health import create_app, serve_health
from vtxsync.orchestrator.retry import run_with_retry
from vtxsync.orchestrator.scheduler import (
    Scheduler,
    build_notifier,
    next_jitter,
    next_run_time,
    require_credentials,
    run_continuous,
)
from vtxsync.orchestrator.status import StatusTracker, write_status_file
from vtxsync.orchestrator.sync import run_sync

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitStatus",
    # Scheduler
    "Scheduler",
    "build_notifier",
    "next_jitter",
    "next_run_time",
    "require_credentials",
    "run_continuous",
    # Run execution
    "run_sync",
    "run_with_retry",
    # Status surface
    "StatusTracker",
    "create_app",
    "serve_health",
    "write_status_file",
]
