"""Retry-once policy around a sync attempt.

:func:`run_with_retry` runs the primary attempt and, only if it failed,
exactly one secondary attempt after a fixed delay.  The secondary runs under
:func:`~vtxsync.core.ids.derive_retry_id` of the primary id so both attempts
can be correlated in the logs.

The returned record is the *terminal* one:

* primary succeeded → the primary, unchanged, with no delay incurred;
* primary failed → the secondary, annotated ``was_retry=True`` with the
  primary's error and id, and ``is_retry_exhausted=True`` when the
  secondary failed as well.

The function never raises (other than :class:`asyncio.CancelledError`).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, Final

from vtxsync.core import events
from vtxsync.core.ids import derive_retry_id
from vtxsync.core.models import ErrorCategory, Phase, SyncResult
from vtxsync.orchestrator.sync import failed_result

__all__ = ["DEFAULT_RETRY_DELAY_S", "run_with_retry"]

logger = logging.getLogger(__name__)

#: Default pause between a failed primary attempt and its retry (5 minutes).
DEFAULT_RETRY_DELAY_S: Final[float] = 300.0


async def _attempt_safely(
    attempt: Callable[[str], Awaitable[SyncResult]],
    run_id: str,
) -> SyncResult:
    """Run *attempt*, converting a stray exception into a failed record."""
    started = datetime.now(UTC)
    try:
        return await attempt(run_id)
    except Exception as exc:
        logger.exception("Attempt %s raised instead of returning a result.", run_id)
        return failed_result(
            run_id,
            started,
            phase=Phase.LOGIN,
            category=ErrorCategory.EXPORT,
            message=f"Unexpected error: {exc}",
        )


async def run_with_retry(
    run_id: str,
    attempt: Callable[[str], Awaitable[SyncResult]],
    *,
    retry_delay_s: float = DEFAULT_RETRY_DELAY_S,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> SyncResult:
    """Run *attempt* under *run_id*, retrying once after *retry_delay_s* on failure.

    Args:
        run_id: Primary run id.
        attempt: Coroutine function executing one attempt for a given id,
            usually :func:`~vtxsync.orchestrator.sync.run_sync` with settings
            bound.
        retry_delay_s: Pause before the retry.
        sleep: Awaitable sleep function.  Override in tests.

    Returns:
        The terminal :class:`SyncResult` (see module docstring).
    """
    primary = await _attempt_safely(attempt, run_id)
    if primary.success:
        return primary

    logger.warning(
        "Run %s failed (category=%s, phase=%s): %s — retrying once in %.0f s.",
        run_id,
        primary.error_category,
        primary.phase,
        primary.error,
        retry_delay_s,
        extra={"event": events.RUN_RETRY_SCHEDULED},
    )
    await sleep(retry_delay_s)

    secondary = await _attempt_safely(attempt, derive_retry_id(run_id))
    annotations: dict[str, Any] = {
        "was_retry": True,
        "original_error": primary.error,
        "original_run_id": primary.run_id,
    }

    if secondary.success:
        logger.info("Retry %s succeeded after primary failure.", secondary.run_id)
    else:
        annotations["is_retry_exhausted"] = True
        logger.error(
            "Retry %s failed as well (category=%s): %s",
            secondary.run_id,
            secondary.error_category,
            secondary.error,
            extra={"event": events.RUN_RETRY_EXHAUSTED},
        )

    return secondary.model_copy(update=annotations)
