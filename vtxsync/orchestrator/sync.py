"""One sync run: portal export, service-account authentication, upload.

:func:`run_sync` executes a single attempt of the pipeline and always returns
a terminal :class:`~vtxsync.core.models.SyncResult`; it never raises (other
than :class:`asyncio.CancelledError` on shutdown).  Categorised
:class:`~vtxsync.core.exceptions.SyncError` failures keep their category and
phase; anything unexpected is categorised by the phase that was executing.

Resource ownership per attempt:

* the browser session and download directory belong to the
  :class:`~vtxsync.exporter.portal.PortalExporter` and are released before
  authentication starts;
* one :class:`~vtxsync.api.http_client.ApiHttpClient` is shared by the auth
  and upload calls and closed on exit.

Typical usage::

    result = await run_sync("sync-20260118T133012-a3f2b1c0", settings)
    if not result.success:
        print(result.error_category, result.error)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from vtxsync.api.auth import SupabaseAuthClient
from vtxsync.api.http_client import ApiHttpClient
from vtxsync.api.uploads import UploadClient
from vtxsync.core import events
from vtxsync.core.exceptions import SyncError
from vtxsync.core.logging_config import RUN_ID_CTX
from vtxsync.core.models import ErrorCategory, ExportArtifact, Phase, SyncResult, UploadResult
from vtxsync.core.settings import Settings
from vtxsync.exporter.portal import PortalExporter

__all__ = ["category_for_phase", "failed_result", "run_sync"]

logger = logging.getLogger(__name__)

_CATEGORY_BY_PHASE: dict[Phase, ErrorCategory] = {
    Phase.LOGIN: ErrorCategory.LOGIN,
    Phase.NAVIGATE: ErrorCategory.NAVIGATION,
    Phase.TRIGGER_EXPORT: ErrorCategory.EXPORT,
    Phase.AWAIT_DOWNLOAD: ErrorCategory.EXPORT,
    Phase.AUTHENTICATE: ErrorCategory.AUTH,
    Phase.UPLOAD: ErrorCategory.UPLOAD,
    Phase.COMPLETE: ErrorCategory.UPLOAD,
}


def category_for_phase(phase: Phase) -> ErrorCategory:
    """Category assigned to an uncategorised failure raised during *phase*."""
    return _CATEGORY_BY_PHASE[phase]


def failed_result(
    run_id: str,
    start_time: datetime,
    *,
    phase: Phase,
    category: ErrorCategory,
    message: str,
    artifact: ExportArtifact | None = None,
) -> SyncResult:
    """Build the terminal record of a failed attempt."""
    return SyncResult(
        run_id=run_id,
        start_time=start_time,
        end_time=max(datetime.now(UTC), start_time),
        success=False,
        phase=phase,
        error=message,
        error_category=category,
        filename=artifact.filename if artifact else None,
        file_size=artifact.size if artifact else None,
    )


def _default_http(settings: Settings) -> ApiHttpClient:
    return ApiHttpClient(
        user_agent=settings.user_agent,
        read_timeout=settings.upload_timeout_s,
        write_timeout=settings.upload_timeout_s,
    )


async def run_sync(
    run_id: str,
    settings: Settings,
    *,
    exporter_factory: Callable[[Settings, str], Any] = PortalExporter,
    http_factory: Callable[[Settings], ApiHttpClient] = _default_http,
) -> SyncResult:
    """Run the full pipeline once under *run_id*.

    Args:
        run_id: Correlation id for this attempt.
        settings: Application settings.
        exporter_factory: Builds the exporter; must return an object with an
            async ``run()`` returning an :class:`ExportArtifact` and a
            ``phase`` attribute.  Defaults to :class:`PortalExporter`.
        http_factory: Builds the HTTP client for auth and upload.

    Returns:
        The terminal :class:`SyncResult` of this attempt.
    """
    ctx_token = RUN_ID_CTX.set(run_id)
    start_time = datetime.now(UTC)
    phase = Phase.LOGIN
    artifact: ExportArtifact | None = None
    exporter: Any = None
    logger.info("Run %s started.", run_id, extra={"event": events.RUN_START})

    try:
        exporter = exporter_factory(settings, run_id)
        artifact = await exporter.run()

        phase = Phase.AUTHENTICATE
        async with http_factory(settings) as http:
            token = await SupabaseAuthClient(settings, http).authenticate()
            phase = Phase.UPLOAD
            upload = await UploadClient(settings, http).upload(artifact, token)

        result = _succeeded(run_id, start_time, artifact, upload)
    except SyncError as exc:
        result = failed_result(
            run_id,
            start_time,
            phase=exc.phase,
            category=exc.category,
            message=exc.message,
            artifact=artifact,
        )
    except Exception as exc:
        if artifact is None and exporter is not None and getattr(exporter, "phase", None):
            phase = exporter.phase
        logger.exception("Unexpected error during %s.", phase)
        result = failed_result(
            run_id,
            start_time,
            phase=phase,
            category=category_for_phase(phase),
            message=f"Unexpected error during {phase}: {exc}",
            artifact=artifact,
        )
    finally:
        RUN_ID_CTX.reset(ctx_token)

    _log_result(result)
    return result


def _succeeded(
    run_id: str,
    start_time: datetime,
    artifact: ExportArtifact,
    upload: UploadResult,
) -> SyncResult:
    return SyncResult(
        run_id=run_id,
        start_time=start_time,
        end_time=max(datetime.now(UTC), start_time),
        success=True,
        phase=Phase.COMPLETE,
        filename=artifact.filename,
        file_size=artifact.size,
        import_id=upload.import_id,
        new_records=upload.new_records,
        duplicates=upload.duplicates,
        total_rows=upload.total_rows,
        upload_skipped=upload.skipped,
        skip_reason=upload.reason,
    )


def _log_result(result: SyncResult) -> None:
    """Log the terminal run with full context."""
    if result.success:
        logger.info(
            "Run %s succeeded in %.1f s — file=%s total=%d new=%d duplicates=%d%s",
            result.run_id,
            result.duration_s,
            result.filename,
            result.total_rows,
            result.new_records,
            result.duplicates,
            " (upload skipped: duplicate file)" if result.upload_skipped else "",
            extra={"event": events.RUN_SUCCESS},
        )
        return
    logger.error(
        "Run %s failed in %.1f s — stage=%s phase=%s category=%s: %s",
        result.run_id,
        result.duration_s,
        result.stage,
        result.phase,
        result.error_category,
        result.error,
        extra={"event": events.RUN_FAILURE},
    )
