"""VTX Sync exception taxonomy.

Every custom exception inherits from :class:`VtxSyncError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    VtxSyncError
    ├── ConfigError
    ├── OrchestratorError
    ├── ApiRequestError
    ├── NotificationError
    │   └── EmailError
    └── SyncError                       (carries category + phase)
        ├── LoginError                  category "login"
        ├── NavigationError             category "navigation"
        ├── ExportError                 category "export"
        │   └── DownloadTimeoutError
        ├── AuthError                   category "auth"
        └── UploadError                 category "upload"

:class:`SyncError` subclasses are the only failures a run can end with.  Each
one carries exactly one :class:`~vtxsync.core.models.ErrorCategory`, so the
orchestrator routes on ``exc.category`` and never inspects message strings.

Usage:

    from vtxsync.core.exceptions import LoginError
    from vtxsync.core.models import Phase

    raise LoginError("Login failed: invalid password", phase=Phase.LOGIN) from exc
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from vtxsync.core.models import ErrorCategory, Phase

__all__ = [
    "VtxSyncError",
    # Config
    "ConfigError",
    # Orchestrator
    "OrchestratorError",
    # HTTP
    "ApiRequestError",
    # Notification
    "NotificationError",
    "EmailError",
    # Run failures
    "SyncError",
    "LoginError",
    "NavigationError",
    "ExportError",
    "DownloadTimeoutError",
    "AuthError",
    "UploadError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class VtxSyncError(Exception):
    """Root exception for all VTX Sync errors.

    Catch this to handle any application-level error uniformly.  Prefer
    catching layer-specific subclasses wherever possible.
    """


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(VtxSyncError):
    """Raised when the application configuration is invalid or incomplete.

    Raised at startup by
    :func:`~vtxsync.orchestrator.scheduler.require_credentials` when a live
    process lacks portal, Supabase or upload credentials.  Credential problems
    discovered during a run surface as :class:`LoginError` or
    :class:`AuthError` instead.
    """


# ---------------------------------------------------------------------------
# Orchestrator layer
# ---------------------------------------------------------------------------


class OrchestratorError(VtxSyncError):
    """Raised for programming errors in the orchestration layer.

    Examples:
        - An export phase is invoked out of order.
        - The scheduler is started twice.
    """


# ---------------------------------------------------------------------------
# HTTP layer
# ---------------------------------------------------------------------------


class ApiRequestError(VtxSyncError):
    """Raised by :class:`~vtxsync.api.http_client.ApiHttpClient` on a failed request.

    The parsed JSON body (when there is one) is kept on the exception so
    callers can inspect application-level error codes carried by 4xx
    responses.

    Args:
        message: Human-readable error description.
        status_code: HTTP status code, or ``None`` for transport failures.
        payload: Parsed JSON body of the response, if any.
        retry_after: Back-off hint for HTTP 429 responses, in seconds.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: Any = None,
        retry_after: float | None = None,
    ) -> None:
        self.status_code = status_code
        self.payload = payload
        self.retry_after = retry_after
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"API request failed{detail}: {message}")


# ---------------------------------------------------------------------------
# Notification layer
# ---------------------------------------------------------------------------


class NotificationError(VtxSyncError):
    """Base class for notification delivery errors."""


class EmailError(NotificationError):
    """Raised when the Resend e-mail API returns an error or is unreachable.

    Args:
        message: Human-readable error description.
        status_code: HTTP status code from the Resend API, if available.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Email error{detail}: {message}")


# ---------------------------------------------------------------------------
# Run failures
# ---------------------------------------------------------------------------


class SyncError(VtxSyncError):
    """Base class for categorised run failures.

    Subclasses bind a fixed :attr:`category`; the *phase* is supplied by
    whoever raises the error and records where the run stopped.

    Args:
        message: Human-readable error description (surfaced in e-mails and
            the status endpoint verbatim).
        phase: Phase that was executing when the failure happened.
    """

    category: ClassVar[ErrorCategory]

    def __init__(self, message: str, *, phase: Phase) -> None:
        self.message = message
        self.phase = phase
        super().__init__(message)


class LoginError(SyncError):
    """The portal rejected the credentials or the login page misbehaved."""

    category = ErrorCategory.LOGIN


class NavigationError(SyncError):
    """The export page could not be reached or did not render."""

    category = ErrorCategory.NAVIGATION


class ExportError(SyncError):
    """The export could not be triggered or its file could not be captured."""

    category = ErrorCategory.EXPORT


class DownloadTimeoutError(ExportError):
    """No stable, valid file appeared in the download directory in time."""


class AuthError(SyncError):
    """The upload service account could not obtain a bearer token."""

    category = ErrorCategory.AUTH


class UploadError(SyncError):
    """The Uploads API rejected the file or was unreachable."""

    category = ErrorCategory.UPLOAD
