"""Core domain models, settings, logging configuration, and shared utilities."""

from vtxsync.core.exceptions import (
    ApiRequestError,
    AuthError,
    ConfigError,
    DownloadTimeoutError,
    EmailError,
    ExportError,
    LoginError,
    NavigationError,
    NotificationError,
    OrchestratorError,
    SyncError,
    UploadError,
    VtxSyncError,
)
from vtxsync.core.logging_config import JsonFormatter, configure_logging
from vtxsync.core.models import (
    ErrorCategory,
    ExportArtifact,
    Phase,
    SyncResult,
    TriggerCalendar,
    UploadResult,
)
from vtxsync.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Domain models
    "ErrorCategory",
    "ExportArtifact",
    "Phase",
    "SyncResult",
    "TriggerCalendar",
    "UploadResult",
    # Settings
    "Settings",
    # Exceptions
    "VtxSyncError",
    "ConfigError",
    "OrchestratorError",
    "ApiRequestError",
    "NotificationError",
    "EmailError",
    "SyncError",
    "LoginError",
    "NavigationError",
    "ExportError",
    "DownloadTimeoutError",
    "AuthError",
    "UploadError",
]
