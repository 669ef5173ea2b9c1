"""Shared pytest fixtures and configuration for the VTX Sync test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across the unit tests.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest
from pydantic_settings import SettingsConfigDict

from vtxsync.core import configure_logging
from vtxsync.core.settings import Settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test.

    Using ``force=True`` ensures the configuration is applied even when
    pytest's own ``log_cli`` handler is already present.
    """
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

_SENSITIVE_PREFIXES = (
    "PACIFIC_TRACK_",
    "PORTAL_",
    "BROWSER_",
    "SUPABASE_",
    "SERVICE_ACCOUNT_",
    "VTX_",
    "RESEND_",
    "ENABLE_EMAIL_",
    "NOTIFICATION_",
    "ALERT_EMAIL",
    "SCHEDULE_",
    "SYNC_",
    "RETRY_",
    "CIRCUIT_",
    "HEALTH_",
    "STATUS_PATH",
    "DOWNLOAD_",
    "SCREENSHOT_",
    "DRY_RUN",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove all VTX Sync env vars for the duration of a test.

    Also disables pydantic-settings `.env` file loading so that credentials
    present in a local `.env` file do not leak into Settings isolation tests.
    """
    for key in list(os.environ):
        if any(key.startswith(prefix) for prefix in _SENSITIVE_PREFIXES):
            monkeypatch.delenv(key, raising=False)

    # pydantic-settings reads the file directly rather than via os.environ.
    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


@pytest.fixture()
def settings(clean_env: None, tmp_path: Path) -> Settings:
    """Fully configured settings pointing every writable path at *tmp_path*."""
    return Settings(
        pacific_track_email="ops@example.com",
        pacific_track_password="s3cret",
        supabase_url="https://supabase.example.com",
        supabase_service_key="service-key",
        service_account_email="svc@example.com",
        service_account_password="svc-pass",
        vtx_uploads_api_url="https://uploads.example.com",
        screenshot_dir=str(tmp_path / "screenshots"),
        download_root=str(tmp_path / "downloads"),
        status_path=str(tmp_path / "status.json"),
        health_port=0,
    )


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to the running test."""
    return logging.getLogger("tests")
