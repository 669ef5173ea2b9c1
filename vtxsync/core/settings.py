"""VTX Sync application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.

Every environment variable maps 1-to-1 to a field in :class:`Settings`.  The
field name is the **lowercase** version of the env-var name (e.g.
``PACIFIC_TRACK_EMAIL`` → ``pacific_track_email``).

Typical usage::

    from vtxsync.core.settings import Settings

    settings = Settings()                   # loads from env + .env
    calendar = settings.trigger_calendar    # scheduler calendar
    print(settings.email_configured)        # True / False
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from vtxsync.core.logging_config import LOG_FORMATS, LOG_LEVELS
from vtxsync.core.models import TriggerCalendar

__all__ = ["Settings"]

logger = logging.getLogger(__name__)

_DEFAULT_USER_AGENT = "CleanTruckCheckPro-Sync/1.0 (automated; contact: team@smartctc.com)"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _csv_to_ints(value: str) -> list[int]:
    """Split a comma-separated string into a list of integers.

    Returns an empty list for blank / whitespace-only input.
    """
    if not value or not value.strip():
        return []
    return [int(item.strip()) for item in value.split(",") if item.strip()]


# ---------------------------------------------------------------------------
# Settings model
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).

    Credentials default to empty strings so the process can start (and
    ``--dry-run`` can be exercised) without them; the collaborators that
    need them fail with a categorised error at call time.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Pacific Track portal
    # ------------------------------------------------------------------
    pacific_track_email: str = Field(default="", description="Portal login email.")
    pacific_track_password: str = Field(default="", description="Portal login password.")
    portal_login_url: str = Field(
        default="https://vtx.pacifictrack.com/login",
        description="Portal entry page holding the credential form.",
    )
    portal_login_path: str = Field(
        default="/login",
        description="Path fragment that identifies the login page.",
    )
    portal_export_url: str = Field(
        default="https://vtx.pacifictrack.com/carb/vehicles?page=1&limit=100",
        description="Deep link to the vehicles page holding the export menu.",
    )
    portal_export_path: str = Field(
        default="/carb/vehicles",
        description="Path fragment the export page URL must contain.",
    )

    # ------------------------------------------------------------------
    # Browser
    # ------------------------------------------------------------------
    browser_headless: bool = Field(default=True, description="Run Chromium headless.")
    browser_executable_path: str = Field(
        default="",
        description="Optional Chromium executable (empty = Playwright bundled build).",
    )
    user_agent: str = Field(
        default=_DEFAULT_USER_AGENT,
        description="User-Agent sent by the browser and the HTTP clients.",
    )
    screenshot_dir: str = Field(
        default="screenshots",
        description="Directory receiving best-effort failure screenshots.",
    )
    download_root: str = Field(
        default="",
        description="Parent of the run-scoped download directories (empty = system temp).",
    )

    # ------------------------------------------------------------------
    # Phase timeouts
    # ------------------------------------------------------------------
    navigation_timeout_s: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout for page loads (login page, export page).",
    )
    login_timeout_s: float = Field(
        default=15.0,
        gt=0.0,
        description="Timeout for the post-submit URL change / error banner race.",
    )
    marker_timeout_s: float = Field(
        default=15.0,
        gt=0.0,
        description="Timeout for the export page's structural marker.",
    )
    trigger_settle_s: float = Field(
        default=1.0,
        ge=0.0,
        description="Pause after opening the actions menu before searching it.",
    )
    typing_delay_ms: float = Field(
        default=50.0,
        ge=0.0,
        description="Per-keystroke delay when typing credentials.",
    )
    download_timeout_s: float = Field(
        default=60.0,
        gt=0.0,
        description="Upper bound for a downloaded file to appear and settle.",
    )
    download_poll_interval_s: float = Field(
        default=0.5,
        gt=0.0,
        description="Interval between download directory polls.",
    )
    download_settle_s: float = Field(
        default=0.2,
        ge=0.0,
        description="Delay between the two size readings of the stability check.",
    )

    # ------------------------------------------------------------------
    # Supabase auth
    # ------------------------------------------------------------------
    supabase_url: str = Field(default="", description="Supabase project URL.")
    supabase_service_key: str = Field(default="", description="Supabase API key.")
    service_account_email: str = Field(default="", description="Upload service account email.")
    service_account_password: str = Field(
        default="",
        description="Upload service account password.",
    )

    # ------------------------------------------------------------------
    # Uploads API
    # ------------------------------------------------------------------
    vtx_uploads_api_url: str = Field(
        default="https://vtx-uploads-production.up.railway.app",
        description="Base URL of the VTX Uploads API.",
    )
    upload_timeout_s: float = Field(
        default=60.0,
        gt=0.0,
        description="Read timeout for the multipart upload request.",
    )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    resend_api_key: str = Field(default="", description="Resend API key.")
    enable_email_notifications: bool = Field(
        default=False,
        description="Send success / failure e-mails through Resend.",
    )
    notification_email_from: str = Field(
        default="VTX Sync <sync@smartctc.com>",
        description="Sender address for notification e-mails.",
    )
    notification_email_to: str = Field(
        default="team@smartctc.com",
        description="Comma-separated recipients of notification e-mails.",
    )
    alert_email: str = Field(
        default="team@smartctc.com",
        description="Contact named in retry-exhausted alerts.",
    )

    # ------------------------------------------------------------------
    # Scheduling, retry, circuit breaker
    # ------------------------------------------------------------------
    schedule_timezone: str = Field(
        default="America/Los_Angeles",
        description="IANA timezone the trigger calendar is evaluated in.",
    )
    schedule_start_hour: int = Field(default=5, ge=0, le=23, description="First firing hour.")
    schedule_end_hour: int = Field(default=22, ge=0, le=23, description="Last firing hour.")
    schedule_minutes: Annotated[list[int], NoDecode] = Field(
        default_factory=lambda: [0, 30],
        description="Minutes past each hour to fire at (comma-separated in env).",
    )
    sync_delay_max_s: float = Field(
        default=60.0,
        ge=0.0,
        description="Upper bound (exclusive) of the pre-run jitter.",
    )
    retry_delay_s: float = Field(
        default=300.0,
        ge=0.0,
        description="Pause between a failed primary attempt and its retry.",
    )
    circuit_failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failed runs that open the circuit.",
    )
    circuit_reset_s: float = Field(
        default=3600.0,
        gt=0.0,
        description="Seconds an open circuit waits before auto-resetting.",
    )

    # ------------------------------------------------------------------
    # Status surface
    # ------------------------------------------------------------------
    health_host: str = Field(default="0.0.0.0", description="Health server bind host.")
    health_port: int = Field(
        default=3000,
        ge=0,
        le=65535,
        description="Health server port (0 disables the server).",
    )
    status_path: str = Field(
        default="/tmp/vtxsync_status.json",
        description="JSON status snapshot rewritten after every run.",
    )

    # ------------------------------------------------------------------
    # Runtime flags
    # ------------------------------------------------------------------
    dry_run: bool = Field(
        default=False,
        description="Log notification payloads without sending e-mails.",
    )
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("schedule_minutes", mode="before")
    @classmethod
    def _parse_csv_minutes(cls, v: str | list[int]) -> list[int]:
        """Accept a comma-separated string **or** an already-parsed list."""
        if isinstance(v, str):
            return _csv_to_ints(v)
        return v

    @field_validator("schedule_minutes")
    @classmethod
    def _validate_minutes(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("schedule_minutes must contain at least one minute")
        if any(m < 0 or m > 59 for m in v):
            raise ValueError(f"schedule_minutes must be within 0-59, got {v!r}")
        if len(set(v)) != len(v):
            raise ValueError(f"schedule_minutes must be unique, got {v!r}")
        return sorted(v)

    @field_validator("schedule_timezone")
    @classmethod
    def _validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"schedule_timezone {v!r} is not a known IANA zone") from exc
        return v

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        v_upper = v.upper()
        if v_upper not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(LOG_LEVELS)}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {sorted(LOG_FORMATS)}, got {v!r}")
        return v_lower

    # ------------------------------------------------------------------
    # Model validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def _validate_schedule_window(self) -> Settings:
        """Ensure start ≤ end for the firing window."""
        if self.schedule_start_hour > self.schedule_end_hour:
            raise ValueError(
                f"schedule_start_hour ({self.schedule_start_hour}) "
                f"> schedule_end_hour ({self.schedule_end_hour})"
            )
        return self

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def trigger_calendar(self) -> TriggerCalendar:
        """Build the scheduler's :class:`TriggerCalendar` from the schedule fields."""
        return TriggerCalendar(
            timezone=self.schedule_timezone,
            start_hour=self.schedule_start_hour,
            end_hour=self.schedule_end_hour,
            minutes=tuple(self.schedule_minutes),
        )

    @property
    def screenshot_path(self) -> Path:
        """Return the screenshot directory as a resolved :class:`~pathlib.Path`."""
        return Path(self.screenshot_dir).resolve()

    @property
    def download_root_path(self) -> Path | None:
        """Return the download root, or ``None`` to use the system temp dir."""
        return Path(self.download_root).resolve() if self.download_root else None

    @property
    def email_configured(self) -> bool:
        """``True`` if e-mail is enabled and a Resend API key is set."""
        return self.enable_email_notifications and bool(self.resend_api_key)

    @property
    def notification_recipients(self) -> list[str]:
        """Comma-separated ``NOTIFICATION_EMAIL_TO`` split into addresses."""
        return [addr.strip() for addr in self.notification_email_to.split(",") if addr.strip()]

    @property
    def portal_configured(self) -> bool:
        """``True`` if both portal credentials are set."""
        return bool(self.pacific_track_email and self.pacific_track_password)

    @property
    def missing_credentials(self) -> list[str]:
        """Env var names of the portal, Supabase and upload settings left empty."""
        required = (
            "pacific_track_email",
            "pacific_track_password",
            "supabase_url",
            "supabase_service_key",
            "service_account_email",
            "service_account_password",
            "vtx_uploads_api_url",
        )
        return [name.upper() for name in required if not getattr(self, name)]
