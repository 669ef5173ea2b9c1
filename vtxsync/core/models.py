"""VTX Sync core domain models.

This module defines the value types shared by the exporter, the API clients,
the orchestrator and the notification layer:

* :class:`Phase` / :class:`ErrorCategory` — the closed vocabularies a run is
  described with.
* :class:`ExportArtifact` — the captured spreadsheet, held in memory.
* :class:`UploadResult` — what the Uploads API reported for one file.
* :class:`SyncResult` — the finalised record of one run attempt, including
  the retry annotations added by the retry orchestrator.
* :class:`TriggerCalendar` — the wall-clock points the scheduler fires at.

Typical usage::

    from vtxsync.core.models import ErrorCategory, Phase, SyncResult

    result = SyncResult(
        run_id="sync-20260118-083012-a3f2",
        start_time=started,
        end_time=finished,
        success=False,
        phase=Phase.LOGIN,
        error="Login failed: invalid password",
        error_category=ErrorCategory.LOGIN,
    )
    assert result.stage == "export"
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator, model_validator

__all__ = [
    "Phase",
    "ErrorCategory",
    "stage_for_category",
    "ExportArtifact",
    "UploadResult",
    "SyncResult",
    "TriggerCalendar",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Phase(StrEnum):
    """Named stages of a run, in execution order."""

    LOGIN = "login"
    NAVIGATE = "navigate"
    TRIGGER_EXPORT = "trigger-export"
    AWAIT_DOWNLOAD = "await-download"
    AUTHENTICATE = "authenticate"
    UPLOAD = "upload"
    COMPLETE = "complete"


class ErrorCategory(StrEnum):
    """Closed set of failure categories a run can end with."""

    LOGIN = "login"
    NAVIGATION = "navigation"
    EXPORT = "export"
    UPLOAD = "upload"
    AUTH = "auth"


#: Reporting stage for each category.  Browser-side failures report as the
#: ``export`` stage, API-side failures as the ``upload`` stage.
_STAGE_BY_CATEGORY: dict[ErrorCategory, str] = {
    ErrorCategory.LOGIN: "export",
    ErrorCategory.NAVIGATION: "export",
    ErrorCategory.EXPORT: "export",
    ErrorCategory.AUTH: "upload",
    ErrorCategory.UPLOAD: "upload",
}


def stage_for_category(category: ErrorCategory) -> str:
    """Return the reporting stage (``"export"`` or ``"upload"``) for *category*."""
    return _STAGE_BY_CATEGORY[category]


# ---------------------------------------------------------------------------
# Artifacts and collaborator results
# ---------------------------------------------------------------------------


class ExportArtifact(BaseModel):
    """A captured export file held fully in memory.

    The on-disk copy has already been removed by the time an instance exists;
    ownership of :attr:`content` passes to the uploader.

    Attributes:
        content: Raw XLSX bytes.
        filename: Name the portal gave the file.
        size: Length of :attr:`content` in bytes.
    """

    model_config = {"frozen": True}

    content: bytes = Field(..., repr=False, description="Raw file bytes.")
    filename: str = Field(..., min_length=1, description="Downloaded file name.")
    size: int = Field(..., gt=0, description="Byte length of the content.")

    @model_validator(mode="after")
    def _size_matches_content(self) -> ExportArtifact:
        if self.size != len(self.content):
            raise ValueError(f"size ({self.size}) != len(content) ({len(self.content)})")
        return self


class UploadResult(BaseModel):
    """Outcome of a single accepted upload.

    A duplicate-filename response is a success variant: ``skipped=True`` with
    ``reason="duplicate"`` and no statistics.

    Attributes:
        import_id: Server-side import identifier, if reported.
        new_records: Rows inserted by this import.
        duplicates: Rows the server skipped as already known.
        total_rows: Rows present in the uploaded file.
        skipped: ``True`` when the whole file was skipped.
        reason: Why the file was skipped (``"duplicate"``), else ``None``.
    """

    model_config = {"frozen": True}

    import_id: str | None = None
    new_records: int = Field(default=0, ge=0)
    duplicates: int = Field(default=0, ge=0)
    total_rows: int = Field(default=0, ge=0)
    skipped: bool = False
    reason: str | None = None

    @field_validator("import_id", mode="before")
    @classmethod
    def _import_id_to_str(cls, v: object) -> object:
        """The API may report numeric import ids."""
        if v is None or isinstance(v, str):
            return v
        return str(v)


# ---------------------------------------------------------------------------
# Run record
# ---------------------------------------------------------------------------


class SyncResult(BaseModel):
    """Finalised record of one run attempt.

    Exactly one of *success* and *error_category* describes the outcome: a
    successful run never carries an error, and a failed run always carries
    exactly one category.  Instances are frozen; the retry orchestrator
    derives annotated copies with :meth:`pydantic.BaseModel.model_copy`.

    Attributes:
        run_id: Correlation id, unique per attempt (retries get a derived id).
        start_time: UTC timestamp the attempt started.
        end_time: UTC timestamp the attempt finished.
        success: Whether the pipeline completed.
        phase: Last phase reached; the failing phase when ``success`` is False.
        error: Error message for failed runs.
        error_category: Failure category for failed runs.
        filename: Exported file name, when the export phase completed.
        file_size: Exported file size in bytes.
        import_id: Server-side import id for a completed upload.
        new_records: Rows inserted by the upload.
        duplicates: Rows skipped by the upload as already known.
        total_rows: Rows in the exported file, per the Uploads API.
        upload_skipped: ``True`` when the whole file was a duplicate.
        skip_reason: Reason reported for a skipped upload.
        was_retry: This record is the secondary attempt of a retry envelope.
        is_retry_exhausted: The secondary attempt also failed.
        original_error: Error message of the failed primary attempt.
        original_run_id: Run id of the failed primary attempt.
    """

    model_config = {"frozen": True}

    run_id: str = Field(..., min_length=1)
    start_time: datetime
    end_time: datetime
    success: bool
    phase: Phase
    error: str | None = None
    error_category: ErrorCategory | None = None

    filename: str | None = None
    file_size: int | None = Field(default=None, ge=0)
    import_id: str | None = None
    new_records: int = Field(default=0, ge=0)
    duplicates: int = Field(default=0, ge=0)
    total_rows: int = Field(default=0, ge=0)
    upload_skipped: bool = False
    skip_reason: str | None = None

    was_retry: bool = False
    is_retry_exhausted: bool = False
    original_error: str | None = None
    original_run_id: str | None = None

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def _outcome_is_exclusive(self) -> SyncResult:
        """Enforce the success / failure-with-category exclusivity."""
        if self.success and (self.error_category is not None or self.error is not None):
            raise ValueError("a successful run cannot carry an error")
        if not self.success and self.error_category is None:
            raise ValueError("a failed run must carry an error category")
        if self.end_time < self.start_time:
            raise ValueError("end_time precedes start_time")
        return self

    # ------------------------------------------------------------------
    # Derived properties
    # ------------------------------------------------------------------

    @property
    def duration_s(self) -> float:
        """Wall-clock duration of the attempt in seconds."""
        return (self.end_time - self.start_time).total_seconds()

    @property
    def stage(self) -> str:
        """Reporting stage: ``"complete"`` for success, else export / upload."""
        if self.error_category is None:
            return "complete"
        return stage_for_category(self.error_category)


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


class TriggerCalendar(BaseModel):
    """Wall-clock firing points: *minutes* past every hour in the window.

    The window is inclusive at both ends, so the defaults fire at 05:00,
    05:30, … 22:00, 22:30 local time in :attr:`timezone`.

    Attributes:
        timezone: IANA zone name the calendar is evaluated in.
        start_hour: First hour (0-23) that fires.
        end_hour: Last hour (0-23) that fires.
        minutes: Sorted minutes past the hour (0-59).
    """

    model_config = {"frozen": True}

    timezone: str = "America/Los_Angeles"
    start_hour: int = Field(default=5, ge=0, le=23)
    end_hour: int = Field(default=22, ge=0, le=23)
    minutes: tuple[int, ...] = (0, 30)

    @field_validator("minutes")
    @classmethod
    def _sorted_minutes(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        if not v or any(m < 0 or m > 59 for m in v):
            raise ValueError(f"minutes must be a non-empty set within 0-59, got {v!r}")
        return tuple(sorted(set(v)))

    @model_validator(mode="after")
    def _window_ordered(self) -> TriggerCalendar:
        if self.start_hour > self.end_hour:
            raise ValueError(f"start_hour ({self.start_hour}) > end_hour ({self.end_hour})")
        return self

    def describe(self) -> str:
        """Short cron-like description used in startup logs."""
        minutes = ",".join(str(m) for m in self.minutes)
        return f"{minutes} {self.start_hour}-{self.end_hour} * * * ({self.timezone})"
