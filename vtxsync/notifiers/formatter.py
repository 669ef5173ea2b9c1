"""Notification e-mail and alert formatting.

Converts a finalised :class:`~vtxsync.core.models.SyncResult` into the
subject and HTML body of a Resend e-mail, or into the single-line operator
alert logged for retry-exhausted failures.

Every value interpolated into HTML passes through :func:`html.escape`;
error messages come from remote pages and APIs and are never trusted.

Public API
----------
:func:`format_success_email` — subject + HTML for a successful run.

:func:`format_failure_email` — subject + HTML for a retry-exhausted failure.

:func:`format_alert` — one-line operator alert text.

Typical usage::

    from vtxsync.notifiers.formatter import format_success_email

    email = format_success_email(result, tz="America/Los_Angeles")
    await resend.send_email(subject=email.subject, html=email.html)
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from vtxsync.core.models import SyncResult

__all__ = [
    "EmailContent",
    "format_alert",
    "format_failure_email",
    "format_success_email",
    "format_timestamp",
]

logger = logging.getLogger(__name__)

_STAGE_LABELS: dict[str, str] = {
    "export": "Export (Pacific Track)",
    "upload": "Upload (VTX API)",
    "complete": "Complete",
}


@dataclass(frozen=True)
class EmailContent:
    """A rendered e-mail ready for the transport."""

    subject: str
    html: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def format_timestamp(moment: datetime, tz: str) -> str:
    """Render *moment* in *tz*, e.g. ``"Jan 18, 2026, 05:30:12 AM PST"``."""
    return moment.astimezone(ZoneInfo(tz)).strftime("%b %d, %Y, %I:%M:%S %p %Z")


def _row(label: str, value: object) -> str:
    return (
        "<tr>"
        f'<td style="padding:4px 12px 4px 0;color:#555">{html.escape(label)}</td>'
        f"<td style=\"padding:4px 0\"><strong>{html.escape(str(value))}</strong></td>"
        "</tr>"
    )


def _wrap(title: str, colour: str, rows: list[str], notes: list[str]) -> str:
    body = "".join(rows)
    extra = "".join(f'<p style="color:#555">{note}</p>' for note in notes)
    return (
        '<div style="font-family:Arial,sans-serif;max-width:600px">'
        f'<h2 style="color:{colour}">{html.escape(title)}</h2>'
        f"<table>{body}</table>"
        f"{extra}"
        "</div>"
    )


# ---------------------------------------------------------------------------
# Public formatters
# ---------------------------------------------------------------------------


def format_success_email(result: SyncResult, *, tz: str) -> EmailContent:
    """Render the success e-mail for *result*.

    Args:
        result: A successful run (``result.success`` is ``True``).
        tz: Timezone the timestamp is shown in.
    """
    rows = [
        _row("Run ID", result.run_id),
        _row("Duration", f"{result.duration_s:.1f}s"),
    ]
    if result.upload_skipped:
        rows.append(_row("Upload", f"skipped ({result.skip_reason or 'duplicate'})"))
    else:
        rows.extend(
            [
                _row("Total rows", result.total_rows),
                _row("New records", result.new_records),
                _row("Duplicates", result.duplicates),
            ]
        )
    rows.append(_row("Completed", format_timestamp(result.end_time, tz)))

    notes: list[str] = []
    if result.was_retry:
        notes.append(
            "Succeeded on retry. First attempt failed with: "
            f"<code>{html.escape(result.original_error or 'unknown error')}</code>"
        )

    return EmailContent(
        subject=f"VTX Sync Success - {result.run_id}",
        html=_wrap("VTX Sync completed", "#2e7d32", rows, notes),
    )


def format_failure_email(result: SyncResult, *, tz: str) -> EmailContent:
    """Render the failure e-mail for *result*.

    Args:
        result: A failed run (``result.success`` is ``False``).
        tz: Timezone the timestamp is shown in.
    """
    category = str(result.error_category)
    rows = [
        _row("Run ID", result.run_id),
        _row("Failed at", _STAGE_LABELS.get(result.stage, result.stage)),
        _row("Phase", result.phase),
        _row("Category", category),
        _row("Error", result.error or "unknown error"),
        _row("Duration", f"{result.duration_s:.1f}s"),
        _row("Time", format_timestamp(result.end_time, tz)),
    ]

    notes: list[str] = []
    if result.is_retry_exhausted:
        notes.append("The automatic retry also failed. Manual attention is required.")
    if result.original_error:
        notes.append(
            "Original error: "
            f"<code>{html.escape(result.original_error)}</code>"
        )

    return EmailContent(
        subject=f"VTX Sync Failed - {category} ({result.run_id})",
        html=_wrap("VTX Sync failed", "#c62828", rows, notes),
    )


def format_alert(result: SyncResult) -> str:
    """One-line operator alert for a retry-exhausted failure."""
    return (
        f"VTX sync failed after retry: run={result.run_id} "
        f"stage={result.stage} phase={result.phase} category={result.error_category} "
        f"error={result.error!r} original_error={result.original_error!r}"
    )
