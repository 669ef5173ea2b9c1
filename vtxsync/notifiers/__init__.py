"""Operator notifications: e-mail rendering, Resend delivery and alerts."""

from vtxsync.notifiers.formatter import (
    EmailContent,
    format_alert,
    format_failure_email,
    format_success_email,
)
from vtxsync.notifiers.notifier import Notifier
from vtxsync.notifiers.resend import ResendClient

__all__ = [
    "EmailContent",
    "Notifier",
    "ResendClient",
    "format_alert",
    "format_failure_email",
    "format_success_email",
]
