"""High-level notification entry point for VTX Sync.

Provides :class:`Notifier`, the single object the scheduler calls after a
trigger has produced its terminal result.  It owns the decision of *whether*
and *how* to notify and delegates to:

* :mod:`vtxsync.notifiers.formatter` — subject / HTML rendering.
* :class:`~vtxsync.notifiers.resend.ResendClient` — transport.

Routing (decided by the scheduler, not here):

* every successful run → :meth:`Notifier.send_success`
* retry-exhausted failure → :meth:`Notifier.send_alert` and
  :meth:`Notifier.send_failure`
* a primary failure that the retry recovered → nothing beyond the success
  e-mail of the retry.

E-mail delivery is optional: without ``ENABLE_EMAIL_NOTIFICATIONS`` and a
``RESEND_API_KEY`` the notifier is constructed with ``client=None`` and the
e-mail methods return ``False`` after a debug log.  The alert is always a
structured ``ERROR`` log record, which is what log-based alerting keys on.
"""

from __future__ import annotations

import logging

from vtxsync.core import events
from vtxsync.core.exceptions import EmailError
from vtxsync.core.models import SyncResult
from vtxsync.core.run_context import RunContext
from vtxsync.notifiers.formatter import (
    EmailContent,
    format_alert,
    format_failure_email,
    format_success_email,
)
from vtxsync.notifiers.resend import ResendClient

__all__ = ["Notifier"]

logger = logging.getLogger(__name__)


class Notifier:
    """Deliver run outcomes to operators.

    Respects the :class:`~vtxsync.core.run_context.RunContext`:

    * **dry-run mode** — renders the e-mail and logs it at ``INFO`` level
      instead of sending it.
    * **live mode** — renders and sends via Resend.

    Args:
        ctx: Runtime operating mode flags.
        client: Open :class:`ResendClient`, or ``None`` when e-mail is not
            configured.  The Notifier does not manage its lifecycle.
        recipients: E-mail recipients.
        timezone: Timezone timestamps are rendered in.
        alert_contact: Contact named in the alert log line.
    """

    def __init__(
        self,
        ctx: RunContext,
        client: ResendClient | None,
        *,
        recipients: list[str],
        timezone: str,
        alert_contact: str = "",
    ) -> None:
        self._ctx = ctx
        self._client = client
        self._recipients = recipients
        self._timezone = timezone
        self._alert_contact = alert_contact

    @property
    def email_enabled(self) -> bool:
        return self._client is not None

    async def send_success(self, result: SyncResult) -> bool:
        """E-mail the outcome of a successful run.

        Returns:
            ``True`` if the e-mail was sent (live) or logged (dry-run),
            ``False`` if e-mail is not configured.

        Raises:
            EmailError: Delivery failed after all retries.
        """
        return await self._deliver(result, format_success_email(result, tz=self._timezone))

    async def send_failure(self, result: SyncResult) -> bool:
        """E-mail the outcome of a retry-exhausted failure.

        Returns:
            ``True`` if the e-mail was sent (live) or logged (dry-run),
            ``False`` if e-mail is not configured.

        Raises:
            EmailError: Delivery failed after all retries.
        """
        return await self._deliver(result, format_failure_email(result, tz=self._timezone))

    async def send_alert(self, result: SyncResult) -> None:
        """Emit the retry-exhausted operator alert as a structured log record."""
        logger.error(
            "ALERT%s: %s",
            f" ({self._alert_contact})" if self._alert_contact else "",
            format_alert(result),
            extra={
                "event": events.ALERT,
                "error_category": str(result.error_category),
                "stage": result.stage,
            },
        )

    async def _deliver(self, result: SyncResult, email: EmailContent) -> bool:
        if self._client is None:
            logger.debug("E-mail not configured; skipping %r.", email.subject)
            return False

        if self._ctx.dry_run:
            logger.info(
                "[dry-run] Would send e-mail %r to %s\n%s",
                email.subject,
                self._recipients,
                email.html,
            )
            return True

        try:
            await self._client.send_email(
                to=self._recipients, subject=email.subject, html=email.html
            )
        except EmailError as exc:
            logger.error(
                "Failed to send %r for %s: %s",
                email.subject,
                result.run_id,
                exc,
                extra={"event": events.NOTIFY_ERROR},
            )
            raise
        logger.info("E-mail sent: %s", email.subject, extra={"event": events.NOTIFY_SENT})
        return True
