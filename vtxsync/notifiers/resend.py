"""Resend e-mail API transport.

Provides :class:`ResendClient`, a thin wrapper around Resend's
``POST /emails`` endpoint.  Connection handling, retries on 429 / 5xx and
network errors are delegated to :class:`~vtxsync.api.http_client.ApiHttpClient`;
this module only maps outcomes to :class:`~vtxsync.core.exceptions.EmailError`.

Message rendering lives in :mod:`vtxsync.notifiers.formatter`; the decision
of *whether* to send lives in :mod:`vtxsync.notifiers.notifier`.

Typical usage::

    async with ApiHttpClient(user_agent=ua) as http:
        client = ResendClient(api_key="re_…", sender="Sync <sync@x.com>", http=http)
        await client.send_email(to=["team@x.com"], subject="Hi", html="<p>Hi</p>")
"""

from __future__ import annotations

import logging
from typing import Final

import httpx

from vtxsync.api.http_client import ApiHttpClient
from vtxsync.core.exceptions import ApiRequestError, EmailError

__all__ = ["RESEND_EMAILS_URL", "ResendClient"]

logger = logging.getLogger(__name__)

RESEND_EMAILS_URL: Final[str] = "https://api.resend.com/emails"


class ResendClient:
    """Send HTML e-mails through Resend.

    Args:
        api_key: Resend API key (non-empty).
        sender: ``From`` address, e.g. ``"VTX Sync <sync@smartctc.com>"``.
        http: Open :class:`ApiHttpClient`.  The caller owns its lifecycle.

    Raises:
        ValueError: If ``api_key`` or ``sender`` is empty.
    """

    def __init__(self, api_key: str, sender: str, http: ApiHttpClient) -> None:
        if not api_key:
            raise ValueError("ResendClient requires a non-empty api_key.")
        if not sender:
            raise ValueError("ResendClient requires a non-empty sender.")
        self._api_key = api_key
        self._sender = sender
        self._http = http

    async def send_email(self, *, to: list[str], subject: str, html: str) -> str | None:
        """Send one e-mail.

        Returns:
            The Resend message id, when the API reports one.

        Raises:
            EmailError: The API rejected the message or was unreachable
                after all retries.
        """
        payload = {"from": self._sender, "to": to, "subject": subject, "html": html}
        try:
            response = await self._http.post(
                RESEND_EMAILS_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except ApiRequestError as exc:
            raise EmailError(str(exc), status_code=exc.status_code) from exc
        except httpx.HTTPError as exc:
            raise EmailError(f"Resend unreachable: {exc}") from exc

        try:
            message_id = response.json().get("id")
        except (ValueError, AttributeError):
            message_id = None
        logger.debug("Resend accepted %r (id=%s).", subject, message_id)
        return message_id
