"""Supabase password-grant authentication for the upload service account.

Exchanges the fixed service-account credentials for a bearer token accepted
by the VTX Uploads API::

    POST {SUPABASE_URL}/auth/v1/token?grant_type=password
    apikey: {SUPABASE_SERVICE_KEY}
    {"email": "...", "password": "..."}

Every failure (missing configuration, rejected credentials, network error,
malformed response) surfaces as :class:`~vtxsync.core.exceptions.AuthError`.
"""

from __future__ import annotations

import logging

import httpx

from vtxsync.api.http_client import ApiHttpClient
from vtxsync.core.exceptions import ApiRequestError, AuthError
from vtxsync.core.models import Phase
from vtxsync.core.settings import Settings

__all__ = ["SupabaseAuthClient"]

logger = logging.getLogger(__name__)


class SupabaseAuthClient:
    """Obtain bearer tokens for the upload service account.

    Args:
        settings: Application settings (Supabase URL / key, account).
        http: Open :class:`ApiHttpClient`.  The caller owns its lifecycle.
    """

    def __init__(self, settings: Settings, http: ApiHttpClient) -> None:
        self._settings = settings
        self._http = http

    async def authenticate(self) -> str:
        """Sign in with the service account and return the access token.

        Raises:
            AuthError: On any failure.
        """
        settings = self._settings
        if not (settings.supabase_url and settings.supabase_service_key):
            raise AuthError(
                "Supabase URL or service key is not configured.", phase=Phase.AUTHENTICATE
            )
        if not (settings.service_account_email and settings.service_account_password):
            raise AuthError(
                "Service account credentials are not configured.", phase=Phase.AUTHENTICATE
            )

        url = f"{settings.supabase_url.rstrip('/')}/auth/v1/token"
        try:
            response = await self._http.post(
                url,
                params={"grant_type": "password"},
                headers={"apikey": settings.supabase_service_key},
                json={
                    "email": settings.service_account_email,
                    "password": settings.service_account_password,
                },
            )
        except ApiRequestError as exc:
            raise AuthError(f"Authentication failed: {exc}", phase=Phase.AUTHENTICATE) from exc
        except httpx.HTTPError as exc:
            raise AuthError(
                f"Authentication request failed: {exc}", phase=Phase.AUTHENTICATE
            ) from exc

        try:
            token = response.json().get("access_token")
        except (ValueError, AttributeError) as exc:
            raise AuthError(
                f"Malformed authentication response: {exc}", phase=Phase.AUTHENTICATE
            ) from exc
        if not token:
            raise AuthError("No session returned from authentication.", phase=Phase.AUTHENTICATE)

        logger.info("Authenticated as %s.", settings.service_account_email)
        return str(token)
