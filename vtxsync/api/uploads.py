"""VTX Uploads API client.

Posts the exported workbook as multipart form data::

    POST {VTX_UPLOADS_API_URL}/api/imports/upload
    Authorization: Bearer <token>
    file=<workbook bytes>

Response handling:

* ``{"success": true, "data": {...}}`` → statistics.
* ``code == "DUPLICATE_FILENAME"`` or ``error == "duplicate_filename"`` in the
  body, on a 2xx **or** an error status → success with ``skipped=True`` and
  ``reason="duplicate"``.  The portal names exports by date, so re-running a
  sync within the same window legitimately produces a duplicate.
* Anything else → :class:`~vtxsync.core.exceptions.UploadError`.

The POST is sent once.  Only a refused connection or an HTTP 429 is retried
by the transport; a timeout or 5xx after the body was sent surfaces as an
upload failure instead of a replay the API would report as a duplicate.
"""

from __future__ import annotations

import logging
from typing import Any, Final

import httpx

from vtxsync.api.http_client import ApiHttpClient
from vtxsync.core.exceptions import ApiRequestError, UploadError
from vtxsync.core.models import ExportArtifact, Phase, UploadResult
from vtxsync.core.settings import Settings

__all__ = ["XLSX_MIME_TYPE", "UploadClient", "is_duplicate_response"]

logger = logging.getLogger(__name__)

XLSX_MIME_TYPE: Final[str] = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_UPLOAD_PATH: Final[str] = "/api/imports/upload"


def is_duplicate_response(payload: Any) -> bool:
    """``True`` when *payload* reports that the filename was already imported."""
    if not isinstance(payload, dict):
        return False
    return payload.get("code") == "DUPLICATE_FILENAME" or payload.get("error") == "duplicate_filename"


class UploadClient:
    """Upload exported workbooks to the VTX Uploads API.

    Args:
        settings: Application settings (API base URL).
        http: Open :class:`ApiHttpClient`.  The caller owns its lifecycle.
    """

    def __init__(self, settings: Settings, http: ApiHttpClient) -> None:
        self._url = f"{settings.vtx_uploads_api_url.rstrip('/')}{_UPLOAD_PATH}"
        self._http = http

    async def upload(self, artifact: ExportArtifact, token: str) -> UploadResult:
        """Upload *artifact* using bearer *token*.

        Returns:
            The parsed :class:`~vtxsync.core.models.UploadResult`.

        Raises:
            UploadError: The API rejected the file or could not be reached.
        """
        logger.info("Uploading %s (%d bytes) to %s", artifact.filename, artifact.size, self._url)
        try:
            response = await self._http.post(
                self._url,
                files={"file": (artifact.filename, artifact.content, XLSX_MIME_TYPE)},
                headers={"Authorization": f"Bearer {token}"},
                idempotent=False,
            )
        except ApiRequestError as exc:
            if is_duplicate_response(exc.payload):
                return self._duplicate(artifact)
            raise UploadError(f"Upload failed: {exc}", phase=Phase.UPLOAD) from exc
        except httpx.HTTPError as exc:
            raise UploadError(f"Upload request failed: {exc}", phase=Phase.UPLOAD) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise UploadError(f"Malformed upload response: {exc}", phase=Phase.UPLOAD) from exc

        if is_duplicate_response(payload):
            return self._duplicate(artifact)

        if not isinstance(payload, dict):
            raise UploadError("Upload failed: unexpected response body", phase=Phase.UPLOAD)
        if not payload.get("success"):
            message = payload.get("message") or payload.get("error")
            raise UploadError(f"Upload failed: {message or 'unknown error'}", phase=Phase.UPLOAD)

        data = payload.get("data") or {}
        result = UploadResult(
            import_id=data.get("import_id"),
            new_records=data.get("inserted_rows") or 0,
            duplicates=data.get("skipped_rows") or 0,
            total_rows=data.get("total_rows") or 0,
        )
        logger.info(
            "Upload accepted: import_id=%s new=%d duplicates=%d total=%d",
            result.import_id,
            result.new_records,
            result.duplicates,
            result.total_rows,
        )
        return result

    @staticmethod
    def _duplicate(artifact: ExportArtifact) -> UploadResult:
        logger.info("File %s was already imported; skipping.", artifact.filename)
        return UploadResult(skipped=True, reason="duplicate")
