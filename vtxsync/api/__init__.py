"""HTTP collaborators: service-account authentication and workbook upload."""

from vtxsync.api.auth import SupabaseAuthClient
from vtxsync.api.http_client import ApiHttpClient
from vtxsync.api.uploads import UploadClient

__all__ = [
    "ApiHttpClient",
    "SupabaseAuthClient",
    "UploadClient",
]
