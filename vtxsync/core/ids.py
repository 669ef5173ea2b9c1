"""Run identifier strategy for VTX Sync.

Every run attempt carries an opaque correlation id that appears in every log
line (via :data:`~vtxsync.core.logging_config.RUN_ID_CTX`), in screenshot
file names, in the download directory name and in notification subjects.

+-----------+------------------------------------------+
| Attempt   | Example                                  |
+===========+==========================================+
| Primary   | ``sync-20260118T133012-a3f2b1c0``        |
+-----------+------------------------------------------+
| Retry     | ``sync-20260118T133012-a3f2b1c0-retry``  |
+-----------+------------------------------------------+

The retry id is a pure function of the primary id so a failed trigger can be
followed through the logs with a single ``grep``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime

__all__ = [
    "RETRY_SUFFIX",
    "generate_run_id",
    "derive_retry_id",
]

logger = logging.getLogger(__name__)

#: Suffix appended to a primary run id to form its retry id.
RETRY_SUFFIX: str = "-retry"


def generate_run_id(now: datetime | None = None) -> str:
    """Return a fresh primary run id.

    Args:
        now: Timestamp embedded in the id.  Defaults to the current UTC time.

    Returns:
        A ``"sync-<UTC timestamp>-<8 hex chars>"`` string.
    """
    stamp = (now or datetime.now(UTC)).astimezone(UTC).strftime("%Y%m%dT%H%M%S")
    return f"sync-{stamp}-{uuid.uuid4().hex[:8]}"


def derive_retry_id(primary_id: str) -> str:
    """Return the deterministic retry id for *primary_id*.

    Example::

        assert derive_retry_id("sync-1") == "sync-1-retry"
    """
    return f"{primary_id}{RETRY_SUFFIX}"
