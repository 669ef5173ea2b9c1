"""Process-wide logging setup for VTX Sync.

``configure_logging()`` runs once, first thing in ``__main__``; modules only
ever do ``logger = logging.getLogger(__name__)``.

Every record is stamped with the id of the run attempt in progress, taken
from :data:`RUN_ID_CTX`.  :func:`~vtxsync.orchestrator.sync.run_sync` sets
it for the duration of one attempt, so the primary attempt and its
``-retry`` are told apart without threading the id through call signatures.

Two output formats:

* ``text`` — ``2026-01-18 05:30:12 INFO     [sync-20260118T133000-1a2b3c4d] vtxsync.exporter.portal: …``
* ``json`` — one object per line with ``run_id`` and ``event`` promoted to
  top-level keys (see :class:`JsonFormatter`).

``LOG_LEVEL`` and ``LOG_FORMAT`` are read from the environment when no
explicit value is passed, because logging is configured before
:class:`~vtxsync.core.settings.Settings` is loaded.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any, Final

__all__ = [
    "LOG_FORMATS",
    "LOG_LEVELS",
    "RUN_ID_CTX",
    "JsonFormatter",
    "RunContextFilter",
    "configure_logging",
]

#: Run id of the attempt in progress; ``"-"`` while idle.
RUN_ID_CTX: ContextVar[str] = ContextVar("run_id", default="-")

LOG_LEVELS: Final[frozenset[str]] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
LOG_FORMATS: Final[frozenset[str]] = frozenset({"text", "json"})

_TEXT_FORMAT: Final[str] = "%(asctime)s %(levelname)-8s [%(run_id)s] %(name)s: %(message)s"
_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

#: Libraries whose INFO output drowns the run log (request lines, access log).
_QUIET_LOGGERS: Final[tuple[str, ...]] = ("httpx", "httpcore", "uvicorn.access", "asyncio")

class RunContextFilter(logging.Filter):
    """Copy :data:`RUN_ID_CTX` onto each record as ``record.run_id``."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.run_id = RUN_ID_CTX.get()
        return True

def _resolve(value: str | None, env_var: str, default: str, allowed: frozenset[str]) -> str:
    resolved = value or os.environ.get(env_var) or default
    resolved = resolved.lower() if env_var == "LOG_FORMAT" else resolved.upper()
    if resolved not in allowed:
        raise ValueError(f"Unknown {env_var} {resolved!r}; expected one of {sorted(allowed)}.")
    return resolved

def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Install the single stderr handler on the root logger.

    Args:
        level: Level name; defaults to ``$LOG_LEVEL`` then ``INFO``.
        fmt: ``text`` or ``json``; defaults to ``$LOG_FORMAT`` then ``text``.
        force: Replace existing root handlers instead of only adjusting the
            level.  Tests pass ``True``.

    Raises:
        ValueError: Unknown level or format.
    """
    resolved_level = _resolve(level, "LOG_LEVEL", "INFO", LOG_LEVELS)
    resolved_fmt = _resolve(fmt, "LOG_FORMAT", "text", LOG_FORMATS)

    root = logging.getLogger()
    root.setLevel(resolved_level)
    if root.handlers and not force:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RunContextFilter())
    handler.setFormatter(
        JsonFormatter()
        if resolved_fmt == "json"
        else logging.Formatter(fmt=_TEXT_FORMAT, datefmt=_DATE_FORMAT)
    )
    root.handlers[:] = [handler]

    quiet_level = logging.NOTSET if resolved_level == "DEBUG" else logging.WARNING
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

#: Attributes every LogRecord carries; anything else came in via ``extra=``.
_STANDARD_ATTRS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "run_id", "event"}

class JsonFormatter(logging.Formatter):
    """One JSON object per record::

        {"ts": "2026-01-18T13:30:12.481Z", "level": "INFO",
         "logger": "vtxsync.orchestrator.sync", "run_id": "sync-…",
         "event": "RUN_SUCCESS", "message": "…", "extra": {"duration_s": 41.2}}

    ``run_id`` is ``"-"`` outside a run; ``event`` is ``null`` for records
    logged without one.  A traceback, when present, goes under ``exc_info``.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        created = datetime.fromtimestamp(record.created, tz=UTC)
        payload: dict[str, Any] = {
            "ts": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "run_id": getattr(record, "run_id", RUN_ID_CTX.get()),
            "event": getattr(record, "event", None),
            "message": record.getMessage(),
            "extra": {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS},
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exc_info"] = record.exc_text
        return json.dumps(payload, default=str)
