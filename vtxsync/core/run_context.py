"""Runtime context for a single VTX Sync process.

Encapsulates the user-selected operating mode that alters behaviour without
changing any configuration values.  One :class:`RunContext` is created in
:mod:`vtxsync.__main__` and handed to the notifier.

dry_run
    Run the full pipeline (browser export, authentication and upload) but
    **log notification payloads** instead of sending e-mails.  Useful when
    validating a new deployment without spamming the team inbox.

Typical usage::

    from vtxsync.core.run_context import RunContext

    ctx = RunContext(dry_run=args.dry_run)

    if not ctx.should_notify:
        logger.info("[dry-run] Would send: %s", subject)
        return
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

__all__ = ["RunContext"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunContext:
    """Immutable container for process-wide operating-mode flags.

    Attributes:
        dry_run: When ``True``, notifications are rendered and logged but
            never delivered.
    """

    dry_run: bool = field(default=False)

    @property
    def should_notify(self) -> bool:
        """``True`` if the notifier should actually deliver messages."""
        return not self.dry_run

    @property
    def mode_label(self) -> str:
        """``"dry-run"`` or ``"live"``, used in log lines."""
        return "dry-run" if self.dry_run else "live"

    def __str__(self) -> str:
        return f"RunContext(mode={self.mode_label}, should_notify={self.should_notify})"
