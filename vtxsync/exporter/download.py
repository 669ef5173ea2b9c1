"""Download capture for browser-initiated exports.

A browser download is observed through two channels:

* **Playwright download events** — each ``download`` the page emits is
  logged and saved into a run-scoped directory.  The events only say that
  a download started or finished copying; they are not used to decide
  whether the workbook is complete.
* **Filesystem polling** of the run-scoped directory — the authoritative
  signal.  A candidate file is accepted only after its size is non-zero and
  unchanged across two readings :attr:`DownloadCapture.settle_s` apart, and
  its leading bytes match the ZIP container signature every ``.xlsx`` file
  starts with.

Saved downloads are written under a ``.partial`` name and renamed once the
copy finishes, so the poll loop never picks up a half-written workbook under
its final name.

Lifecycle::

    capture = DownloadCapture(run_id, timeout_s=60.0)
    capture.prepare()                 # before the browser is told to download
    await capture.attach(page)        # save the page's downloads into the directory
    ...                               # click the export control
    artifact = await capture.wait_for_artifact()
    capture.cleanup()                 # idempotent, never raises

The directory is removed on every exit path: :meth:`wait_for_artifact`
deletes it after reading the file, and :meth:`cleanup` is called from the
exporter's ``finally`` block for the failure paths.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Final

from vtxsync.core import events
from vtxsync.core.exceptions import DownloadTimeoutError, ExportError
from vtxsync.core.models import ExportArtifact, Phase

__all__ = [
    "XLSX_SIGNATURE",
    "DownloadCapture",
    "find_candidate",
    "is_partial",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Leading bytes of a ZIP local file header; every XLSX workbook starts so.
XLSX_SIGNATURE: Final[bytes] = b"PK\x03\x04"

#: Expected extension of the exported workbook.
_EXPECTED_SUFFIX: Final[str] = ".xlsx"

#: Suffixes browsers use for downloads still being written.
_PARTIAL_SUFFIXES: Final[tuple[str, ...]] = (".crdownload", ".partial", ".tmp", ".download")

_DEFAULT_TIMEOUT_S: Final[float] = 60.0
_DEFAULT_POLL_INTERVAL_S: Final[float] = 0.5
_DEFAULT_SETTLE_S: Final[float] = 0.2


# ---------------------------------------------------------------------------
# Directory scanning helpers (pure, synchronous)
# ---------------------------------------------------------------------------


def is_partial(name: str) -> bool:
    """Return ``True`` for hidden files and in-progress download markers."""
    lowered = name.lower()
    return name.startswith(".") or lowered.endswith(_PARTIAL_SUFFIXES)


def find_candidate(directory: Path) -> Path | None:
    """Return the first finished-looking ``.xlsx`` file in *directory*.

    Files are considered in name order so the choice is deterministic when
    several appear at once.  A directory that does not exist (yet) yields
    ``None`` rather than an error.
    """
    try:
        names = sorted(entry.name for entry in directory.iterdir() if entry.is_file())
    except FileNotFoundError:
        return None
    for name in names:
        if is_partial(name) or not name.lower().endswith(_EXPECTED_SUFFIX):
            continue
        return directory / name
    return None


def _size_of(path: Path) -> int | None:
    """Return the size of *path*, or ``None`` if it vanished."""
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return None


# ---------------------------------------------------------------------------
# Capture coordinator
# ---------------------------------------------------------------------------


class DownloadCapture:
    """Capture exactly one exported workbook for one run.

    Args:
        run_id: Run correlation id, embedded in the directory name.
        root: Parent directory for the run-scoped download directory.
            ``None`` uses the system temp directory.
        timeout_s: Default bound for :meth:`wait_for_artifact`.
        poll_interval_s: Pause between directory scans.
        settle_s: Pause between the two size readings of the stability check.
        sleep: Awaitable sleep function.  Override in tests.
        clock: Monotonic clock in seconds.  Override in tests.
    """

    def __init__(
        self,
        run_id: str,
        *,
        root: Path | None = None,
        timeout_s: float = _DEFAULT_TIMEOUT_S,
        poll_interval_s: float = _DEFAULT_POLL_INTERVAL_S,
        settle_s: float = _DEFAULT_SETTLE_S,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if timeout_s <= 0:
            raise ValueError(f"timeout_s must be > 0, got {timeout_s!r}.")
        if poll_interval_s <= 0:
            raise ValueError(f"poll_interval_s must be > 0, got {poll_interval_s!r}.")
        self._run_id = run_id
        self._root = root
        self._timeout_s = timeout_s
        self._poll_interval_s = poll_interval_s
        self._settle_s = settle_s
        self._sleep = sleep
        self._clock = clock
        self._directory: Path | None = None
        self._saves: set[asyncio.Task[None]] = set()

    @property
    def directory(self) -> Path | None:
        """The run-scoped download directory, once :meth:`prepare` ran."""
        return self._directory

    @property
    def settle_s(self) -> float:
        return self._settle_s

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def prepare(self) -> Path:
        """Create the unique run-scoped download directory and return it."""
        if self._directory is not None:
            return self._directory
        if self._root is not None:
            self._root.mkdir(parents=True, exist_ok=True)
        self._directory = Path(
            tempfile.mkdtemp(prefix=f"vtx-sync-{self._run_id}-", dir=self._root)
        )
        logger.debug("Download directory prepared: %s", self._directory)
        return self._directory

    async def attach(self, page: Any) -> None:
        """Save every download *page* starts into the run directory.

        Subscribes to the page's ``download`` event.  The browser context
        must be created with ``accept_downloads=True``.

        Args:
            page: A Playwright :class:`~playwright.async_api.Page`.
        """
        directory = self.prepare()
        page.on("download", self._on_download)
        logger.debug("Page downloads will be saved to %s", directory)

    # ------------------------------------------------------------------
    # Download event handling (advisory)
    # ------------------------------------------------------------------

    def _on_download(self, download: Any) -> None:
        logger.info(
            "Download started: %s (%s)",
            download.suggested_filename,
            download.url,
            extra={"event": events.DOWNLOAD_EVENT},
        )
        task = asyncio.get_running_loop().create_task(self._save(download))
        self._saves.add(task)
        task.add_done_callback(self._saves.discard)

    async def _save(self, download: Any) -> None:
        """Copy *download* into the run directory under its suggested name."""
        directory = self._directory
        if directory is None:
            logger.warning("Download %s arrived after cleanup; ignored.", download.suggested_filename)
            return

        name = Path(download.suggested_filename or "").name or f"{self._run_id}{_EXPECTED_SUFFIX}"
        staging = directory / f"{name}.partial"
        try:
            await download.save_as(staging)
            staging.replace(directory / name)
        except Exception:
            logger.warning(
                "Download %s could not be saved into %s.",
                name,
                directory,
                exc_info=True,
                extra={"event": events.DOWNLOAD_EVENT},
            )
            return
        logger.info("Download saved: %s", name, extra={"event": events.DOWNLOAD_EVENT})

    # ------------------------------------------------------------------
    # Authoritative poll loop
    # ------------------------------------------------------------------

    async def wait_for_artifact(self, timeout_s: float | None = None) -> ExportArtifact:
        """Poll the download directory until a stable, valid workbook appears.

        Args:
            timeout_s: Override for the constructor's timeout.

        Returns:
            The captured :class:`~vtxsync.core.models.ExportArtifact`.  The
            file and its directory have been removed by the time this returns.

        Raises:
            DownloadTimeoutError: No stable candidate appeared in time.
            ExportError: A stable candidate does not carry the XLSX signature
                or could not be read.
        """
        directory = self.prepare()
        budget = self._timeout_s if timeout_s is None else timeout_s
        deadline = self._clock() + budget

        while True:
            candidate = find_candidate(directory)
            if candidate is not None and await self._is_stable(candidate):
                return self._read(candidate)
            if self._clock() >= deadline:
                break
            await self._sleep(self._poll_interval_s)

        raise DownloadTimeoutError(
            f"Timeout waiting for XLSX file in {directory} after {budget:g}s",
            phase=Phase.AWAIT_DOWNLOAD,
        )

    async def _is_stable(self, candidate: Path) -> bool:
        """Two non-zero size readings ``settle_s`` apart must agree."""
        first = _size_of(candidate)
        if not first:
            return False
        await self._sleep(self._settle_s)
        second = _size_of(candidate)
        if second != first:
            logger.debug(
                "Download %s still growing (%s → %s bytes)", candidate.name, first, second
            )
            return False
        return True

    def _read(self, candidate: Path) -> ExportArtifact:
        """Validate the signature, load the bytes, and reclaim the directory."""
        try:
            content = candidate.read_bytes()
        except OSError as exc:
            raise ExportError(
                f"Could not read downloaded file {candidate.name}: {exc}",
                phase=Phase.AWAIT_DOWNLOAD,
            ) from exc

        if not content.startswith(XLSX_SIGNATURE):
            raise ExportError(
                f"Downloaded file {candidate.name} is not a valid XLSX workbook "
                f"(leading bytes {content[:4]!r})",
                phase=Phase.AWAIT_DOWNLOAD,
            )

        artifact = ExportArtifact(content=content, filename=candidate.name, size=len(content))
        logger.info(
            "Captured %s (%d bytes)",
            artifact.filename,
            artifact.size,
            extra={"event": events.DOWNLOAD_CAPTURED},
        )
        self.cleanup()
        return artifact

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def cleanup(self) -> None:
        """Remove the download directory and anything left in it.

        Safe to call multiple times.  Failures are logged at ``WARNING``.
        """
        for task in list(self._saves):
            task.cancel()
        if self._directory is None:
            return
        directory, self._directory = self._directory, None
        try:
            shutil.rmtree(directory)
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Failed to remove download directory '%s'.", directory, exc_info=True)
        else:
            logger.debug("Download directory removed: %s", directory)
