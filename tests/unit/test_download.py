"""Unit tests for :mod:`vtxsync.exporter.download`.

Tests cover:
- ``is_partial`` / ``find_candidate`` directory scanning.
- The stability rule: two equal, non-zero size readings are required.
- The XLSX signature check and its distinct error.
- Timeout on a directory holding only in-progress downloads.
- Directory lifecycle: run-scoped creation, removal on success, idempotent
  cleanup.
- Page downloads saved into the run directory by :meth:`DownloadCapture.attach`.

Time is virtual: the injected ``sleep`` advances the injected clock, so no
test waits on the wall clock.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from vtxsync.core.exceptions import DownloadTimeoutError, ExportError
from vtxsync.core.models import Phase
from vtxsync.exporter.download import XLSX_SIGNATURE, DownloadCapture, find_candidate, is_partial

_WORKBOOK = XLSX_SIGNATURE + b"\x14\x00\x06\x00" + b"x" * 120


class _VirtualTime:
    """Monotonic clock advanced only by :meth:`sleep`."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self.on_sleep: Callable[[int], None] | None = None

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)
        if self.on_sleep is not None:
            self.on_sleep(len(self.sleeps))


@pytest.fixture()
def vt() -> _VirtualTime:
    return _VirtualTime()


def _capture(vt: _VirtualTime, root: Path, **kwargs: float) -> DownloadCapture:
    params: dict[str, float] = {"timeout_s": 5.0, "poll_interval_s": 0.5, "settle_s": 0.2}
    params.update(kwargs)
    return DownloadCapture(
        "sync-test",
        root=root,
        sleep=vt.sleep,
        clock=vt.clock,
        **params,
    )


# ---------------------------------------------------------------------------
# Scanning helpers
# ---------------------------------------------------------------------------


class TestScanning:
    @pytest.mark.parametrize(
        "name",
        ["CARB.xlsx.crdownload", "CARB.xlsx.partial", "x.tmp", ".hidden.xlsx", "A.XLSX.PARTIAL"],
    )
    def test_partial_names(self, name: str) -> None:
        assert is_partial(name) is True

    def test_final_name_not_partial(self) -> None:
        assert is_partial("CARB_2026-01-18.xlsx") is False

    def test_find_candidate_ignores_partial_and_other_types(self, tmp_path: Path) -> None:
        (tmp_path / "a.xlsx.partial").write_bytes(b"x")
        (tmp_path / "notes.txt").write_bytes(b"x")
        assert find_candidate(tmp_path) is None
        (tmp_path / "b.xlsx").write_bytes(b"x")
        assert find_candidate(tmp_path) == tmp_path / "b.xlsx"

    def test_find_candidate_is_name_ordered(self, tmp_path: Path) -> None:
        (tmp_path / "z.xlsx").write_bytes(b"x")
        (tmp_path / "a.xlsx").write_bytes(b"x")
        assert find_candidate(tmp_path) == tmp_path / "a.xlsx"

    def test_find_candidate_missing_directory(self, tmp_path: Path) -> None:
        assert find_candidate(tmp_path / "nope") is None


# ---------------------------------------------------------------------------
# Poll loop
# ---------------------------------------------------------------------------


class TestWaitForArtifact:
    @pytest.mark.asyncio
    async def test_stable_valid_file_captured(self, vt: _VirtualTime, tmp_path: Path) -> None:
        capture = _capture(vt, tmp_path)
        directory = capture.prepare()
        (directory / "CARB.xlsx").write_bytes(_WORKBOOK)

        artifact = await capture.wait_for_artifact()

        assert artifact.filename == "CARB.xlsx"
        assert artifact.content == _WORKBOOK
        assert artifact.size == len(_WORKBOOK)
        assert not directory.exists()
        assert capture.directory is None

    @pytest.mark.asyncio
    async def test_only_partial_file_times_out(self, vt: _VirtualTime, tmp_path: Path) -> None:
        """A directory holding only a ``.partial`` file times out at the bound."""
        capture = _capture(vt, tmp_path, timeout_s=5.0)
        directory = capture.prepare()
        (directory / "CARB.xlsx.partial").write_bytes(_WORKBOOK)

        with pytest.raises(DownloadTimeoutError) as exc_info:
            await capture.wait_for_artifact()

        message = exc_info.value.message
        assert message.startswith("Timeout waiting")
        assert "not a valid XLSX" not in message
        assert exc_info.value.phase is Phase.AWAIT_DOWNLOAD
        assert 5.0 <= vt.now < 5.0 + 0.5 + 1e-9

    @pytest.mark.asyncio
    async def test_empty_directory_times_out(self, vt: _VirtualTime, tmp_path: Path) -> None:
        capture = _capture(vt, tmp_path, timeout_s=2.0)
        with pytest.raises(DownloadTimeoutError):
            await capture.wait_for_artifact()

    @pytest.mark.asyncio
    async def test_timeout_override(self, vt: _VirtualTime, tmp_path: Path) -> None:
        capture = _capture(vt, tmp_path, timeout_s=60.0)
        with pytest.raises(DownloadTimeoutError, match="after 1s"):
            await capture.wait_for_artifact(timeout_s=1.0)
        assert vt.now < 2.0

    @pytest.mark.asyncio
    async def test_zero_byte_file_never_accepted(self, vt: _VirtualTime, tmp_path: Path) -> None:
        capture = _capture(vt, tmp_path, timeout_s=2.0)
        (capture.prepare() / "CARB.xlsx").write_bytes(b"")
        with pytest.raises(DownloadTimeoutError):
            await capture.wait_for_artifact()

    @pytest.mark.asyncio
    async def test_growing_file_not_accepted_until_stable(
        self, vt: _VirtualTime, tmp_path: Path
    ) -> None:
        capture = _capture(vt, tmp_path)
        target = capture.prepare() / "CARB.xlsx"
        target.write_bytes(_WORKBOOK[:10])

        def _grow(call: int) -> None:
            # Keep appending for the first three sleeps, then stop.
            if call <= 3:
                with target.open("ab") as fh:
                    fh.write(_WORKBOOK[10 + (call - 1) * 10 : 10 + call * 10])

        vt.on_sleep = _grow

        artifact = await capture.wait_for_artifact()

        assert artifact.size == 40
        assert artifact.content == _WORKBOOK[:40]
        # First stability check straddled a write, so at least one extra poll.
        assert len(vt.sleeps) > 2

    @pytest.mark.asyncio
    async def test_invalid_signature_is_export_error(self, vt: _VirtualTime, tmp_path: Path) -> None:
        capture = _capture(vt, tmp_path)
        (capture.prepare() / "CARB.xlsx").write_bytes(b"<html>session expired</html>")

        with pytest.raises(ExportError) as exc_info:
            await capture.wait_for_artifact()

        assert not isinstance(exc_info.value, DownloadTimeoutError)
        assert "not a valid XLSX workbook" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_file_appearing_later(self, vt: _VirtualTime, tmp_path: Path) -> None:
        capture = _capture(vt, tmp_path)
        directory = capture.prepare()

        def _arrive(call: int) -> None:
            if call == 4:
                (directory / "CARB.xlsx").write_bytes(_WORKBOOK)

        vt.on_sleep = _arrive
        artifact = await capture.wait_for_artifact()
        assert artifact.filename == "CARB.xlsx"


# ---------------------------------------------------------------------------
# Directory lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_prepare_creates_run_scoped_directory(self, tmp_path: Path) -> None:
        capture = DownloadCapture("sync-abc", root=tmp_path / "root")
        directory = capture.prepare()
        assert directory.is_dir()
        assert directory.parent == tmp_path / "root"
        assert directory.name.startswith("vtx-sync-sync-abc-")
        assert capture.prepare() == directory

    def test_distinct_runs_get_distinct_directories(self, tmp_path: Path) -> None:
        a = DownloadCapture("sync-same", root=tmp_path).prepare()
        b = DownloadCapture("sync-same", root=tmp_path).prepare()
        assert a != b

    def test_cleanup_is_idempotent(self, tmp_path: Path) -> None:
        capture = DownloadCapture("sync-abc", root=tmp_path)
        directory = capture.prepare()
        (directory / "leftover.xlsx.partial").write_bytes(b"x")
        capture.cleanup()
        capture.cleanup()
        assert not directory.exists()

    def test_cleanup_before_prepare(self) -> None:
        DownloadCapture("sync-abc").cleanup()

    @pytest.mark.parametrize("field", ["timeout_s", "poll_interval_s"])
    def test_invalid_bounds(self, field: str) -> None:
        with pytest.raises(ValueError):
            DownloadCapture("sync-abc", **{field: 0})


class _FakePage:
    """Records ``page.on`` subscriptions and replays events to them."""

    def __init__(self) -> None:
        self.handlers: dict[str, list[Callable[[object], None]]] = {}

    def on(self, event: str, handler: Callable[[object], None]) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event: str, payload: object) -> None:
        for handler in self.handlers.get(event, []):
            handler(payload)


def _download(name: str, content: bytes = _WORKBOOK) -> MagicMock:
    """Playwright ``Download`` double whose ``save_as`` writes *content*."""
    download = MagicMock()
    download.suggested_filename = name
    download.url = f"https://portal.example.com/export/{name}"

    async def _save_as(path: Path) -> None:
        Path(path).write_bytes(content)

    download.save_as = AsyncMock(side_effect=_save_as)
    return download


async def _drain() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestAttach:
    @pytest.mark.asyncio
    async def test_subscribes_to_page_downloads(self, tmp_path: Path) -> None:
        page = _FakePage()
        capture = DownloadCapture("sync-abc", root=tmp_path)
        await capture.attach(page)
        assert capture.directory is not None and capture.directory.is_dir()
        assert len(page.handlers["download"]) == 1
        capture.cleanup()

    @pytest.mark.asyncio
    async def test_download_saved_into_run_directory(self, tmp_path: Path) -> None:
        page = _FakePage()
        capture = DownloadCapture("sync-abc", root=tmp_path)
        await capture.attach(page)
        directory = capture.directory
        assert directory is not None

        download = _download("CARB_Export.xlsx")
        page.emit("download", download)
        await _drain()

        assert (directory / "CARB_Export.xlsx").read_bytes() == _WORKBOOK
        assert not (directory / "CARB_Export.xlsx.partial").exists()
        staged = download.save_as.await_args.args[0]
        assert staged.parent == directory
        assert is_partial(staged.name)
        capture.cleanup()

    @pytest.mark.asyncio
    async def test_emitted_download_becomes_artifact(self, vt: _VirtualTime, tmp_path: Path) -> None:
        page = _FakePage()
        capture = _capture(vt, tmp_path)
        await capture.attach(page)
        directory = capture.directory
        assert directory is not None

        page.emit("download", _download("CARB_Export.xlsx"))
        artifact = await capture.wait_for_artifact()

        assert artifact.filename == "CARB_Export.xlsx"
        assert artifact.content == _WORKBOOK
        assert not directory.exists()

    @pytest.mark.asyncio
    async def test_suggested_name_cannot_escape_directory(self, tmp_path: Path) -> None:
        page = _FakePage()
        capture = DownloadCapture("sync-abc", root=tmp_path / "root")
        await capture.attach(page)
        directory = capture.directory
        assert directory is not None

        page.emit("download", _download("../../evil.xlsx"))
        await _drain()

        assert (directory / "evil.xlsx").exists()
        assert not (tmp_path / "evil.xlsx").exists()
        capture.cleanup()

    @pytest.mark.asyncio
    async def test_failed_save_leaves_poll_to_time_out(self, vt: _VirtualTime, tmp_path: Path) -> None:
        page = _FakePage()
        capture = _capture(vt, tmp_path, timeout_s=1.0)
        await capture.attach(page)

        download = _download("CARB_Export.xlsx")
        download.save_as = AsyncMock(side_effect=RuntimeError("download canceled"))
        page.emit("download", download)

        with pytest.raises(DownloadTimeoutError, match="^Timeout waiting"):
            await capture.wait_for_artifact()
        capture.cleanup()
