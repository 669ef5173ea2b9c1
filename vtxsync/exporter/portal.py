"""Pacific Track export state machine.

:class:`PortalExporter` drives one browser session through four phases, in
strict order, to produce an :class:`~vtxsync.core.models.ExportArtifact`::

    IDLE ──login──▶ LOGGED_IN ──navigate──▶ ON_TARGET_PAGE
         ──trigger_export──▶ EXPORT_TRIGGERED ──capture──▶ ARTIFACT_CAPTURED

Each phase has its own timeout and failure category:

+-----------------+--------------------+------------------------------------+
| Phase           | Category           | Done when                          |
+=================+====================+====================================+
| login           | ``login``          | URL has left the login path        |
+-----------------+--------------------+------------------------------------+
| navigate        | ``navigation``     | marker visible and URL on target   |
+-----------------+--------------------+------------------------------------+
| trigger-export  | ``export``         | export entry clicked               |
+-----------------+--------------------+------------------------------------+
| await-download  | ``export``         | stable, valid workbook captured    |
+-----------------+--------------------+------------------------------------+

Any exception inside a phase triggers a best-effort screenshot to
``<screenshot_dir>/<phase>-error-<run_id>.png`` and surfaces as the phase's
:class:`~vtxsync.core.exceptions.SyncError` subclass.  The browser session
and the download directory are released in ``finally`` on every path.

Typical usage::

    exporter = PortalExporter(settings, run_id)
    artifact = await exporter.run()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any, TypeVar

from vtxsync.core import events
from vtxsync.core.exceptions import (
    ExportError,
    LoginError,
    NavigationError,
    OrchestratorError,
    SyncError,
)
from vtxsync.core.models import ExportArtifact, Phase
from vtxsync.core.settings import Settings
from vtxsync.exporter.browser import BrowserSession
from vtxsync.exporter.download import DownloadCapture
from vtxsync.exporter.selectors import (
    EMAIL_SELECTORS,
    EXPORT_PAGE_MARKER,
    LOGIN_ERROR_BANNER,
    MENU_SELECTORS,
    PASSWORD_SELECTORS,
    SUBMIT_SELECTORS,
    find_export_target,
    first_present,
)

__all__ = ["ExportState", "PortalExporter"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExportState(StrEnum):
    """Progress of one :class:`PortalExporter`."""

    IDLE = "idle"
    LOGGED_IN = "logged_in"
    ON_TARGET_PAGE = "on_target_page"
    EXPORT_TRIGGERED = "export_triggered"
    ARTIFACT_CAPTURED = "artifact_captured"


class PortalExporter:
    """Run the portal export once.

    Args:
        settings: Application settings (portal URLs, credentials, timeouts).
        run_id: Run correlation id, used for screenshot and directory names.
        session_factory: Callable returning an async context manager that
            exposes ``.page``.  Defaults to :class:`BrowserSession`.
        capture: Download capture to use.  Built from *settings* if ``None``.
        sleep: Awaitable sleep function.  Override in tests.
    """

    def __init__(
        self,
        settings: Settings,
        run_id: str,
        *,
        session_factory: Callable[[Settings], Any] = BrowserSession,
        capture: DownloadCapture | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._run_id = run_id
        self._session_factory = session_factory
        self._capture = capture or DownloadCapture(
            run_id,
            root=settings.download_root_path,
            timeout_s=settings.download_timeout_s,
            poll_interval_s=settings.download_poll_interval_s,
            settle_s=settings.download_settle_s,
        )
        self._sleep = sleep
        self._state = ExportState.IDLE
        self._phase: Phase | None = None
        self._page: Any = None

    @property
    def state(self) -> ExportState:
        return self._state

    @property
    def phase(self) -> Phase | None:
        """Phase currently executing (or last executed)."""
        return self._phase

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> ExportArtifact:
        """Execute every phase and return the captured artifact.

        Raises:
            SyncError: A categorised failure from the phase that failed.
            OrchestratorError: The exporter was already used.
        """
        if self._state is not ExportState.IDLE:
            raise OrchestratorError(f"PortalExporter already used (state={self._state}).")

        self._capture.prepare()
        try:
            async with self._session_factory(self._settings) as session:
                self.bind(session.page)
                await self._route_downloads()
                await self.login()
                await self.navigate()
                await self.trigger_export()
                return await self.capture()
        except SyncError:
            raise
        except Exception as exc:
            # Browser launch / teardown failures happen outside any phase.
            raise ExportError(
                f"Browser session failed: {exc}",
                phase=self._phase or Phase.LOGIN,
            ) from exc
        finally:
            self._page = None
            self._capture.cleanup()

    def bind(self, page: Any) -> None:
        """Attach the Playwright page the phases operate on."""
        self._page = page

    async def _route_downloads(self) -> None:
        try:
            await self._capture.attach(self._page)
        except Exception as exc:
            raise ExportError(
                f"Could not configure browser downloads: {exc}", phase=Phase.LOGIN
            ) from exc

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def login(self) -> None:
        """IDLE → LOGGED_IN."""
        await self._run_phase(
            Phase.LOGIN, LoginError, ExportState.IDLE, ExportState.LOGGED_IN, self._login
        )

    async def navigate(self) -> None:
        """LOGGED_IN → ON_TARGET_PAGE."""
        await self._run_phase(
            Phase.NAVIGATE,
            NavigationError,
            ExportState.LOGGED_IN,
            ExportState.ON_TARGET_PAGE,
            self._navigate,
        )

    async def trigger_export(self) -> None:
        """ON_TARGET_PAGE → EXPORT_TRIGGERED."""
        await self._run_phase(
            Phase.TRIGGER_EXPORT,
            ExportError,
            ExportState.ON_TARGET_PAGE,
            ExportState.EXPORT_TRIGGERED,
            self._trigger_export,
        )

    async def capture(self) -> ExportArtifact:
        """EXPORT_TRIGGERED → ARTIFACT_CAPTURED."""
        return await self._run_phase(
            Phase.AWAIT_DOWNLOAD,
            ExportError,
            ExportState.EXPORT_TRIGGERED,
            ExportState.ARTIFACT_CAPTURED,
            self._capture.wait_for_artifact,
        )

    async def _run_phase(
        self,
        phase: Phase,
        error_cls: type[SyncError],
        expected: ExportState,
        reached: ExportState,
        step: Callable[[], Awaitable[T]],
    ) -> T:
        """Run *step* as *phase*, enforcing order and categorising failures."""
        if self._state is not expected:
            raise OrchestratorError(
                f"Cannot run phase {phase} from state {self._state} (expected {expected})."
            )
        if self._page is None:
            raise OrchestratorError(f"Cannot run phase {phase} without a browser page.")

        self._phase = phase
        logger.info("Phase %s started.", phase, extra={"event": events.PHASE_START})
        try:
            result = await step()
        except SyncError as exc:
            await self._fail(phase, exc)
            raise
        except Exception as exc:
            await self._fail(phase, exc)
            raise error_cls(f"{phase} failed: {exc}", phase=phase) from exc

        self._state = reached
        return result

    async def _fail(self, phase: Phase, exc: BaseException) -> None:
        logger.error(
            "Phase %s failed: %s",
            phase,
            exc,
            extra={"event": events.PHASE_FAILED},
        )
        await self._screenshot(phase)

    # ------------------------------------------------------------------
    # Phase bodies
    # ------------------------------------------------------------------

    async def _login(self) -> None:
        settings = self._settings
        page = self._page
        if not settings.portal_configured:
            raise LoginError("Portal credentials are not configured.", phase=Phase.LOGIN)

        await page.goto(
            settings.portal_login_url,
            wait_until="domcontentloaded",
            timeout=settings.navigation_timeout_s * 1000,
        )

        email = await first_present(page, EMAIL_SELECTORS)
        if email is None:
            raise LoginError("Email input not found on the login page.", phase=Phase.LOGIN)
        password = await first_present(page, PASSWORD_SELECTORS)
        if password is None:
            raise LoginError("Password input not found on the login page.", phase=Phase.LOGIN)

        await email.click()
        await email.press_sequentially(settings.pacific_track_email, delay=settings.typing_delay_ms)
        await password.click()
        await password.press_sequentially(
            settings.pacific_track_password, delay=settings.typing_delay_ms
        )

        submit = await first_present(page, SUBMIT_SELECTORS)
        if submit is None:
            await password.press("Enter")
        else:
            await submit.click()

        await self._await_login_outcome()

        if settings.portal_login_path in page.url:
            banner = await self._login_banner_text()
            detail = banner or "still on the login page"
            raise LoginError(f"Login failed: {detail}", phase=Phase.LOGIN)
        logger.info("Logged in to the portal.")

    async def _await_login_outcome(self) -> None:
        """Wait until the URL leaves the login path or an error banner shows.

        The winner is not trusted: the caller verifies success by URL.
        """
        page = self._page
        login_path = self._settings.portal_login_path
        timeout_ms = self._settings.login_timeout_s * 1000

        left_login = asyncio.create_task(
            page.wait_for_url(lambda url: login_path not in url, timeout=timeout_ms)
        )
        banner = asyncio.create_task(
            page.locator(LOGIN_ERROR_BANNER).first.wait_for(state="visible", timeout=timeout_ms)
        )
        done, pending = await asyncio.wait({left_login, banner}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            exc = task.exception()
            if exc is not None:
                logger.debug("Login wait ended without a signal: %s", exc)

    async def _login_banner_text(self) -> str | None:
        banner = self._page.locator(LOGIN_ERROR_BANNER).first
        if await banner.count() == 0 or not await banner.is_visible():
            return None
        text = (await banner.text_content() or "").strip()
        return text or None

    async def _navigate(self) -> None:
        settings = self._settings
        page = self._page
        await page.goto(
            settings.portal_export_url,
            wait_until="networkidle",
            timeout=settings.navigation_timeout_s * 1000,
        )
        await page.locator(EXPORT_PAGE_MARKER).first.wait_for(
            state="visible", timeout=settings.marker_timeout_s * 1000
        )
        if settings.portal_export_path not in page.url:
            raise NavigationError(
                f"Unexpected page after navigation: {page.url}", phase=Phase.NAVIGATE
            )
        logger.info("On export page %s.", page.url)

    async def _trigger_export(self) -> None:
        page = self._page
        menu = await first_present(page, MENU_SELECTORS)
        if menu is None:
            raise ExportError("Actions menu control not found.", phase=Phase.TRIGGER_EXPORT)
        await menu.click()
        await self._sleep(self._settings.trigger_settle_s)

        found = await find_export_target(page)
        if found is None:
            raise ExportError(
                "No export option found in the actions menu.", phase=Phase.TRIGGER_EXPORT
            )
        strategy, target = found
        await target.click()
        logger.info("Export triggered via %s strategy.", strategy.name)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def _screenshot(self, phase: Phase) -> None:
        """Save a full-page screenshot; failures are logged, never raised."""
        if self._page is None:
            return
        path = self._settings.screenshot_path / f"{phase}-error-{self._run_id}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await self._page.screenshot(path=str(path), full_page=True)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to capture screenshot '%s'.", path, exc_info=True)
        else:
            logger.info("Screenshot saved: %s", path)
