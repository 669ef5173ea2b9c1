"""Playwright browser session lifecycle.

:class:`BrowserSession` owns one Chromium process, one context and one page
for a single export run.  It is an async context manager so the exporter can
guarantee that no browser process outlives the run, whichever phase failed::

    async with BrowserSession(settings) as session:
        await session.page.goto(settings.portal_login_url)

Shutdown is best-effort per layer (page, context, browser, driver): a
failure closing one layer is logged and the remaining layers are still
closed, so the run's own error is never masked by teardown noise.
"""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Final

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from vtxsync.core.settings import Settings

__all__ = ["BrowserSession"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Chromium flags for running inside a container without a GPU or sandbox.
_LAUNCH_ARGS: Final[list[str]] = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

_VIEWPORT: Final[dict[str, int]] = {"width": 1280, "height": 800}

#: Default per-action timeout applied to the context (milliseconds).
_DEFAULT_ACTION_TIMEOUT_MS: Final[float] = 30_000.0


class BrowserSession:
    """One Chromium browser, context and page.

    Args:
        settings: Application settings (headless flag, executable path,
            user agent, navigation timeout).
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page:
        """The session's page.

        Raises:
            RuntimeError: If the session has not been started.
        """
        if self._page is None:
            raise RuntimeError("BrowserSession has not been started.")
        return self._page

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> BrowserSession:
        try:
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Launch Chromium and open a page with the configured defaults."""
        settings = self._settings
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=settings.browser_headless,
            args=_LAUNCH_ARGS,
            executable_path=settings.browser_executable_path or None,
        )
        self._context = await self._browser.new_context(
            viewport=_VIEWPORT,
            user_agent=settings.user_agent,
            accept_downloads=True,
        )
        self._context.set_default_timeout(_DEFAULT_ACTION_TIMEOUT_MS)
        self._context.set_default_navigation_timeout(settings.navigation_timeout_s * 1000)
        self._page = await self._context.new_page()
        logger.debug(
            "Browser session started (headless=%s, executable=%s).",
            settings.browser_headless,
            settings.browser_executable_path or "bundled",
        )

    async def close(self) -> None:
        """Close page, context, browser and driver.

        Safe to call multiple times or on a partially started session.
        """
        page, self._page = self._page, None
        context, self._context = self._context, None
        browser, self._browser = self._browser, None
        playwright, self._playwright = self._playwright, None

        for label, closer in (
            ("page", page.close if page else None),
            ("context", context.close if context else None),
            ("browser", browser.close if browser else None),
            ("driver", playwright.stop if playwright else None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception:  # noqa: BLE001
                logger.warning("Failed to close browser %s.", label, exc_info=True)
        if playwright is not None:
            logger.debug("Browser session closed.")
