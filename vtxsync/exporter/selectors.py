"""Data-driven selector strategies for the Pacific Track portal.

The portal's markup drifts between releases, so every element the exporter
touches is located through an ordered list of candidates evaluated in
priority order; the first one present wins.  Adapting to a markup change
means editing the tuples below, never the state machine.

The export target search is the one non-trivial case: the "Export" entry of
the actions dropdown has been rendered as a ``<button>``, as an ``<a>`` and
as a bare ``<li>`` wrapping either.  Clicking the wrapper does nothing, so a
matching container is only ever a route to the interactive element nested
inside it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Final

__all__ = [
    "EMAIL_SELECTORS",
    "PASSWORD_SELECTORS",
    "SUBMIT_SELECTORS",
    "LOGIN_ERROR_BANNER",
    "EXPORT_PAGE_MARKER",
    "MENU_SELECTORS",
    "EXPORT_TARGET_STRATEGIES",
    "TargetStrategy",
    "matches_export_text",
    "first_present",
    "find_export_target",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Login form
# ---------------------------------------------------------------------------

#: Email input: exact id, then semantic input type, then name attribute.
EMAIL_SELECTORS: Final[tuple[str, ...]] = (
    "#email",
    "input[type='email']",
    "input[name='email']",
)

#: Password input, same precedence as :data:`EMAIL_SELECTORS`.
PASSWORD_SELECTORS: Final[tuple[str, ...]] = (
    "#password",
    "input[type='password']",
    "input[name='password']",
)

SUBMIT_SELECTORS: Final[tuple[str, ...]] = (
    "button[type='submit']",
    "input[type='submit']",
    "#login-btn",
)

#: Any of these becoming visible after submit means the portal rejected us.
LOGIN_ERROR_BANNER: Final[str] = ".alert-danger, .error-message, .login-error, .alert"

# ---------------------------------------------------------------------------
# Export page
# ---------------------------------------------------------------------------

#: Structural marker proving the vehicles page rendered.
EXPORT_PAGE_MARKER: Final[str] = "#single-button, table, .table"

#: Control that opens the actions dropdown.
MENU_SELECTORS: Final[tuple[str, ...]] = (
    "#single-button",
    "button[id*='action']",
    ".dropdown-toggle",
)

_EXPORT_TEXT: Final[str] = "export"


@dataclass(frozen=True)
class TargetStrategy:
    """One way of finding the export entry in the opened dropdown.

    Attributes:
        name: Label used in log lines.
        selector: CSS selector for the candidate elements.
        nested: For non-interactive candidates, the selector of the
            clickable element inside them.  ``None`` means the candidate is
            itself clickable.
    """

    name: str
    selector: str
    nested: str | None = None


#: Most specific interactive element type first.
EXPORT_TARGET_STRATEGIES: Final[tuple[TargetStrategy, ...]] = (
    TargetStrategy("button", "button"),
    TargetStrategy("link", ".dropdown-menu a, a.dropdown-item"),
    TargetStrategy("container", ".dropdown-menu li, .dropdown-item", nested="button, a"),
)


# ---------------------------------------------------------------------------
# Matching helpers
# ---------------------------------------------------------------------------


def matches_export_text(text: str | None) -> bool:
    """``True`` when *text* is "export" or starts with it, ignoring case."""
    return (text or "").strip().lower().startswith(_EXPORT_TEXT)


async def first_present(page: Any, selectors: tuple[str, ...]) -> Any | None:
    """Return a locator for the first selector with a match on *page*.

    Args:
        page: Playwright page.
        selectors: Candidates in priority order.

    Returns:
        The first matching :class:`~playwright.async_api.Locator`, or
        ``None`` when no selector matches.
    """
    for selector in selectors:
        locator = page.locator(selector).first
        if await locator.count() > 0:
            logger.debug("Selector %r matched.", selector)
            return locator
    return None


async def _clickable_within(container: Any, nested: str) -> Any | None:
    """Prefer the nested element whose own text matches, else the first one."""
    inner = container.locator(nested)
    count = await inner.count()
    if count == 0:
        return None
    for index in range(count):
        element = inner.nth(index)
        if matches_export_text(await element.text_content()):
            return element
    return inner.first


async def find_export_target(
    page: Any,
    strategies: tuple[TargetStrategy, ...] = EXPORT_TARGET_STRATEGIES,
) -> tuple[TargetStrategy, Any] | None:
    """Locate the clickable export entry.

    Strategies are tried in order; within a strategy, candidates are
    scanned in DOM order and hidden ones are ignored.  A container match
    without a clickable descendant is skipped rather than clicked.

    Returns:
        ``(strategy, locator)`` for the element to click, or ``None``.
    """
    for strategy in strategies:
        candidates = page.locator(strategy.selector)
        count = await candidates.count()
        for index in range(count):
            element = candidates.nth(index)
            if not matches_export_text(await element.text_content()):
                continue
            if not await element.is_visible():
                continue
            if strategy.nested is None:
                return strategy, element
            clickable = await _clickable_within(element, strategy.nested)
            if clickable is not None:
                return strategy, clickable
            logger.debug(
                "Container %d matched 'export' but holds no clickable element; skipping.",
                index,
            )
    return None
