"""Page-level automation primitives used by claim sessions.

:class:`PageAutomation` is the small surface a claim session needs from a
browser: navigate, query, click, read, fill, screenshot and wait.  It hides
Playwright specifics (wait states, element handles, timeout exceptions) and
turns navigation timeouts into :class:`NavigationTimeout`, so the session
logic can be exercised against a mock in tests.
"""

import logging
import os
from typing import List, Optional

from playwright.async_api import ElementHandle, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

logger = logging.getLogger(__name__)

# Closest ancestor that looks like a reward card
REWARD_CARD_SELECTOR = (
    '[class*="daily"], [class*="reward"], [class*="cue"], '
    '[class*="piece"], [class*="card"]'
)

_CONTAINER_TEXT_JS = """
(node, selector) => {
    const card = node.closest(selector) || node.parentElement;
    return card ? (card.innerText || card.textContent || '') : '';
}
"""


class SessionError(Exception):
    """Base class for errors that end a claim session."""


class NavigationTimeout(SessionError):
    """A page did not reach network idle within the allowed time."""


class ElementNotFound(SessionError):
    """A control required by the flow is missing from the page."""


class InvalidAccount(SessionError):
    """The website rejected the account id entered at login."""


class PageAutomation:
    """Thin async adapter over a Playwright :class:`Page`."""

    def __init__(self, page: Page):
        self.page = page

    async def navigate(self, url: str, timeout_ms: int) -> None:
        """Load *url* and wait for network idle.

        Raises:
            NavigationTimeout: If the load does not settle in *timeout_ms*.
        """
        try:
            await self.page.goto(url, wait_until="networkidle", timeout=timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeout(f"{url} did not settle in {timeout_ms} ms") from exc

    async def query_all(
        self, selector: str, visible_only: bool = True
    ) -> List[ElementHandle]:
        """All elements matching *selector*, in document order."""
        handles = await self.page.query_selector_all(selector)
        if not visible_only:
            return handles
        visible = []
        for handle in handles:
            if await handle.is_visible():
                visible.append(handle)
        return visible

    async def query_one(
        self, selector: str, timeout_ms: Optional[int] = None
    ) -> Optional[ElementHandle]:
        """First visible element matching *selector*, or ``None``.

        With *timeout_ms*, waits up to that long for the element to appear.
        """
        if timeout_ms is None:
            matches = await self.query_all(selector)
            return matches[0] if matches else None
        try:
            return await self.page.wait_for_selector(
                selector, state="visible", timeout=timeout_ms
            )
        except PlaywrightTimeoutError:
            return None

    async def click(self, element: ElementHandle) -> None:
        await element.click()

    async def fill(self, element: ElementHandle, value: str) -> None:
        await element.fill(value)

    async def read_text(self, element: ElementHandle) -> str:
        text = await element.inner_text()
        return (text or "").strip()

    async def is_enabled(self, element: ElementHandle) -> bool:
        return await element.is_enabled()

    async def is_attached(self, element: ElementHandle) -> bool:
        """Whether *element* is still part of the document."""
        try:
            return bool(await element.evaluate("node => node.isConnected"))
        except PlaywrightError:
            # Handle is gone with its execution context
            return False

    async def scroll_into_view(self, element: ElementHandle) -> None:
        await element.scroll_into_view_if_needed()

    async def container_text(
        self, element: ElementHandle, selector: str = REWARD_CARD_SELECTOR
    ) -> str:
        """Text of the reward card enclosing *element*."""
        text = await element.evaluate(_CONTAINER_TEXT_JS, selector)
        return (text or "").strip()

    async def page_text(self) -> str:
        """Rendered text of the whole page."""
        text = await self.page.inner_text("body")
        return text or ""

    async def screenshot(self, path: str) -> None:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        await self.page.screenshot(path=path, full_page=True)

    async def wait(self, ms: int) -> None:
        if ms > 0:
            await self.page.wait_for_timeout(ms)
