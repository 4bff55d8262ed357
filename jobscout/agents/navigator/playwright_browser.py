"""
Playwright implementation of the browser handle.

Each fingerprint gets its own browser context so the user agent, viewport,
locale and timezone are applied consistently from the first request.
"""

import logging
import time
from typing import Optional, List, Tuple

from playwright.async_api import (
    async_playwright,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
)

from jobscout.core.errors import ScrapingError, ErrorKind
from jobscout.core.schemas import BrowserFingerprint, PageResponse
from jobscout.agents.navigator.browser import BrowserHandle, CardElement

logger = logging.getLogger(__name__)


class PlaywrightCard(CardElement):
    """Job card backed by a Playwright ElementHandle."""

    def __init__(self, handle):
        self.handle = handle

    async def text(self, selector: str) -> Optional[str]:
        element = await self.handle.query_selector(selector)
        if element is None:
            return None
        content = await element.text_content()
        return content.strip() if content else None

    async def attribute(self, selector: str, name: str) -> Optional[str]:
        element = await self.handle.query_selector(selector)
        if element is None:
            return None
        return await element.get_attribute(name)

    async def has(self, selector: str) -> bool:
        return await self.handle.query_selector(selector) is not None


class PlaywrightBrowser(BrowserHandle):
    """
    Chromium driven through playwright.async_api.

    Usage:
        browser = await PlaywrightBrowser.launch(headless=True)
        try:
            ...
        finally:
            await browser.close()
    """

    def __init__(self, playwright, browser):
        self._playwright = playwright
        self._browser = browser
        self._context = None
        self._page = None

    @classmethod
    async def launch(cls, headless: bool = True) -> "PlaywrightBrowser":
        playwright = await async_playwright().start()
        browser = await playwright.chromium.launch(headless=headless)
        logger.info(f"Launched Chromium (headless={headless})")
        return cls(playwright, browser)

    @property
    def page(self):
        if self._page is None:
            raise RuntimeError("No page open; apply a fingerprint first")
        return self._page

    @property
    def url(self) -> str:
        return self._page.url if self._page is not None else ""

    async def apply_fingerprint(self, fingerprint: BrowserFingerprint) -> None:
        if self._context is not None:
            await self._context.close()
        self._context = await self._browser.new_context(
            user_agent=fingerprint.user_agent,
            viewport={"width": fingerprint.viewport.width, "height": fingerprint.viewport.height},
            locale=fingerprint.language,
            timezone_id=fingerprint.timezone,
        )
        await self._context.add_init_script(
            "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"
            f"Object.defineProperty(navigator, 'platform', {{get: () => '{fingerprint.platform}'}});"
        )
        self._page = await self._context.new_page()

    async def goto(self, url: str, timeout_ms: int) -> PageResponse:
        started = time.monotonic()
        try:
            response = await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise ScrapingError(
                ErrorKind.NAVIGATION,
                f"Navigation timed out after {timeout_ms} ms: {url}",
                context={"url": url},
            ) from e
        except PlaywrightError as e:
            raise ScrapingError(ErrorKind.NETWORK, f"Navigation failed: {e}", context={"url": url}) from e
        elapsed_ms = int((time.monotonic() - started) * 1000)
        return PageResponse(
            url=self.page.url,
            status_code=response.status if response else None,
            elapsed_ms=elapsed_ms,
        )

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        try:
            await self.page.wait_for_selector(selector, timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False

    async def has_element(self, selector: str) -> bool:
        return await self.page.query_selector(selector) is not None

    async def text_of(self, selector: str) -> Optional[str]:
        element = await self.page.query_selector(selector)
        if element is None:
            return None
        content = await element.text_content()
        return content.strip() if content else None

    async def count(self, selector: str) -> int:
        return len(await self.page.query_selector_all(selector))

    async def is_enabled(self, selector: str) -> bool:
        element = await self.page.query_selector(selector)
        if element is None:
            return False
        return await element.get_attribute("disabled") is None

    async def element_center(self, selector: str) -> Optional[Tuple[float, float]]:
        element = await self.page.query_selector(selector)
        if element is None:
            return None
        box = await element.bounding_box()
        if not box:
            return None
        return box["x"] + box["width"] / 2, box["y"] + box["height"] / 2

    async def scroll_into_view(self, selector: str) -> None:
        element = await self.page.query_selector(selector)
        if element is not None:
            await element.scroll_into_view_if_needed()

    async def scroll_by(self, pixels: int, behavior: str = "smooth") -> None:
        await self.page.evaluate(
            "([top, behavior]) => window.scrollBy({top, behavior})",
            [pixels, behavior],
        )

    async def mouse_move(self, x: float, y: float) -> None:
        await self.page.mouse.move(x, y)

    async def mouse_click(self, x: float, y: float) -> None:
        await self.page.mouse.click(x, y)

    async def query_all(self, selector: str) -> List[CardElement]:
        return [PlaywrightCard(handle) for handle in await self.page.query_selector_all(selector)]

    async def wait(self, ms: int) -> None:
        await self.page.wait_for_timeout(ms)

    async def close(self) -> None:
        if self._context is not None:
            await self._context.close()
        await self._browser.close()
        await self._playwright.stop()
        logger.info("Browser closed")
