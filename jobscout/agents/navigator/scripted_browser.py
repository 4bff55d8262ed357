"""
Scripted LinkedIn results page.

An in-memory BrowserHandle that serves canned result pages. It models the
parts of the search UI the navigator relies on: numbered pagination buttons
(only a window of them rendered, as on the real site), the `start` offset in
the URL, login walls, captchas, throttled responses and slow-loading cards.
Used by the command-line demo and the test-suite.
"""

import logging
from typing import Optional, List, Dict, Any, Tuple

from jobscout.core.schemas import BrowserFingerprint, PageResponse
from jobscout.agents.navigator.browser import BrowserHandle, CardElement
from jobscout.agents.navigator import dom_selectors as sel
from jobscout.agents.navigator.search_url import page_from_offset, with_page_offset

logger = logging.getLogger(__name__)


AUTHWALL_URL = "https://www.linkedin.com/authwall?trk=guest_job_search"

BUTTON_Y = 650
BUTTON_SPACING = 40


def make_card(
    job_id: int,
    title: str = "Backend Developer",
    company: str = "Acme",
    location: str = "Jakarta, Indonesia",
    posted_time: str = "2 days ago",
    easy_apply: bool = False,
    promoted: bool = False,
    **extra: Any,
) -> Dict[str, Any]:
    """Build a card dict in the shape ScriptedBrowser serves."""
    card = {
        "title": title,
        "company": company,
        "location": location,
        "posted_time": posted_time,
        "url": f"https://www.linkedin.com/jobs/view/{job_id}/?refId=abc&trackingId=xyz",
        "logo": f"https://media.licdn.com/logo/{job_id}.png",
        "easy_apply": easy_apply,
        "promoted": promoted,
    }
    card.update(extra)
    return card


class ScriptedCard(CardElement):

    FIELD_BY_SELECTOR = {
        sel.CARD_TITLE: "title",
        sel.CARD_COMPANY: "company",
        sel.CARD_LOCATION: "location",
        sel.CARD_POSTED: "posted_time",
    }

    def __init__(self, data: Dict[str, Any]):
        self.data = data

    def _check(self) -> None:
        if self.data.get("broken"):
            raise RuntimeError("detached card element")

    async def text(self, selector: str) -> Optional[str]:
        self._check()
        field = self.FIELD_BY_SELECTOR.get(selector)
        value = self.data.get(field) if field else None
        return value.strip() if value else None

    async def attribute(self, selector: str, name: str) -> Optional[str]:
        self._check()
        if selector == sel.CARD_TITLE and name == "href":
            return self.data.get("url")
        if selector == sel.CARD_LOGO and name == "data-delayed-url":
            return self.data.get("logo")
        return None

    async def has(self, selector: str) -> bool:
        self._check()
        if selector == sel.CARD_EASY_APPLY:
            return bool(self.data.get("easy_apply"))
        if selector == sel.CARD_PROMOTED:
            return bool(self.data.get("promoted"))
        return False


class ScriptedBrowser(BrowserHandle):
    """
    Serves `pages[n - 1]` as result page n.

    Args:
        pages: Card dicts per page (see make_card)
        reported_total_pages: Page count shown by the pagination control,
            defaults to len(pages)
        visible_page_buttons: Numbered buttons rendered; later pages are only
            reachable through the URL offset
        blocked_pages: Page number -> "authwall" or "captcha"
        status_codes: Page number -> HTTP status returned by goto
        slow_pages: Page number -> response time in ms returned by goto
        flaky_pages: Page number -> number of card waits that time out
        landing_url: URL the first navigation lands on instead of the target
    """

    def __init__(
        self,
        pages: List[List[Dict[str, Any]]],
        reported_total_pages: Optional[int] = None,
        visible_page_buttons: int = 9,
        blocked_pages: Optional[Dict[int, str]] = None,
        status_codes: Optional[Dict[int, int]] = None,
        slow_pages: Optional[Dict[int, int]] = None,
        flaky_pages: Optional[Dict[int, int]] = None,
        landing_url: Optional[str] = None,
        page_size: int = 25,
    ):
        self.pages = pages
        self.reported_total_pages = (
            reported_total_pages if reported_total_pages is not None else len(pages)
        )
        self.visible_page_buttons = visible_page_buttons
        self.blocked_pages = blocked_pages or {}
        self.status_codes = status_codes or {}
        self.slow_pages = slow_pages or {}
        self.flaky_pages = dict(flaky_pages or {})
        self.landing_url = landing_url
        self.page_size = page_size

        self._url = "about:blank"
        self.page_number = 0
        self.results_loaded = False
        self.captcha = False
        self.closed = False

        # Recorded interaction
        self.fingerprints: List[BrowserFingerprint] = []
        self.navigations: List[str] = []
        self.loaded_pages: List[int] = []
        self.clicks: List[Tuple[float, float]] = []
        self.mouse_path: List[Tuple[float, float]] = []
        self.scrolled_px = 0
        self.waited_ms = 0

    # =========================================================================
    # Page model
    # =========================================================================

    def _load(self, page: int) -> None:
        self.page_number = page
        self.loaded_pages.append(page)
        self.captcha = False
        self.results_loaded = True

        blocked = self.blocked_pages.get(page)
        if blocked == "authwall":
            self._url = AUTHWALL_URL
            self.results_loaded = False
        elif blocked == "captcha":
            self.captcha = True
            self.results_loaded = False
        elif self.status_codes.get(page, 200) >= 400:
            self.results_loaded = False

    def _cards(self) -> List[Dict[str, Any]]:
        if not self.results_loaded or not 1 <= self.page_number <= len(self.pages):
            return []
        return self.pages[self.page_number - 1]

    def _button_pages(self) -> List[int]:
        if not self.results_loaded or self.reported_total_pages <= 1:
            return []
        return list(range(1, min(self.visible_page_buttons, self.reported_total_pages) + 1))

    def _button_center(self, page: int) -> Tuple[float, float]:
        return float(100 + page * BUTTON_SPACING), float(BUTTON_Y)

    def _present(self, selector: str) -> bool:
        if selector in sel.RESULTS_CONTAINERS:
            return self.results_loaded
        if selector == sel.JOB_CARD:
            return bool(self._cards())
        if selector == sel.CAPTCHA:
            return self.captcha
        if selector in (sel.PAGINATION, sel.NEXT_BUTTON, sel.PAGE_BUTTON):
            return bool(self._button_pages())
        for page in self._button_pages():
            if selector == sel.PAGE_BUTTON_NUMBERED.format(page=page):
                return True
        return False

    # =========================================================================
    # BrowserHandle
    # =========================================================================

    @property
    def url(self) -> str:
        return self._url

    async def apply_fingerprint(self, fingerprint: BrowserFingerprint) -> None:
        self.fingerprints.append(fingerprint)
        self._url = "about:blank"
        self.results_loaded = False

    async def goto(self, url: str, timeout_ms: int) -> PageResponse:
        self.navigations.append(url)
        page = page_from_offset(url, self.page_size)
        if self.landing_url and len(self.navigations) == 1:
            self._url = self.landing_url
            self.page_number = 0
            self.results_loaded = False
            return PageResponse(url=self._url, status_code=200, elapsed_ms=300)

        self._url = url
        self._load(page)
        return PageResponse(
            url=self._url,
            status_code=self.status_codes.get(page, 200),
            elapsed_ms=self.slow_pages.get(page, 350),
        )

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> bool:
        if selector == sel.JOB_CARD and self.flaky_pages.get(self.page_number, 0) > 0:
            self.flaky_pages[self.page_number] -= 1
            self.waited_ms += timeout_ms
            return False
        present = self._present(selector)
        if not present:
            self.waited_ms += timeout_ms
        return present

    async def has_element(self, selector: str) -> bool:
        return self._present(selector)

    async def text_of(self, selector: str) -> Optional[str]:
        if selector == sel.PAGE_COUNT_CANDIDATES[0] and self._button_pages():
            return str(self.reported_total_pages)
        return None

    async def count(self, selector: str) -> int:
        if selector == sel.PAGE_BUTTON:
            return len(self._button_pages())
        if selector == sel.JOB_CARD:
            return len(self._cards())
        return 0

    async def is_enabled(self, selector: str) -> bool:
        if selector == sel.NEXT_BUTTON:
            return self._present(selector) and self.page_number < self.reported_total_pages
        return self._present(selector)

    async def element_center(self, selector: str) -> Optional[Tuple[float, float]]:
        for page in self._button_pages():
            if selector == sel.PAGE_BUTTON_NUMBERED.format(page=page):
                return self._button_center(page)
        return None

    async def scroll_into_view(self, selector: str) -> None:
        pass

    async def scroll_by(self, pixels: int, behavior: str = "smooth") -> None:
        self.scrolled_px += pixels

    async def mouse_move(self, x: float, y: float) -> None:
        self.mouse_path.append((x, y))

    async def mouse_click(self, x: float, y: float) -> None:
        self.clicks.append((x, y))
        for page in self._button_pages():
            if self._button_center(page) == (x, y):
                self._url = with_page_offset(self._url, page, self.page_size)
                self._load(page)
                return
        logger.debug(f"Click at ({x}, {y}) hit nothing")

    async def query_all(self, selector: str) -> List[CardElement]:
        if selector != sel.JOB_CARD:
            return []
        return [ScriptedCard(card) for card in self._cards()]

    async def wait(self, ms: int) -> None:
        self.waited_ms += ms

    async def close(self) -> None:
        self.closed = True
