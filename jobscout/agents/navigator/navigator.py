"""
LinkedIn Navigator

Translates session-level page requests into browser actions:
1. Navigate to a search URL under a fresh fingerprint
2. Discover and walk pagination (human-like clicks, URL fallback)
3. Extract raw job cards from the current page

Every failure is raised as a ScrapingError tagged with its kind. Retry and
abort decisions belong to the orchestrator.
"""

import logging
import re
from typing import Optional, List, Tuple
from urllib.parse import urljoin

from jobscout.core.config import ScraperSettings
from jobscout.core.errors import ScrapingError, ErrorKind
from jobscout.core.schemas import NavigationState, PageResponse, RawJobCard
from jobscout.agents.anti_blocking.anti_blocking import AntiBlockingEngine
from jobscout.agents.navigator.browser import BrowserHandle, CardElement
from jobscout.agents.navigator import dom_selectors as sel
from jobscout.agents.navigator.search_url import with_page_offset, strip_tracking

logger = logging.getLogger(__name__)


LINKEDIN_ORIGIN = "https://www.linkedin.com"
BLOCKED_STATUS = 999  # LinkedIn's "request denied" status


class JobSearchNavigator:
    """
    Drives one browser through LinkedIn search results for one session.

    Holds NavigationState for the lifetime of the session; a new session
    gets a new navigator.
    """

    def __init__(
        self,
        browser: BrowserHandle,
        anti_blocking: AntiBlockingEngine,
        config: Optional[ScraperSettings] = None,
    ):
        """
        Initialize the navigator.

        Args:
            browser: Automation handle for a single page
            anti_blocking: The session's own anti-blocking engine
            config: Timeouts and page size
        """
        self.browser = browser
        self.anti_blocking = anti_blocking
        self.config = config or ScraperSettings()
        self.state = NavigationState()

    @property
    def navigation_state(self) -> NavigationState:
        """Copy of the current navigation state."""
        return self.state.model_copy()

    def reset_navigation_state(self) -> None:
        self.state = NavigationState()

    # =========================================================================
    # Search entry
    # =========================================================================

    async def navigate_to_search(self, search_url: str) -> None:
        """
        Load the search results page under a fresh fingerprint.

        Raises:
            ScrapingError: navigation (retryable on load failure, not
                retryable when the landed page is not a search page),
                rate_limit or blocked
        """
        logger.info(f"Navigating to LinkedIn jobs search: {search_url}")
        await self.browser.apply_fingerprint(self.anti_blocking.browser_fingerprint())

        try:
            response = await self.browser.goto(search_url, self.config.navigation_timeout_ms)
        except ScrapingError:
            raise
        except Exception as e:
            raise ScrapingError(
                ErrorKind.NAVIGATION,
                f"Failed to navigate to jobs search: {e}",
                context={"search_url": search_url},
            ) from e

        self.anti_blocking.record_request()
        self._check_response(response)
        self.state.current_url = search_url

        await self._human_delay()
        await self._check_blocked()

        if not await self._is_jobs_page():
            raise ScrapingError(
                ErrorKind.NAVIGATION,
                f"Not on LinkedIn jobs page (landed on {self.browser.url})",
                retryable=False,
                context={"search_url": search_url},
            )
        self.state.search_filters_applied = True

    async def _is_jobs_page(self) -> bool:
        if sel.JOBS_URL_MARKER in self.browser.url:
            return True
        for container in sel.RESULTS_CONTAINERS:
            if await self.browser.has_element(container):
                return True
        return False

    # =========================================================================
    # Pagination
    # =========================================================================

    async def discover_total_pages(self) -> int:
        """
        Read the page count from the pagination control.

        Falls back to 1 when pagination cannot be read; a missing selector
        never fails the run.
        """
        try:
            total = await self._read_total_pages()
        except ScrapingError:
            raise
        except Exception as e:
            logger.warning(f"Could not determine total pages, defaulting to 1: {e}")
            total = 1

        self.state.total_pages = total
        logger.info(f"Found {total} total pages")
        return total

    async def _read_total_pages(self) -> int:
        if not await self.browser.wait_for_selector(sel.PAGINATION, self.config.selector_timeout_ms):
            logger.info("No pagination control found, assuming a single page")
            return 1

        for candidate in sel.PAGE_COUNT_CANDIDATES:
            text = await self.browser.text_of(candidate)
            number = _parse_page_number(text)
            if number:
                return number

        return await self.browser.count(sel.PAGE_BUTTON) or 1

    async def go_to_page(self, page: int) -> None:
        """
        Move to a result page. No-op when already there.

        Raises:
            ScrapingError: navigation (retryable) tagged with the target page,
                or blocked/rate_limit when the site pushes back
        """
        if page == self.state.current_page:
            return

        logger.info(f"Navigating to page {page}")
        try:
            await self._scroll_to_pagination()

            button = sel.PAGE_BUTTON_NUMBERED.format(page=page)
            center = await self.browser.element_center(button)
            if center:
                await self._human_click(center)
                self.anti_blocking.record_request()
            else:
                await self._go_to_page_by_url(page)

            loaded = await self.browser.wait_for_selector(
                sel.RESULTS_CONTAINER, self.config.page_load_timeout_ms
            )
            await self._check_blocked(page)
            if not loaded:
                raise ScrapingError(
                    ErrorKind.NAVIGATION,
                    f"Results did not load for page {page}",
                    page=page,
                )
            await self._human_delay()
        except ScrapingError as e:
            if e.page is None:
                e.page = page
            raise
        except Exception as e:
            raise ScrapingError(
                ErrorKind.NAVIGATION,
                f"Failed to navigate to page {page}: {e}",
                page=page,
            ) from e

        self.state.current_page = page
        self.state.last_job_processed = 0
        if sel.JOBS_URL_MARKER in self.browser.url:
            self.state.current_url = self.browser.url

    async def _go_to_page_by_url(self, page: int) -> None:
        url = with_page_offset(self.state.current_url, page, self.config.results_per_page)
        response = await self.browser.goto(url, self.config.navigation_timeout_ms)
        self.anti_blocking.record_request()
        self._check_response(response, page)
        self.state.current_url = url

    async def has_next_page(self) -> bool:
        """Whether a "next" control is present and enabled."""
        try:
            has_next = await self.browser.is_enabled(sel.NEXT_BUTTON)
        except Exception as e:
            logger.warning(f"Error checking for next page: {e}")
            has_next = False
        self.state.has_next_page = has_next
        return has_next

    async def advance_to_next_page(self) -> bool:
        """Go to the following page. Returns False when there is none."""
        if not await self.has_next_page():
            return False
        await self.go_to_page(self.state.current_page + 1)
        return True

    # =========================================================================
    # Extraction
    # =========================================================================

    async def extract_job_cards(self) -> List[RawJobCard]:
        """
        Pull raw fields off every job card on the current page.

        A malformed card is logged and skipped. A page whose card list never
        appears raises a retryable extraction error.
        """
        page = self.state.current_page
        if not await self.browser.wait_for_selector(sel.JOB_CARD, self.config.selector_timeout_ms):
            await self._check_blocked(page)
            raise ScrapingError(
                ErrorKind.EXTRACTION,
                f"Failed to get job cards: none appeared on page {page}",
                page=page,
            )

        try:
            cards = await self.browser.query_all(sel.JOB_CARD)
        except Exception as e:
            raise ScrapingError(
                ErrorKind.EXTRACTION,
                f"Failed to get job cards: {e}",
                page=page,
            ) from e

        jobs = []
        for index, card in enumerate(cards):
            try:
                job = await self._read_card(index, card)
            except Exception as e:
                logger.warning(f"Error extracting job {index} on page {page}: {e}")
                continue
            if job:
                jobs.append(job)

        self.state.last_job_processed = len(jobs)
        logger.info(f"Found {len(jobs)} job cards on page {page}")
        return jobs

    async def _read_card(self, index: int, card: CardElement) -> Optional[RawJobCard]:
        title = await card.text(sel.CARD_TITLE)
        company = await card.text(sel.CARD_COMPANY)
        if not title or not company:
            logger.debug(f"Card {index} has no title/company, skipping")
            return None

        href = await card.attribute(sel.CARD_TITLE, "href")
        if not href:
            logger.debug(f"Card {index} has no detail URL, skipping")
            return None

        logo = await card.attribute(sel.CARD_LOGO, "data-delayed-url")
        if not logo:
            logo = await card.attribute(sel.CARD_LOGO, "src")

        return RawJobCard(
            index=index,
            title=title,
            company=company,
            location=await card.text(sel.CARD_LOCATION) or "",
            posted_time=await card.text(sel.CARD_POSTED) or "",
            job_url=strip_tracking(urljoin(LINKEDIN_ORIGIN, href)),
            company_logo_url=logo or "",
            is_easy_apply=await card.has(sel.CARD_EASY_APPLY),
            is_promoted=await card.has(sel.CARD_PROMOTED),
        )

    # =========================================================================
    # Identity and humanised interaction
    # =========================================================================

    async def rotate_identity(self) -> None:
        """Apply a new fingerprint and reload the current results page."""
        logger.info("Rotating browser fingerprint")
        await self.browser.apply_fingerprint(self.anti_blocking.browser_fingerprint())
        self.anti_blocking.reset_session()
        if not self.state.current_url:
            return

        try:
            response = await self.browser.goto(self.state.current_url, self.config.navigation_timeout_ms)
        except ScrapingError:
            raise
        except Exception as e:
            raise ScrapingError(
                ErrorKind.NAVIGATION,
                f"Failed to reload after rotation: {e}",
                page=self.state.current_page,
            ) from e
        self.anti_blocking.record_request()
        self._check_response(response, self.state.current_page)
        await self._human_delay()
        await self._check_blocked(self.state.current_page)

    async def scroll_page(self) -> None:
        """Scroll the results by a random amount."""
        amount = self.anti_blocking.scroll_amount()
        await self.browser.scroll_by(amount, self.anti_blocking.scroll_pattern())
        await self._human_delay(1000)

    async def _scroll_to_pagination(self) -> None:
        if await self.browser.has_element(sel.PAGINATION):
            await self.browser.scroll_into_view(sel.PAGINATION)
        await self._human_delay(1000)

    async def _human_click(self, center: Tuple[float, float]) -> None:
        for movement in self.anti_blocking.mouse_movements():
            await self.browser.mouse_move(movement.x, movement.y)
            await self._human_delay(movement.delay_ms)

        x, y = center
        await self.browser.mouse_move(x, y)
        await self._human_delay(200)
        await self.browser.mouse_click(x, y)

    async def _human_delay(self, ms: Optional[int] = None) -> None:
        await self.browser.wait(ms or self.anti_blocking.adaptive_delay())

    # =========================================================================
    # Detection
    # =========================================================================

    def _check_response(self, response: PageResponse, page: Optional[int] = None) -> None:
        status = response.status_code
        if status == BLOCKED_STATUS:
            raise ScrapingError(
                ErrorKind.BLOCKED,
                f"Request denied by LinkedIn (HTTP {status})",
                retryable=False,
                page=page,
            )
        if self.anti_blocking.is_rate_limited(response.elapsed_ms, status):
            raise ScrapingError(
                ErrorKind.RATE_LIMIT,
                f"Rate limited (HTTP {status}, {response.elapsed_ms} ms)",
                page=page,
                context={"status_code": status, "elapsed_ms": response.elapsed_ms},
            )
        if status is not None and status >= 400:
            raise ScrapingError(
                ErrorKind.NETWORK,
                f"Unexpected HTTP {status} for {response.url}",
                page=page,
            )

    async def _check_blocked(self, page: Optional[int] = None) -> None:
        url = self.browser.url
        if any(marker in url for marker in sel.BLOCKED_URL_MARKERS):
            raise ScrapingError(
                ErrorKind.BLOCKED,
                f"Login required: redirected to {url}",
                retryable=False,
                page=page,
            )
        if await self.browser.has_element(sel.CAPTCHA):
            raise ScrapingError(
                ErrorKind.BLOCKED,
                "Captcha challenge detected",
                retryable=False,
                page=page,
            )


def _parse_page_number(text: Optional[str]) -> Optional[int]:
    """"40" -> 40, "Page 1 of 40" -> 40, anything else -> None."""
    if not text:
        return None
    match = re.search(r"of\s+(\d+)", text) or re.match(r"\s*(\d+)", text)
    if match:
        return int(match.group(1)) or None
    return None
