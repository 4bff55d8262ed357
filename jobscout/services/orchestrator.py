"""
Scrape Orchestrator

Owns the lifecycle of a LinkedIn scraping session:
1. Validate search params -> 2. Create session -> 3. Navigate & discover pages
-> 4. Page loop (extract, score, persist progress) -> 5. Export -> 6. Persist jobs

Implements:
- Session state machine (pending -> running -> completed/failed, pause/resume)
- Retry with exponential backoff for retryable navigation/extraction errors
- Per-page continue/abort policy driven by the error kind
- Cooperative pause and cancellation checked at the top of every page

The page loop is strictly sequential. Each session owns its own browser and
anti-blocking engine. Store and export calls run in worker threads.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Callable, Awaitable, Set

from jobscout.core.config import Settings, get_settings
from jobscout.core.database import generate_uuid
from jobscout.core.errors import ScrapingError, SearchParamsValidationError
from jobscout.core.schemas import (
    SearchParams, ScrapingSession, ScrapingProgress, ScrapedJob, RawJobCard,
    ScrapingResult, ScrapingUpdate, SessionStatus, ProgressStage, UpdateType,
    validate_search_params, utcnow
)
from jobscout.agents.anti_blocking.anti_blocking import AntiBlockingEngine
from jobscout.agents.navigator.browser import BrowserHandle
from jobscout.agents.navigator.navigator import JobSearchNavigator
from jobscout.agents.navigator.search_url import build_search_url
from jobscout.services.exporter import SheetExporter
from jobscout.services.normalizer import build_job_record
from jobscout.services.stores import SessionStore, JobStore

logger = logging.getLogger(__name__)


BrowserFactory = Callable[[], Awaitable[BrowserHandle]]

ACTIVE_STATUSES = (SessionStatus.RUNNING, SessionStatus.PAUSED)
OPEN_STATUSES = (SessionStatus.PENDING, SessionStatus.RUNNING, SessionStatus.PAUSED)


# ============================================================================
# Run Context (State Container)
# ============================================================================

@dataclass
class SessionRun:
    """
    In-process state of one running session.

    Durable state lives in the session store; this only carries what the
    page loop accumulates between persists.
    """

    session: ScrapingSession
    progress: ScrapingProgress
    started: float = field(default_factory=time.monotonic)

    jobs: List[ScrapedJob] = field(default_factory=list)
    seen_urls: Set[str] = field(default_factory=set)
    errors: List[str] = field(default_factory=list)

    pages_succeeded: int = 0
    pages_failed: int = 0
    aborted: bool = False
    cancelled: bool = False

    @property
    def session_id(self) -> str:
        return self.session.id

    @property
    def user_id(self) -> str:
        return self.session.user_id

    def duration_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    def to_result(self, success: bool, **extra: Any) -> ScrapingResult:
        return ScrapingResult(
            success=success,
            session_id=self.session_id,
            jobs_found=list(self.jobs),
            total_jobs_scraped=len(self.jobs),
            errors=list(self.errors),
            duration_ms=self.duration_ms(),
            aborted=self.aborted,
            cancelled=self.cancelled,
            **extra,
        )


async def default_browser_factory() -> BrowserHandle:
    """Launch a local Chromium through Playwright."""
    from jobscout.agents.navigator.playwright_browser import PlaywrightBrowser
    return await PlaywrightBrowser.launch(headless=get_settings().scraper.headless)


# ============================================================================
# Main Orchestrator
# ============================================================================

class ScrapeOrchestrator:
    """
    Runs scraping sessions end to end.

    `scrape_jobs` and `run_session` never raise: every outcome is reported
    through the returned ScrapingResult and the persisted session.
    """

    def __init__(
        self,
        session_store: SessionStore,
        job_store: JobStore,
        browser_factory: BrowserFactory = default_browser_factory,
        exporter: Optional[SheetExporter] = None,
        settings: Optional[Settings] = None,
        anti_blocking_factory: Optional[Callable[[], AntiBlockingEngine]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        update_callback: Optional[Callable[[ScrapingUpdate], Any]] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            session_store: Where sessions and progress are persisted
            job_store: Where finished job records are bulk-inserted
            browser_factory: Coroutine returning a fresh browser per session
            exporter: Spreadsheet exporter; export is skipped without one
            settings: Application settings
            anti_blocking_factory: Builds one engine per session
            sleep: Coroutine used for every orchestrator-level delay
            update_callback: Receives live ScrapingUpdate events
        """
        self.settings = settings or get_settings()
        self.config = self.settings.scraper
        self.session_store = session_store
        self.job_store = job_store
        self.browser_factory = browser_factory
        self.exporter = exporter
        self.anti_blocking_factory = anti_blocking_factory or (
            lambda: AntiBlockingEngine(self.settings.anti_blocking)
        )
        self.sleep = sleep
        self.update_callback = update_callback or self._default_update

    def _default_update(self, update: ScrapingUpdate) -> None:
        """Default update handler (just logs)."""
        logger.debug(f"UPDATE [{update.session_id}] {update.type.value}: {update.data}")

    # =========================================================================
    # Session Lifecycle
    # =========================================================================

    def create_session(
        self,
        params: SearchParams,
        user_id: str,
        cv_id: Optional[str] = None,
        retry_count: int = 0,
    ) -> ScrapingSession:
        """
        Validate params and persist a pending session.

        Raises:
            SearchParamsValidationError: nothing is persisted in that case
        """
        errors = validate_search_params(params)
        if errors:
            logger.info(f"Rejected search params for user {user_id}: {errors}")
            raise SearchParamsValidationError(errors)

        session = ScrapingSession(
            id=generate_uuid(),
            user_id=user_id,
            cv_id=cv_id,
            search_params=params,
            retry_count=retry_count,
        )
        self.session_store.create(session)
        return session

    async def scrape_jobs(
        self,
        params: SearchParams,
        user_id: str,
        cv_id: Optional[str] = None,
        export_to_sheets: Optional[bool] = None,
    ) -> ScrapingResult:
        """Create a session and run it to completion."""
        try:
            session = await asyncio.to_thread(self.create_session, params, user_id, cv_id)
        except SearchParamsValidationError as e:
            return ScrapingResult(success=False, errors=e.errors)
        except Exception as e:
            logger.exception(f"Could not create scraping session for user {user_id}")
            return ScrapingResult(success=False, errors=[str(e) or e.__class__.__name__])
        return await self.run_session(session, export_to_sheets)

    async def run_session(
        self,
        session: ScrapingSession,
        export_to_sheets: Optional[bool] = None,
    ) -> ScrapingResult:
        """
        Drive a pending session through navigation, the page loop and
        finalisation.

        Args:
            session: A persisted session in `pending`
            export_to_sheets: Overrides the configured export toggle
        """
        run = SessionRun(session=session, progress=session.progress.model_copy(deep=True))
        export = self.config.export_to_sheets if export_to_sheets is None else export_to_sheets
        logger.info(f"Starting scraping session {run.session_id}")

        browser = None
        try:
            engine = self.anti_blocking_factory()
            browser = await self.browser_factory()
            navigator = JobSearchNavigator(browser, engine, self.config)

            total_pages = await self._start(run, navigator, engine)
            if total_pages is None:
                return run.to_result(success=False)

            await self._scrape_pages(run, navigator, engine, total_pages)
            return await self._finalize(run, export)

        except Exception as e:
            if isinstance(e, ScrapingError):
                message = e.describe()
            else:
                logger.exception(f"Unexpected failure in session {run.session_id}")
                message = str(e) or e.__class__.__name__
            if message not in run.errors:
                run.errors.append(message)
            await self._fail(run, message)
            return run.to_result(success=False)

        finally:
            if browser is not None:
                try:
                    await browser.close()
                except Exception as e:
                    logger.warning(f"Failed to close browser for session {run.session_id}: {e}")

    # =========================================================================
    # Session Steps
    # =========================================================================

    async def _start(
        self,
        run: SessionRun,
        navigator: JobSearchNavigator,
        engine: AntiBlockingEngine,
    ) -> Optional[int]:
        """
        Navigate to the search, discover pages and move the session to running.

        Returns:
            Pages to scrape, or None if the session was cancelled meanwhile
        """
        search_url = build_search_url(run.session.search_params)
        await self._with_retries(engine, lambda: navigator.navigate_to_search(search_url), page=1)

        discovered = await navigator.discover_total_pages()
        total_pages = min(discovered, self.config.max_pages)
        if discovered > total_pages:
            logger.info(f"Session {run.session_id}: capping {discovered} pages at {total_pages}")

        run.progress.current_page = 1
        run.progress.total_pages = total_pages
        run.progress.status = ProgressStage.SEARCHING
        run.progress.message = f"Found {discovered} result pages, scraping {total_pages}"

        started = await asyncio.to_thread(
            self.session_store.update,
            run.session_id,
            run.user_id,
            {"status": SessionStatus.RUNNING, "started_at": utcnow(), "progress": run.progress},
            only_if=[SessionStatus.PENDING],
        )
        if started is None:
            logger.info(f"Session {run.session_id} was cancelled before it started")
            run.cancelled = True
            return None

        logger.info(f"Session {run.session_id}: pending -> running")
        return total_pages

    async def _scrape_pages(
        self,
        run: SessionRun,
        navigator: JobSearchNavigator,
        engine: AntiBlockingEngine,
        total_pages: int,
    ) -> None:
        """Sequential page loop with per-page continue/abort."""
        for page in range(1, total_pages + 1):
            if not await self._checkpoint(run):
                break

            try:
                cards = await self._with_retries(
                    engine, lambda: self._load_page(navigator, engine, page), page=page
                )
            except ScrapingError as e:
                run.pages_failed += 1
                message = e.describe()
                logger.warning(f"Session {run.session_id}: {message}")
                run.errors.append(message)
                run.progress.add_error(message)
                run.progress.current_page = max(run.progress.current_page, page)
                run.progress.message = f"Error on page {page}: {e.message}"
                await self._emit(run, UpdateType.ERROR, {"page": page, "kind": e.kind.value, "message": e.message})

                if not await self._persist_progress(run):
                    break
                if e.is_critical:
                    logger.warning(f"Session {run.session_id}: critical {e.kind.value} error, stopping page loop")
                    run.aborted = True
                    break
                continue

            new_jobs = self._collect(run, cards)
            run.pages_succeeded += 1
            run.progress.current_page = page
            run.progress.jobs_found = len(run.jobs)
            run.progress.jobs_processed = len(run.jobs)
            run.progress.status = ProgressStage.EXTRACTING
            run.progress.message = f"Scraped page {page} of {total_pages}: {len(new_jobs)} new jobs"
            await self._emit(run, UpdateType.PAGE_COMPLETED, {
                "page": page,
                "jobs_on_page": len(new_jobs),
                "total_jobs": len(run.jobs),
            })

            if not await self._persist_progress(run):
                break

            if page < total_pages:
                delay = self.config.delay_between_pages_ms + engine.jitter(self.config.page_jitter_ms)
                await self._sleep_ms(delay)

    async def _load_page(
        self,
        navigator: JobSearchNavigator,
        engine: AntiBlockingEngine,
        page: int,
    ) -> List[RawJobCard]:
        if engine.should_rotate_session():
            await navigator.rotate_identity()
        if page > 1:
            await navigator.go_to_page(page)
        cards = await navigator.extract_job_cards()
        return cards[:self.config.max_jobs_per_page]

    def _collect(self, run: SessionRun, cards: List[RawJobCard]) -> List[ScrapedJob]:
        """Score and append cards not seen earlier in this session."""
        new_jobs = []
        for card in cards:
            if card.job_url in run.seen_urls:
                continue
            run.seen_urls.add(card.job_url)
            job = build_job_record(
                card,
                session_id=run.session_id,
                user_id=run.user_id,
                cv_id=run.session.cv_id,
                priority_cities=self.config.priority_cities,
            )
            run.jobs.append(job)
            new_jobs.append(job)
        return new_jobs

    async def _finalize(self, run: SessionRun, export: bool) -> ScrapingResult:
        """Export, persist jobs and complete (or fail) the session."""
        if not run.cancelled:
            await self._checkpoint(run)

        if run.cancelled:
            inserted = await asyncio.to_thread(self.job_store.bulk_insert, run.jobs)
            logger.info(f"Session {run.session_id} stopped by user; kept {inserted} jobs")
            return run.to_result(success=False)

        if run.pages_succeeded == 0 and run.pages_failed > 0:
            message = f"No result pages could be scraped: {run.errors[-1]}"
            await self._fail(run, message)
            return run.to_result(success=False)

        sheets_url = None
        export_error = None
        if export and run.jobs and self.exporter is not None:
            try:
                sheets_url = await asyncio.to_thread(self.exporter.export, run.jobs)
            except Exception as e:
                export_error = f"Spreadsheet export failed: {e}"
                logger.error(f"Session {run.session_id}: {export_error}")

        inserted = await asyncio.to_thread(self.job_store.bulk_insert, run.jobs)

        run.progress.status = ProgressStage.COMPLETED
        if run.aborted:
            run.progress.message = f"Scraping stopped early after a critical error. Found {len(run.jobs)} jobs."
        else:
            run.progress.message = f"Scraping completed. Found {len(run.jobs)} jobs."

        completed = await asyncio.to_thread(
            self.session_store.update,
            run.session_id,
            run.user_id,
            {
                "status": SessionStatus.COMPLETED,
                "progress": run.progress,
                "total_jobs_found": len(run.jobs),
                "google_sheets_url": sheets_url,
                "completed_at": utcnow(),
            },
            only_if=[SessionStatus.RUNNING],
        )
        if completed is None:
            run.cancelled = True
            logger.info(f"Session {run.session_id} was cancelled during finalisation")
            return run.to_result(success=False, google_sheets_url=sheets_url, export_error=export_error)

        logger.info(
            f"Session {run.session_id}: running -> completed "
            f"({len(run.jobs)} jobs, {inserted} stored, {run.pages_failed} failed pages)"
        )
        await self._emit(run, UpdateType.COMPLETED, {
            "total_jobs": len(run.jobs),
            "google_sheets_url": sheets_url,
        })
        return run.to_result(success=True, google_sheets_url=sheets_url, export_error=export_error)

    async def _fail(self, run: SessionRun, message: str) -> None:
        run.progress.status = ProgressStage.FAILED
        run.progress.message = message
        try:
            updated = await asyncio.to_thread(
                self.session_store.update,
                run.session_id,
                run.user_id,
                {
                    "status": SessionStatus.FAILED,
                    "progress": run.progress,
                    "error_message": message,
                    "completed_at": utcnow(),
                },
                only_if=OPEN_STATUSES,
            )
        except Exception as e:
            logger.error(f"Could not mark session {run.session_id} failed: {e}")
            return
        if updated is not None:
            logger.error(f"Session {run.session_id} failed: {message}")
            await self._emit(run, UpdateType.FAILED, {"message": message})

    # =========================================================================
    # Retry, Pause & Cancellation
    # =========================================================================

    async def _with_retries(
        self,
        engine: AntiBlockingEngine,
        step: Callable[[], Awaitable[Any]],
        page: Optional[int] = None,
    ) -> Any:
        """
        Run a navigator step, retrying retryable errors with backoff.

        Raises:
            ScrapingError: the last error once attempts are exhausted, or
                immediately for non-retryable errors
        """
        attempts = max(1, self.config.retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await step()
            except ScrapingError as e:
                error = e
            except Exception as e:
                error = ScrapingError.from_exception(e, page=page)

            if error.page is None:
                error.page = page
            if not error.retryable or attempt == attempts:
                raise error

            delay = engine.backoff_delay(attempt)
            logger.warning(f"{error.describe()} (attempt {attempt}/{attempts}), retrying in {delay} ms")
            await self._sleep_ms(delay)

    async def _checkpoint(self, run: SessionRun) -> bool:
        """
        Honour pause and cancellation before the next page.

        Returns:
            False when the loop must stop
        """
        session = await asyncio.to_thread(self.session_store.get, run.session_id, run.user_id)
        if session.status == SessionStatus.PAUSED:
            session = await self._await_resume(run)

        if session.status != SessionStatus.RUNNING:
            logger.info(f"Session {run.session_id} is {session.status.value}, stopping")
            run.cancelled = True
            return False
        return True

    async def _await_resume(self, run: SessionRun) -> ScrapingSession:
        logger.info(f"Session {run.session_id} paused, waiting for resume")
        run.progress.status = ProgressStage.PAUSED
        run.progress.message = "Scraping paused"
        await asyncio.to_thread(
            self.session_store.update,
            run.session_id, run.user_id, {"progress": run.progress}, only_if=[SessionStatus.PAUSED]
        )

        waited = 0.0
        session = await asyncio.to_thread(self.session_store.get, run.session_id, run.user_id)
        while session.status == SessionStatus.PAUSED:
            if waited >= self.config.pause_timeout:
                message = f"Session paused for more than {int(self.config.pause_timeout)} seconds"
                run.errors.append(message)
                await self._fail(run, message)
                return await asyncio.to_thread(self.session_store.get, run.session_id, run.user_id)
            await self.sleep(self.config.pause_poll_interval)
            waited += self.config.pause_poll_interval
            session = await asyncio.to_thread(self.session_store.get, run.session_id, run.user_id)

        if session.status == SessionStatus.RUNNING:
            logger.info(f"Session {run.session_id} resumed")
            run.progress.status = ProgressStage.EXTRACTING
            run.progress.message = "Scraping resumed"
        return session

    async def _persist_progress(self, run: SessionRun) -> bool:
        """
        Write the progress snapshot without touching status.

        Returns:
            False when the session left running/paused (cancelled)
        """
        updated = await asyncio.to_thread(
            self.session_store.update,
            run.session_id, run.user_id, {"progress": run.progress}, only_if=ACTIVE_STATUSES
        )
        if updated is None:
            run.cancelled = True
            return False
        return True

    async def _sleep_ms(self, ms: int) -> None:
        await self.sleep(ms / 1000)

    async def _emit(self, run: SessionRun, update_type: UpdateType, data: Dict[str, Any]) -> None:
        update = ScrapingUpdate(session_id=run.session_id, type=update_type, data=data)
        try:
            result = self.update_callback(update)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Update callback failed for session {run.session_id}: {e}")


# ============================================================================
# Convenience Functions
# ============================================================================

def create_orchestrator(
    session_store: SessionStore,
    job_store: JobStore,
    settings: Optional[Settings] = None,
    **kwargs: Any,
) -> ScrapeOrchestrator:
    """Build an orchestrator that exports to Google Sheets when enabled."""
    from jobscout.services.exporter import GoogleSheetsSink

    settings = settings or get_settings()
    exporter = None
    if settings.scraper.export_to_sheets:
        exporter = SheetExporter(GoogleSheetsSink(settings.google_sheets), settings.google_sheets)
    return ScrapeOrchestrator(session_store, job_store, exporter=exporter, settings=settings, **kwargs)
