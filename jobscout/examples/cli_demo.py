"""
JobScout CLI Demo

Runs scraping sessions end to end against a scripted LinkedIn results page,
so no browser or Google account is needed.
Run with: python -m jobscout.examples.cli_demo [scenario]

Scenarios:
1. full     - Three result pages, exported to an in-memory sheet
2. blocked  - Login wall on page 2, session ends with partial results
3. paused   - Session paused and resumed between pages
"""

import argparse
import asyncio
import logging

from jobscout.agents.navigator.scripted_browser import ScriptedBrowser, make_card
from jobscout.core.config import Settings, ScraperSettings
from jobscout.core.schemas import SearchParams, ScrapingResult, ScrapingUpdate, UpdateType
from jobscout.services.exporter import SheetExporter, InMemorySheetSink
from jobscout.services.orchestrator import ScrapeOrchestrator
from jobscout.services.status import SessionStatusService
from jobscout.services.stores import InMemoryJobStore, InMemorySessionStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

USER_ID = "demo_user"

SEARCH = SearchParams(
    keywords=["python developer"],
    locations=["Jakarta"],
    remote_work=True,
)

CITIES = ["Jakarta, Indonesia", "Bandung, Indonesia", "Singapore"]


def demo_pages(count: int, per_page: int = 8):
    """Fake result pages with a mix of cities, promoted and Easy Apply cards."""
    pages = []
    for page in range(count):
        cards = []
        for i in range(per_page):
            job_id = 4000000 + page * 100 + i
            cards.append(make_card(
                job_id,
                title=f"Python Developer {page + 1}.{i + 1}",
                company=f"Company {i % 5}",
                location=CITIES[i % len(CITIES)],
                easy_apply=i % 2 == 0,
                promoted=i % 4 == 0,
            ))
        pages.append(cards)
    return pages


async def short_wait(seconds: float) -> None:
    await asyncio.sleep(min(seconds, 0.01))


def demo_settings() -> Settings:
    return Settings(scraper=ScraperSettings(
        delay_between_pages_ms=0,
        page_jitter_ms=0,
        pause_poll_interval=0.01,
    ))


def print_update(update: ScrapingUpdate):
    """Pretty print a live update."""
    colors = {
        UpdateType.PAGE_COMPLETED: '\033[92m',  # Green
        UpdateType.ERROR: '\033[93m',  # Yellow
        UpdateType.FAILED: '\033[91m',  # Red
        UpdateType.COMPLETED: '\033[94m',  # Blue
    }
    reset = '\033[0m'
    color = colors.get(update.type, '')
    print(f"{color}[{update.type.value.upper()}]{reset} {update.data}")


def print_result(result: ScrapingResult, sink: InMemorySheetSink):
    print("\n" + "=" * 60)
    print(f"Success:      {result.success}")
    print(f"Jobs scraped: {result.total_jobs_scraped}")
    print(f"Aborted:      {result.aborted}")
    if result.google_sheets_url:
        sheet = sink.sheets[result.google_sheets_url.rsplit("/", 1)[-1]]
        print(f"Sheet:        {result.google_sheets_url} ({len(sheet.rows) - 1} rows)")
    for error in result.errors:
        print(f"Error:        {error}")

    print("\nTop matches:")
    for job in sorted(result.jobs_found, key=lambda j: j.match_score, reverse=True)[:5]:
        print(f"  {job.match_score:3d}%  {job.title_short} @ {job.company} ({job.location})")
    print("=" * 60)


def build(browser: ScriptedBrowser):
    settings = demo_settings()
    job_store = InMemoryJobStore()
    session_store = InMemorySessionStore(job_store)
    sink = InMemorySheetSink()

    async def browser_factory():
        return browser

    orchestrator = ScrapeOrchestrator(
        session_store,
        job_store,
        browser_factory=browser_factory,
        exporter=SheetExporter(sink, settings.google_sheets),
        settings=settings,
        sleep=short_wait,
        update_callback=print_update,
    )
    status = SessionStatusService(session_store, job_store, settings=settings)
    return orchestrator, status, sink


async def run_full_demo():
    """Three clean pages, exported at the end."""
    orchestrator, _, sink = build(ScriptedBrowser(demo_pages(3)))
    result = await orchestrator.scrape_jobs(SEARCH, USER_ID)
    print_result(result, sink)


async def run_blocked_demo():
    """A login wall on page 2 stops the page loop."""
    browser = ScriptedBrowser(demo_pages(4), blocked_pages={2: "authwall"})
    orchestrator, _, sink = build(browser)
    result = await orchestrator.scrape_jobs(SEARCH, USER_ID)
    print_result(result, sink)


async def run_paused_demo():
    """Pause after the first page, resume shortly after."""
    orchestrator, status, sink = build(ScriptedBrowser(demo_pages(3)))
    session = orchestrator.create_session(SEARCH, USER_ID)

    async def on_update(update: ScrapingUpdate):
        print_update(update)
        if update.type == UpdateType.PAGE_COMPLETED and update.data["page"] == 1:
            view = status.pause(session.id, USER_ID)
            print(f"Paused at page {view.progress.current_page} ({view.progress.progress_percentage}%)")
            asyncio.get_running_loop().call_later(0.05, status.resume, session.id, USER_ID)

    orchestrator.update_callback = on_update
    result = await orchestrator.run_session(session)
    print_result(result, sink)

    view = status.get_status(session.id, USER_ID)
    print(f"Final status: {view.status.value} - {view.progress.message}")


DEMOS = {
    "full": run_full_demo,
    "blocked": run_blocked_demo,
    "paused": run_paused_demo,
}


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="JobScout scripted scraping demo")
    parser.add_argument("scenario", nargs="?", choices=sorted(DEMOS), default="full")
    args = parser.parse_args()

    print("\n" + "=" * 60)
    print(f"           JOBSCOUT DEMO - {args.scenario}")
    print("=" * 60)
    asyncio.run(DEMOS[args.scenario]())


if __name__ == "__main__":
    main()
