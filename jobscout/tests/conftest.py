"""Shared fixtures: in-memory stores and a fast scripted orchestrator."""

import asyncio
import random

import pytest

from jobscout.agents.anti_blocking.anti_blocking import AntiBlockingEngine
from jobscout.agents.navigator.scripted_browser import ScriptedBrowser, make_card
from jobscout.core.config import Settings, ScraperSettings, AntiBlockingSettings, StatusSettings
from jobscout.core.schemas import SearchParams
from jobscout.services.exporter import SheetExporter, InMemorySheetSink
from jobscout.services.orchestrator import ScrapeOrchestrator
from jobscout.services.status import SessionStatusService
from jobscout.services.stores import InMemoryJobStore, InMemorySessionStore


USER_ID = "user-1"


def result_pages(count: int, per_page: int = 5, offset: int = 0):
    """Result pages with unique job ids across pages."""
    return [
        [
            make_card(
                1000 + (offset + page) * 100 + i,
                title=f"Python Developer {page}.{i}",
                company=f"Company {i}",
                location="Jakarta, Indonesia" if i % 2 == 0 else "Singapore",
                easy_apply=i % 3 == 0,
                promoted=i == 0,
            )
            for i in range(per_page)
        ]
        for page in range(1, count + 1)
    ]


class RecordingSleep:
    """Instant replacement for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def pages():
    return result_pages


@pytest.fixture
def search_params():
    return SearchParams(keywords=["python developer"], locations=["Jakarta"])


@pytest.fixture
def settings():
    return Settings(
        scraper=ScraperSettings(
            delay_between_pages_ms=100,
            page_jitter_ms=0,
            pause_poll_interval=0.01,
            pause_timeout=1.0,
        ),
        anti_blocking=AntiBlockingSettings(min_delay_ms=10, max_delay_ms=20),
        status=StatusSettings(poll_interval=0.01, max_lifetime=5.0),
    )


@pytest.fixture
def job_store():
    return InMemoryJobStore()


@pytest.fixture
def session_store(job_store):
    return InMemorySessionStore(job_store)


@pytest.fixture
def sink():
    return InMemorySheetSink()


@pytest.fixture
def status_service(session_store, job_store, sink, settings):
    exporter = SheetExporter(sink, settings.google_sheets)
    return SessionStatusService(session_store, job_store, exporter=exporter, settings=settings)


@pytest.fixture
def make_orchestrator(session_store, job_store, sink, settings):
    """
    Factory for orchestrators wired to a ScriptedBrowser.

    Returns (orchestrator, browser, sleep, updates).
    """

    def factory(browser: ScriptedBrowser, exporter_sink=None, **kwargs):
        sleep = kwargs.pop("sleep", None) or RecordingSleep()
        run_settings = kwargs.pop("settings", settings)
        updates = []

        async def browser_factory():
            return browser

        orchestrator = ScrapeOrchestrator(
            session_store,
            job_store,
            browser_factory=browser_factory,
            exporter=SheetExporter(exporter_sink or sink, settings.google_sheets),
            settings=run_settings,
            anti_blocking_factory=lambda: AntiBlockingEngine(
                run_settings.anti_blocking, rng=random.Random(11)
            ),
            sleep=sleep,
            update_callback=kwargs.pop("update_callback", updates.append),
            **kwargs,
        )
        return orchestrator, browser, sleep, updates

    return factory
