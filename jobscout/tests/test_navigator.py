"""
Tests for the LinkedIn navigator against a scripted results page.

Run with: python -m pytest jobscout/tests/test_navigator.py -v
"""

import asyncio
import random

import pytest

from jobscout.agents.anti_blocking.anti_blocking import AntiBlockingEngine
from jobscout.agents.navigator.navigator import JobSearchNavigator, _parse_page_number
from jobscout.agents.navigator.scripted_browser import ScriptedBrowser, make_card
from jobscout.agents.navigator.search_url import (
    build_search_url, with_page_offset, page_from_offset, strip_tracking
)
from jobscout.core.config import AntiBlockingSettings
from jobscout.core.errors import ScrapingError, ErrorKind
from jobscout.core.schemas import SearchParams, JobType, DatePosted, ExperienceLevel


SEARCH_URL = build_search_url(SearchParams(keywords=["python"], locations=["Jakarta"]))


def pages(count: int, per_page: int = 3):
    return [
        [make_card(page * 100 + i, title=f"Job {page}-{i}") for i in range(per_page)]
        for page in range(1, count + 1)
    ]


def make_navigator(browser: ScriptedBrowser) -> JobSearchNavigator:
    engine = AntiBlockingEngine(
        AntiBlockingSettings(min_delay_ms=10, max_delay_ms=20),
        rng=random.Random(3),
    )
    return JobSearchNavigator(browser, engine)


def run(coro):
    return asyncio.run(coro)


# =============================================================================
# Search URL
# =============================================================================

def test_build_search_url_maps_filters():
    params = SearchParams(
        keywords=["python", "django"],
        locations=["Jakarta", "Bandung"],
        experience_level=ExperienceLevel.SENIOR,
        job_types=[JobType.FULL_TIME, JobType.CONTRACT],
        date_posted=DatePosted.PAST_WEEK,
        easy_apply=True,
        remote_work=True,
    )
    url = build_search_url(params)

    assert url.startswith("https://www.linkedin.com/jobs/search/?")
    assert "keywords=python+django" in url
    assert "location=Jakarta" in url and "Bandung" not in url
    assert "f_E=4" in url
    assert "f_JT=F%2CC" in url
    assert "f_TPR=r604800" in url
    assert "f_LF=f_AL" in url
    assert "f_WT=2" in url
    assert build_search_url(params) == url


def test_page_offset_helpers():
    url = with_page_offset(SEARCH_URL, 3)
    assert "start=50" in url
    assert page_from_offset(url) == 3
    assert page_from_offset(with_page_offset(url, 1)) == 1
    assert page_from_offset(SEARCH_URL) == 1


def test_strip_tracking():
    assert strip_tracking("https://www.linkedin.com/jobs/view/42/?refId=a&trk=b#x") == \
        "https://www.linkedin.com/jobs/view/42/"


def test_parse_page_number():
    assert _parse_page_number("40") == 40
    assert _parse_page_number("Page 1 of 12") == 12
    assert _parse_page_number("") is None
    assert _parse_page_number("next") is None


# =============================================================================
# Search entry
# =============================================================================

def test_navigate_to_search_applies_fingerprint():
    browser = ScriptedBrowser(pages(2))
    navigator = make_navigator(browser)

    run(navigator.navigate_to_search(SEARCH_URL))

    assert len(browser.fingerprints) == 1
    assert browser.navigations == [SEARCH_URL]
    assert navigator.navigation_state.current_url == SEARCH_URL
    assert navigator.navigation_state.search_filters_applied
    assert navigator.anti_blocking.request_count == 1


def test_navigate_to_search_rejects_non_jobs_page():
    browser = ScriptedBrowser(pages(1), landing_url="https://www.linkedin.com/feed/")
    navigator = make_navigator(browser)

    with pytest.raises(ScrapingError) as exc:
        run(navigator.navigate_to_search(SEARCH_URL))

    assert exc.value.kind == ErrorKind.NAVIGATION
    assert not exc.value.retryable
    assert "Not on LinkedIn jobs page" in exc.value.message


def test_navigate_to_search_detects_login_wall():
    browser = ScriptedBrowser(pages(1), blocked_pages={1: "authwall"})
    navigator = make_navigator(browser)

    with pytest.raises(ScrapingError) as exc:
        run(navigator.navigate_to_search(SEARCH_URL))

    assert exc.value.kind == ErrorKind.BLOCKED
    assert exc.value.is_critical
    assert not exc.value.retryable


@pytest.mark.parametrize("status_codes,slow_pages,kind", [
    ({1: 999}, {}, ErrorKind.BLOCKED),
    ({1: 429}, {}, ErrorKind.RATE_LIMIT),
    ({}, {1: 12000}, ErrorKind.RATE_LIMIT),
    ({1: 500}, {}, ErrorKind.NETWORK),
])
def test_navigate_to_search_classifies_responses(status_codes, slow_pages, kind):
    browser = ScriptedBrowser(pages(1), status_codes=status_codes, slow_pages=slow_pages)
    navigator = make_navigator(browser)

    with pytest.raises(ScrapingError) as exc:
        run(navigator.navigate_to_search(SEARCH_URL))

    assert exc.value.kind == kind


# =============================================================================
# Pagination
# =============================================================================

def test_discover_total_pages_reads_pagination():
    browser = ScriptedBrowser(pages(3), reported_total_pages=47)
    navigator = make_navigator(browser)

    async def scenario():
        await navigator.navigate_to_search(SEARCH_URL)
        return await navigator.discover_total_pages()

    assert run(scenario()) == 47
    assert navigator.navigation_state.total_pages == 47


def test_discover_total_pages_defaults_to_one_without_pagination():
    browser = ScriptedBrowser(pages(1))
    navigator = make_navigator(browser)

    async def scenario():
        await navigator.navigate_to_search(SEARCH_URL)
        return await navigator.discover_total_pages()

    assert run(scenario()) == 1


def test_go_to_page_clicks_numbered_button():
    browser = ScriptedBrowser(pages(5))
    navigator = make_navigator(browser)

    async def scenario():
        await navigator.navigate_to_search(SEARCH_URL)
        await navigator.go_to_page(3)

    run(scenario())

    assert browser.loaded_pages == [1, 3]
    assert browser.navigations == [SEARCH_URL]
    assert browser.clicks == [(220.0, 650.0)]
    assert browser.mouse_path[-1] == (220.0, 650.0)
    assert len(browser.mouse_path) >= 3
    assert navigator.navigation_state.current_page == 3
    assert page_from_offset(navigator.navigation_state.current_url) == 3


def test_go_to_page_is_idempotent():
    browser = ScriptedBrowser(pages(3))
    navigator = make_navigator(browser)

    async def scenario():
        await navigator.navigate_to_search(SEARCH_URL)
        await navigator.go_to_page(2)
        await navigator.go_to_page(2)

    run(scenario())

    assert browser.loaded_pages == [1, 2]
    assert len(browser.clicks) == 1


def test_go_to_page_falls_back_to_url_offset():
    browser = ScriptedBrowser(pages(12), visible_page_buttons=9)
    navigator = make_navigator(browser)

    async def scenario():
        await navigator.navigate_to_search(SEARCH_URL)
        await navigator.go_to_page(12)

    run(scenario())

    assert browser.clicks == []
    assert browser.navigations[-1] == with_page_offset(SEARCH_URL, 12)
    assert browser.loaded_pages == [1, 12]
    assert navigator.navigation_state.current_page == 12


def test_go_to_page_detects_captcha():
    browser = ScriptedBrowser(pages(3), blocked_pages={2: "captcha"})
    navigator = make_navigator(browser)

    async def scenario():
        await navigator.navigate_to_search(SEARCH_URL)
        await navigator.go_to_page(2)

    with pytest.raises(ScrapingError) as exc:
        run(scenario())

    assert exc.value.kind == ErrorKind.BLOCKED
    assert exc.value.page == 2
    assert navigator.navigation_state.current_page == 1


def test_go_to_page_rate_limited_through_url():
    browser = ScriptedBrowser(pages(12), status_codes={11: 429})
    navigator = make_navigator(browser)

    async def scenario():
        await navigator.navigate_to_search(SEARCH_URL)
        await navigator.go_to_page(11)

    with pytest.raises(ScrapingError) as exc:
        run(scenario())

    assert exc.value.kind == ErrorKind.RATE_LIMIT
    assert exc.value.page == 11
    assert exc.value.retryable


def test_advance_to_next_page_until_last():
    browser = ScriptedBrowser(pages(3))
    navigator = make_navigator(browser)

    async def scenario():
        await navigator.navigate_to_search(SEARCH_URL)
        moves = []
        while await navigator.advance_to_next_page():
            moves.append(navigator.navigation_state.current_page)
        return moves

    assert run(scenario()) == [2, 3]
    assert not navigator.navigation_state.has_next_page


# =============================================================================
# Extraction
# =============================================================================

def test_extract_job_cards_reads_fields():
    browser = ScriptedBrowser([[
        make_card(11, title="Data Engineer", company="Gojek", location="Jakarta, Indonesia",
                  posted_time="1 day ago", easy_apply=True, promoted=True),
        make_card(12, title="ML Engineer", company="Tokopedia"),
    ]])
    navigator = make_navigator(browser)

    async def scenario():
        await navigator.navigate_to_search(SEARCH_URL)
        return await navigator.extract_job_cards()

    cards = run(scenario())

    assert len(cards) == 2
    first = cards[0]
    assert first.index == 0
    assert first.title == "Data Engineer"
    assert first.company == "Gojek"
    assert first.location == "Jakarta, Indonesia"
    assert first.posted_time == "1 day ago"
    assert first.job_url == "https://www.linkedin.com/jobs/view/11/"
    assert first.company_logo_url == "https://media.licdn.com/logo/11.png"
    assert first.is_easy_apply and first.is_promoted
    assert not cards[1].is_easy_apply
    assert navigator.navigation_state.last_job_processed == 2


def test_extract_job_cards_resolves_relative_urls():
    browser = ScriptedBrowser([[make_card(5, url="/jobs/view/5/?trk=x")]])
    navigator = make_navigator(browser)

    async def scenario():
        await navigator.navigate_to_search(SEARCH_URL)
        return await navigator.extract_job_cards()

    assert run(scenario())[0].job_url == "https://www.linkedin.com/jobs/view/5/"


def test_extract_job_cards_skips_malformed_cards():
    browser = ScriptedBrowser([[
        make_card(1),
        make_card(2, broken=True),
        make_card(3, company=""),
        make_card(4, url=None),
        make_card(5),
    ]])
    navigator = make_navigator(browser)

    async def scenario():
        await navigator.navigate_to_search(SEARCH_URL)
        return await navigator.extract_job_cards()

    cards = run(scenario())
    assert [card.job_url for card in cards] == [
        "https://www.linkedin.com/jobs/view/1/",
        "https://www.linkedin.com/jobs/view/5/",
    ]
    assert [card.index for card in cards] == [0, 4]


def test_extract_job_cards_without_cards_is_retryable():
    browser = ScriptedBrowser([[]])
    navigator = make_navigator(browser)

    async def scenario():
        await navigator.navigate_to_search(SEARCH_URL)
        await navigator.extract_job_cards()

    with pytest.raises(ScrapingError) as exc:
        run(scenario())

    assert exc.value.kind == ErrorKind.EXTRACTION
    assert exc.value.retryable
    assert exc.value.page == 1


# =============================================================================
# Identity
# =============================================================================

def test_rotate_identity_reloads_current_page():
    browser = ScriptedBrowser(pages(3))
    navigator = make_navigator(browser)

    async def scenario():
        await navigator.navigate_to_search(SEARCH_URL)
        await navigator.go_to_page(2)
        await navigator.rotate_identity()

    run(scenario())

    assert len(browser.fingerprints) == 2
    assert browser.fingerprints[0].user_agent != browser.fingerprints[1].user_agent
    assert browser.loaded_pages == [1, 2, 2]
    assert navigator.anti_blocking.rotations == 1
    assert navigator.anti_blocking.request_count == 1


def test_scroll_page_uses_engine_amount():
    browser = ScriptedBrowser(pages(1))
    navigator = make_navigator(browser)

    run(navigator.scroll_page())

    assert 300 <= browser.scrolled_px < 800


def test_reset_navigation_state():
    browser = ScriptedBrowser(pages(2))
    navigator = make_navigator(browser)

    async def scenario():
        await navigator.navigate_to_search(SEARCH_URL)
        await navigator.go_to_page(2)

    run(scenario())
    navigator.reset_navigation_state()

    state = navigator.navigation_state
    assert state.current_page == 1
    assert state.current_url == ""
