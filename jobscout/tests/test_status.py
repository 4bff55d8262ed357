"""
Tests for the session status service and live-update subscriptions.

Run with: python -m pytest jobscout/tests/test_status.py -v
"""

import asyncio
import itertools
import threading
from datetime import datetime, timedelta

import pytest

from jobscout.core.errors import InvalidSessionTransition, SessionNotFoundError, JobNotFoundError
from jobscout.core.schemas import (
    ScrapingSession, ScrapingProgress, SearchParams, SessionStatus, ProgressStage,
    ApplicationStatus, RawJobCard
)
from jobscout.services.normalizer import build_job_record
from jobscout.services.status import (
    SessionStatusService, ExportUnavailableError, NothingToExportError, CANCEL_MESSAGE
)

from conftest import USER_ID


NOW = datetime(2026, 3, 1, 12, 0, 0)
PARAMS = SearchParams(keywords=["python"], locations=["Jakarta"])


@pytest.fixture
def service(session_store, job_store, status_service):
    status_service.clock = lambda: NOW
    return status_service


def add_session(session_store, session_id="s1", status=SessionStatus.RUNNING, user_id=USER_ID, **progress):
    progress.setdefault("start_time", NOW - timedelta(seconds=30))
    session = ScrapingSession(
        id=session_id,
        user_id=user_id,
        search_params=PARAMS,
        status=status,
        progress=ScrapingProgress(**progress),
        created_at=NOW,
    )
    session_store.create(session)
    return session


def add_jobs(job_store, session_id="s1", count=3, user_id=USER_ID):
    jobs = [
        build_job_record(
            RawJobCard(
                index=i,
                title=f"Engineer {i}",
                company="Acme",
                location="Jakarta",
                job_url=f"https://www.linkedin.com/jobs/view/{session_id}-{i}/",
            ),
            session_id=session_id,
            user_id=user_id,
        )
        for i in range(count)
    ]
    job_store.bulk_insert(jobs)
    return jobs


# =============================================================================
# Reads and derived fields
# =============================================================================

def test_status_derives_percentage_and_eta(service, session_store):
    add_session(session_store, current_page=3, total_pages=10)

    view = service.get_status("s1", USER_ID)

    assert view.progress.progress_percentage == 30
    assert view.progress.estimated_time_remaining == 70


def test_percentage_rounds_half_up(service, session_store):
    add_session(session_store, current_page=1, total_pages=8)
    assert service.get_status("s1", USER_ID).progress.progress_percentage == 13


def test_percentage_zero_without_total_pages(service, session_store):
    add_session(session_store, status=SessionStatus.PENDING)

    view = service.get_status("s1", USER_ID)

    assert view.progress.progress_percentage == 0
    assert view.progress.estimated_time_remaining is None


def test_eta_only_while_running(service, session_store):
    add_session(session_store, status=SessionStatus.PAUSED, current_page=2, total_pages=4)

    view = service.get_status("s1", USER_ID)

    assert view.progress.progress_percentage == 50
    assert view.progress.estimated_time_remaining is None


def test_total_jobs_falls_back_to_stored_count(service, session_store, job_store):
    add_session(session_store, status=SessionStatus.COMPLETED)
    add_jobs(job_store, count=4)

    assert service.get_status("s1", USER_ID).total_jobs_found == 4


def test_other_users_session_is_not_found(service, session_store):
    add_session(session_store)

    with pytest.raises(SessionNotFoundError):
        service.get_status("s1", "someone-else")
    with pytest.raises(SessionNotFoundError):
        service.list_jobs("s1", "someone-else")


def test_list_sessions_newest_first(service, session_store):
    add_session(session_store, "old")
    newer = ScrapingSession(id="new", user_id=USER_ID, search_params=PARAMS, created_at=NOW + timedelta(hours=1))
    session_store.create(newer)
    add_session(session_store, "foreign", user_id="someone-else")

    assert [view.id for view in service.list_sessions(USER_ID)] == ["new", "old"]


# =============================================================================
# Progress reports
# =============================================================================

def test_report_progress_starts_pending_session(service, session_store):
    add_session(session_store, status=SessionStatus.PENDING)

    view = service.report_progress("s1", USER_ID, ScrapingProgress(
        current_page=1, total_pages=4, status=ProgressStage.EXTRACTING, message="page 1"
    ))

    assert view.status == SessionStatus.RUNNING
    assert view.started_at == NOW
    assert view.progress.message == "page 1"
    assert view.progress.progress_percentage == 25


def test_report_progress_completion(service, session_store):
    add_session(session_store, current_page=4, total_pages=5)

    view = service.report_progress("s1", USER_ID, ScrapingProgress(
        current_page=5, total_pages=5, jobs_found=42, status=ProgressStage.COMPLETED
    ))

    assert view.status == SessionStatus.COMPLETED
    assert view.completed_at == NOW
    assert view.total_jobs_found == 42
    assert view.progress.progress_percentage == 100


def test_report_progress_rejects_terminal_session(service, session_store):
    add_session(session_store, status=SessionStatus.COMPLETED)

    with pytest.raises(InvalidSessionTransition, match="already completed"):
        service.report_progress("s1", USER_ID, ScrapingProgress(current_page=1, total_pages=1))


def test_report_progress_rejects_going_backwards(service, session_store):
    add_session(session_store, current_page=3, total_pages=5)

    with pytest.raises(InvalidSessionTransition, match="cannot move back"):
        service.report_progress("s1", USER_ID, ScrapingProgress(current_page=2, total_pages=5))

    assert session_store.get("s1", USER_ID).progress.current_page == 3


def test_report_progress_rejects_completing_paused_session(service, session_store):
    add_session(session_store, status=SessionStatus.PAUSED, current_page=2, total_pages=2)

    with pytest.raises(InvalidSessionTransition):
        service.report_progress("s1", USER_ID, ScrapingProgress(
            current_page=2, total_pages=2, status=ProgressStage.COMPLETED
        ))


# =============================================================================
# Commands
# =============================================================================

def test_pause_and_resume(service, session_store):
    add_session(session_store, current_page=2, total_pages=5)

    paused = service.pause("s1", USER_ID)
    assert paused.status == SessionStatus.PAUSED
    assert paused.progress.status == ProgressStage.PAUSED

    resumed = service.resume("s1", USER_ID)
    assert resumed.status == SessionStatus.RUNNING
    assert resumed.progress.status == ProgressStage.EXTRACTING
    assert resumed.progress.current_page == 2


def test_pause_requires_running(service, session_store):
    add_session(session_store, status=SessionStatus.PENDING)

    with pytest.raises(InvalidSessionTransition, match="Can only pause running sessions"):
        service.pause("s1", USER_ID)
    with pytest.raises(InvalidSessionTransition, match="Can only resume paused sessions"):
        service.resume("s1", USER_ID)


@pytest.mark.parametrize("status", [SessionStatus.PENDING, SessionStatus.RUNNING, SessionStatus.PAUSED])
def test_cancel_open_session(service, session_store, status):
    add_session(session_store, status=status)

    view = service.cancel("s1", USER_ID)

    assert view.status == SessionStatus.FAILED
    assert view.error_message == CANCEL_MESSAGE
    assert view.progress.message == CANCEL_MESSAGE
    assert view.progress.status == ProgressStage.FAILED
    assert view.completed_at == NOW


def test_cancel_finished_session_rejected(service, session_store):
    add_session(session_store, status=SessionStatus.COMPLETED)

    with pytest.raises(InvalidSessionTransition):
        service.cancel("s1", USER_ID)
    assert session_store.get("s1", USER_ID).status == SessionStatus.COMPLETED


def test_retry_source_only_for_failed(service, session_store):
    add_session(session_store, "failed", status=SessionStatus.FAILED)
    add_session(session_store, "running")

    assert service.retry_source("failed", USER_ID).search_params == PARAMS
    with pytest.raises(InvalidSessionTransition, match="Can only retry failed sessions"):
        service.retry_source("running", USER_ID)


# =============================================================================
# Jobs, export and retention
# =============================================================================

def test_update_job_status(service, session_store, job_store):
    add_session(session_store, status=SessionStatus.COMPLETED)
    job = add_jobs(job_store)[0]

    updated = service.update_job_status(job.id, USER_ID, ApplicationStatus.APPLIED, notes="sent CV")

    assert updated.application_status == ApplicationStatus.APPLIED
    assert updated.notes == "sent CV"
    assert [j.id for j in service.list_user_jobs(USER_ID, ApplicationStatus.APPLIED)] == [job.id]
    with pytest.raises(JobNotFoundError):
        service.update_job_status(job.id, "someone-else", ApplicationStatus.REJECTED)


def test_delete_job_is_owner_scoped(service, session_store, job_store):
    add_session(session_store, status=SessionStatus.COMPLETED)
    first, second, third = add_jobs(job_store)

    with pytest.raises(JobNotFoundError):
        service.delete_job(first.id, "someone-else")
    service.delete_job(first.id, USER_ID)

    assert sorted(j.id for j in service.list_jobs("s1", USER_ID)) == sorted([second.id, third.id])
    with pytest.raises(JobNotFoundError):
        service.delete_job(first.id, USER_ID)


def test_export_jobs_for_download(service, session_store, job_store):
    add_session(session_store, status=SessionStatus.COMPLETED)
    add_session(session_store, "empty", status=SessionStatus.COMPLETED)
    add_jobs(job_store, count=2)

    assert len(service.export_jobs("s1", USER_ID)) == 2
    with pytest.raises(NothingToExportError):
        service.export_jobs("empty", USER_ID)
    with pytest.raises(SessionNotFoundError):
        service.export_jobs("s1", "someone-else")


def test_export_session(service, session_store, job_store, sink):
    add_session(session_store, status=SessionStatus.COMPLETED)
    add_jobs(job_store, count=2)

    url = service.export_session("s1", USER_ID)

    assert url == "memory://sheets/sheet-1"
    assert len(sink.sheets["sheet-1"].rows) == 3
    assert session_store.get("s1", USER_ID).google_sheets_url == url


def test_export_session_without_jobs(service, session_store):
    add_session(session_store, status=SessionStatus.COMPLETED)

    with pytest.raises(NothingToExportError):
        service.export_session("s1", USER_ID)


def test_export_session_without_exporter(session_store, job_store, settings):
    add_session(session_store, status=SessionStatus.COMPLETED)
    add_jobs(job_store)
    service = SessionStatusService(session_store, job_store, settings=settings)

    with pytest.raises(ExportUnavailableError):
        service.export_session("s1", USER_ID)


def test_delete_session_cascades_to_jobs(service, session_store, job_store):
    add_session(session_store, status=SessionStatus.COMPLETED)
    add_jobs(job_store)

    service.delete_session("s1", USER_ID)

    assert job_store.count_by_session("s1") == 0
    with pytest.raises(SessionNotFoundError):
        service.get_status("s1", USER_ID)


def test_delete_running_session_rejected(service, session_store):
    add_session(session_store)

    with pytest.raises(InvalidSessionTransition, match="Cancel the session before deleting it"):
        service.delete_session("s1", USER_ID)


def test_cleanup_old_sessions(service, session_store):
    old = ScrapingSession(id="old", user_id=USER_ID, search_params=PARAMS, created_at=NOW - timedelta(days=40))
    session_store.create(old)
    add_session(session_store, "recent", status=SessionStatus.COMPLETED)

    assert service.cleanup_old_sessions(USER_ID, older_than_days=30) == 1
    assert [view.id for view in service.list_sessions(USER_ID)] == ["recent"]


# =============================================================================
# Subscriptions
# =============================================================================

async def collect(subscription):
    return [event async for event in subscription.events()]


def test_subscribe_unknown_session(service):
    with pytest.raises(SessionNotFoundError):
        service.subscribe("missing", USER_ID)


def test_subscription_ends_on_terminal_status(service, session_store):
    add_session(session_store, status=SessionStatus.COMPLETED)

    async def scenario():
        subscription = service.subscribe("s1", USER_ID)
        return subscription, await collect(subscription)

    subscription, events = asyncio.run(scenario())

    assert [event["type"] for event in events] == ["status"]
    assert events[0]["data"]["status"] == "completed"
    assert subscription.close_reason == "terminal"


def test_subscription_forwards_updates_until_completion(service, session_store):
    add_session(session_store, current_page=1, total_pages=2)

    async def finish_on_poll(seconds):
        session_store.update("s1", USER_ID, {"status": SessionStatus.COMPLETED})

    async def scenario():
        subscription = service.subscribe("s1", USER_ID, sleep=finish_on_poll)
        return subscription, await collect(subscription)

    subscription, events = asyncio.run(scenario())

    assert [event["type"] for event in events] == ["status", "update"]
    assert events[0]["data"]["status"] == "running"
    assert events[1]["data"]["status"] == "completed"
    assert subscription.close_reason == "terminal"


def test_subscription_closes_after_max_lifetime(service, session_store):
    add_session(session_store)
    ticks = itertools.count(step=10)

    async def no_sleep(seconds):
        pass

    async def scenario():
        subscription = service.subscribe(
            "s1", USER_ID, max_lifetime=5, sleep=no_sleep, clock=lambda: next(ticks)
        )
        return subscription, await collect(subscription)

    subscription, events = asyncio.run(scenario())

    assert [event["type"] for event in events] == ["status"]
    assert subscription.close_reason == "timeout"


def test_subscription_reports_read_errors(service, session_store):
    add_session(session_store)

    async def delete_on_poll(seconds):
        session_store.delete("s1", USER_ID)

    async def scenario():
        subscription = service.subscribe("s1", USER_ID, sleep=delete_on_poll)
        return subscription, await collect(subscription)

    subscription, events = asyncio.run(scenario())

    assert [event["type"] for event in events] == ["status", "error"]
    assert "not found" in events[1]["message"]
    assert subscription.close_reason == "error"


def test_subscription_close_cancels_task(service, session_store):
    add_session(session_store)

    async def scenario():
        subscription = service.subscribe("s1", USER_ID, poll_interval=0.01)
        async with subscription:
            first = await subscription.queue.get()
        return subscription, first

    subscription, first = asyncio.run(scenario())

    assert first["type"] == "status"
    assert subscription.done
    assert subscription.close_reason == "closed"


def test_subscription_reads_off_the_event_loop(service, session_store, monkeypatch):
    add_session(session_store, status=SessionStatus.COMPLETED)
    loop_thread = threading.get_ident()
    threads = []
    original = service.get_status

    def recording_get_status(session_id, user_id):
        threads.append(threading.get_ident())
        return original(session_id, user_id)

    monkeypatch.setattr(service, "get_status", recording_get_status)

    async def scenario():
        return await collect(service.subscribe("s1", USER_ID))

    events = asyncio.run(scenario())

    assert [event["type"] for event in events] == ["status"]
    assert threads and loop_thread not in threads
