"""
Session Status Service

Read/command surface for scraping sessions, decoupled from the running
orchestrator: everything here works from the persisted session alone, so
the reader may live in another process than the page loop.

Includes the live-update subscription: a bounded poll-and-forward task
that closes itself on a terminal status or after its maximum lifetime.
"""

import asyncio
import logging
import math
import time
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any, Callable, AsyncIterator, Awaitable

from jobscout.core.config import Settings, get_settings
from jobscout.core.errors import JobScoutError, InvalidSessionTransition
from jobscout.core.schemas import (
    ScrapingSession, ScrapingProgress, ProgressView, SessionStatusView,
    ScrapedJob, SessionStatus, ProgressStage, ApplicationStatus,
    SheetExportConfig, utcnow
)
from jobscout.services.exporter import SheetExporter
from jobscout.services.state_machine import SessionStateMachine, SessionCommand
from jobscout.services.stores import SessionStore, JobStore

logger = logging.getLogger(__name__)


CANCEL_MESSAGE = "Scraping cancelled by user"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ExportUnavailableError(JobScoutError):
    """Export requested but no spreadsheet sink is configured."""


class NothingToExportError(JobScoutError):
    """Export requested for a session without jobs."""


class SessionStatusService:
    """
    Status reads, progress reports and pause/resume/cancel commands.

    Every operation is scoped to the requesting user.
    """

    def __init__(
        self,
        session_store: SessionStore,
        job_store: JobStore,
        exporter: Optional[SheetExporter] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_store = session_store
        self.job_store = job_store
        self.exporter = exporter
        self.settings = settings or get_settings()
        self.clock = clock

    # =========================================================================
    # Reads
    # =========================================================================

    def get_status(self, session_id: str, user_id: str) -> SessionStatusView:
        """
        Current session with read-time derived progress fields.

        Raises:
            SessionNotFoundError: missing or not owned by `user_id`
        """
        return self._view(self.session_store.get(session_id, user_id))

    def list_sessions(self, user_id: str) -> List[SessionStatusView]:
        return [self._view(session) for session in self.session_store.list_for_user(user_id)]

    def list_jobs(self, session_id: str, user_id: str) -> List[ScrapedJob]:
        self.session_store.get(session_id, user_id)
        return self.job_store.list_by_session(session_id, user_id)

    def list_user_jobs(
        self,
        user_id: str,
        application_status: Optional[ApplicationStatus] = None,
    ) -> List[ScrapedJob]:
        return self.job_store.list_for_user(user_id, application_status)

    def _view(self, session: ScrapingSession) -> SessionStatusView:
        progress = session.progress
        percentage = 0
        if progress.total_pages > 0:
            percentage = _round_half_up(progress.current_page / progress.total_pages * 100)

        remaining = None
        if session.status == SessionStatus.RUNNING and progress.current_page > 0 and progress.total_pages > 0:
            elapsed = (self.clock() - progress.start_time).total_seconds()
            per_page = elapsed / progress.current_page
            remaining = max(0, _round_half_up(per_page * (progress.total_pages - progress.current_page)))

        total_jobs = session.total_jobs_found or self.job_store.count_by_session(session.id)

        data = session.model_dump(exclude={"progress", "total_jobs_found"})
        return SessionStatusView(
            **data,
            progress=ProgressView(
                **progress.model_dump(),
                progress_percentage=percentage,
                estimated_time_remaining=remaining,
            ),
            total_jobs_found=total_jobs,
        )

    # =========================================================================
    # Progress reports
    # =========================================================================

    def report_progress(
        self,
        session_id: str,
        user_id: str,
        progress: ScrapingProgress,
    ) -> SessionStatusView:
        """
        Overwrite progress from an out-of-band scraper.

        Sets the session running, or completed (with completed_at and
        total_jobs_found) when the reported stage is `completed`.

        Raises:
            InvalidSessionTransition: terminal session, illegal status change,
                or a page number lower than the stored one
        """
        session = self.session_store.get(session_id, user_id)
        if session.status.is_terminal:
            raise InvalidSessionTransition(
                f"Session is already {session.status.value}",
                current=session.status,
            )

        completing = progress.status == ProgressStage.COMPLETED
        target = SessionStatus.COMPLETED if completing else SessionStatus.RUNNING
        SessionStateMachine.check_transition(session_id, session.status, target)

        if progress.current_page < session.progress.current_page:
            raise InvalidSessionTransition(
                f"Progress cannot move back from page {session.progress.current_page} "
                f"to {progress.current_page}",
                current=session.status,
            )

        fields: Dict[str, Any] = {"progress": progress, "status": target}
        if session.started_at is None:
            fields["started_at"] = self.clock()
        if completing:
            fields["completed_at"] = self.clock()
            fields["total_jobs_found"] = progress.jobs_found

        updated = self.session_store.update(session_id, user_id, fields, only_if=[session.status])
        if updated is None:
            raise InvalidSessionTransition("Session status changed concurrently, retry", current=session.status)
        return self._view(updated)

    # =========================================================================
    # Commands
    # =========================================================================

    def pause(self, session_id: str, user_id: str) -> SessionStatusView:
        return self._command(session_id, user_id, SessionCommand.PAUSE)

    def resume(self, session_id: str, user_id: str) -> SessionStatusView:
        return self._command(session_id, user_id, SessionCommand.RESUME)

    def cancel(self, session_id: str, user_id: str) -> SessionStatusView:
        """
        Move the session to failed with a cancellation message.

        Cooperative: a running page loop notices at its next page boundary.
        """
        return self._command(session_id, user_id, SessionCommand.CANCEL)

    def _command(self, session_id: str, user_id: str, command: SessionCommand) -> SessionStatusView:
        session = self.session_store.get(session_id, user_id)
        target = SessionStateMachine.apply_command(session_id, session.status, command)

        progress = session.progress.model_copy(deep=True)
        fields: Dict[str, Any] = {"status": target, "progress": progress}
        if command == SessionCommand.PAUSE:
            progress.status = ProgressStage.PAUSED
            progress.message = "Scraping paused by user"
        elif command == SessionCommand.RESUME:
            progress.status = ProgressStage.EXTRACTING
            progress.message = "Scraping resumed"
        else:
            progress.status = ProgressStage.FAILED
            progress.message = CANCEL_MESSAGE
            fields["error_message"] = CANCEL_MESSAGE
            fields["completed_at"] = self.clock()

        updated = self.session_store.update(session_id, user_id, fields, only_if=[session.status])
        if updated is None:
            raise InvalidSessionTransition("Session status changed concurrently, retry", current=session.status)
        return self._view(updated)

    def retry_source(self, session_id: str, user_id: str) -> ScrapingSession:
        """
        The failed session a retry is built from.

        Raises:
            InvalidSessionTransition: the session has not failed
        """
        session = self.session_store.get(session_id, user_id)
        if session.status != SessionStatus.FAILED:
            raise InvalidSessionTransition("Can only retry failed sessions", current=session.status)
        return session

    # =========================================================================
    # Jobs, export and retention
    # =========================================================================

    def update_job_status(
        self,
        job_id: str,
        user_id: str,
        status: ApplicationStatus,
        notes: Optional[str] = None,
    ) -> ScrapedJob:
        job = self.job_store.update_application_status(job_id, user_id, status, notes)
        logger.info(f"Job {job_id} application status -> {status.value}")
        return job

    def delete_job(self, job_id: str, user_id: str) -> None:
        self.job_store.delete_job(job_id, user_id)
        logger.info(f"Job {job_id} deleted by user {user_id}")

    def export_jobs(self, session_id: str, user_id: str) -> List[ScrapedJob]:
        """
        Stored jobs of a session for download.

        Raises:
            NothingToExportError: the session has no jobs
        """
        jobs = self.list_jobs(session_id, user_id)
        if not jobs:
            raise NothingToExportError(f"No jobs found for session {session_id}")
        return jobs

    def export_session(
        self,
        session_id: str,
        user_id: str,
        config: Optional[SheetExportConfig] = None,
    ) -> str:
        """
        Re-export a session's stored jobs and attach the sheet URL.

        Raises:
            ExportUnavailableError: no exporter configured
            NothingToExportError: the session has no jobs
        """
        if self.exporter is None:
            raise ExportUnavailableError("Spreadsheet export is not configured")
        jobs = self.export_jobs(session_id, user_id)
        url = self.exporter.export(jobs, config)
        self.session_store.update(session_id, user_id, {"google_sheets_url": url})
        return url

    def delete_session(self, session_id: str, user_id: str) -> None:
        """
        Delete a session and its jobs.

        Raises:
            InvalidSessionTransition: the session is still running or paused
        """
        session = self.session_store.get(session_id, user_id)
        if session.status in (SessionStatus.RUNNING, SessionStatus.PAUSED):
            raise InvalidSessionTransition("Cancel the session before deleting it", current=session.status)
        self.session_store.delete(session_id, user_id)

    def cleanup_old_sessions(self, user_id: str, older_than_days: int = 30) -> int:
        """Delete the user's sessions created more than N days ago."""
        cutoff = self.clock() - timedelta(days=older_than_days)
        deleted = self.session_store.delete_older_than(user_id, cutoff)
        logger.info(f"Deleted {deleted} scraping sessions older than {older_than_days} days for user {user_id}")
        return deleted

    # =========================================================================
    # Live updates
    # =========================================================================

    def subscribe(
        self,
        session_id: str,
        user_id: str,
        poll_interval: Optional[float] = None,
        max_lifetime: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> "SessionSubscription":
        """
        Open a live-update subscription.

        Ownership is checked here, so an unknown session fails before any
        stream is opened.

        Raises:
            SessionNotFoundError
        """
        self.session_store.get(session_id, user_id)
        config = self.settings.status
        return SessionSubscription(
            self,
            session_id,
            user_id,
            poll_interval=config.poll_interval if poll_interval is None else poll_interval,
            max_lifetime=config.max_lifetime if max_lifetime is None else max_lifetime,
            sleep=sleep,
            clock=clock,
        )


class SessionSubscription:
    """
    Cancellable background task that re-reads a session and queues events.

    Events are dicts: {"type": "status" | "update" | "error", ...}. The
    stream ends (None on the queue) on a terminal status, after
    `max_lifetime` seconds, on a read error, or when closed.

    Usage:
        async with service.subscribe(session_id, user_id) as subscription:
            async for event in subscription.events():
                ...
    """

    def __init__(
        self,
        service: SessionStatusService,
        session_id: str,
        user_id: str,
        poll_interval: float = 2.0,
        max_lifetime: float = 300.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service = service
        self.session_id = session_id
        self.user_id = user_id
        self.poll_interval = poll_interval
        self.max_lifetime = max_lifetime
        self.sleep = sleep
        self.clock = clock

        self.queue: asyncio.Queue = asyncio.Queue()
        self.close_reason: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    def start(self) -> "SessionSubscription":
        if self._task is None:
            self._task = asyncio.create_task(self._run())
        return self

    async def _run(self) -> None:
        started = self.clock()
        try:
            view = await asyncio.to_thread(self.service.get_status, self.session_id, self.user_id)
            await self.queue.put({"type": "status", "data": view.model_dump(mode="json")})
            while not view.status.is_terminal:
                await self.sleep(self.poll_interval)
                if self.clock() - started >= self.max_lifetime:
                    self.close_reason = "timeout"
                    logger.info(f"Subscription to {self.session_id} reached its maximum lifetime")
                    return
                view = await asyncio.to_thread(self.service.get_status, self.session_id, self.user_id)
                await self.queue.put({"type": "update", "data": view.model_dump(mode="json")})
            self.close_reason = "terminal"
        except asyncio.CancelledError:
            self.close_reason = "closed"
            raise
        except Exception as e:
            self.close_reason = "error"
            logger.warning(f"Subscription to {self.session_id} ended on read error: {e}")
            self.queue.put_nowait({"type": "error", "message": str(e)})
        finally:
            self.queue.put_nowait(None)

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        """Yield queued events until the stream ends."""
        self.start()
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event

    async def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def __aenter__(self) -> "SessionSubscription":
        return self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
