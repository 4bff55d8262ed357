"""
Session and job store contracts, with in-memory implementations.

Every read, update and delete is owner-scoped: a record that exists but
belongs to another user is reported exactly like a missing one.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable

from jobscout.core.errors import SessionNotFoundError, JobNotFoundError
from jobscout.core.schemas import (
    ScrapingSession, ScrapedJob, SessionStatus, ApplicationStatus, utcnow
)

logger = logging.getLogger(__name__)


# ============================================================================
# Contracts
# ============================================================================

class SessionStore(ABC):
    """Durable home of scraping sessions."""

    @abstractmethod
    def create(self, session: ScrapingSession) -> str:
        """Persist a new session and return its id."""

    @abstractmethod
    def get(self, session_id: str, user_id: str) -> ScrapingSession:
        """
        Raises:
            SessionNotFoundError: missing or owned by someone else
        """

    @abstractmethod
    def update(
        self,
        session_id: str,
        user_id: str,
        fields: Dict[str, Any],
        only_if: Optional[Iterable[SessionStatus]] = None,
    ) -> Optional[ScrapingSession]:
        """
        Apply a partial update.

        Args:
            fields: Attribute name -> new value
            only_if: Apply only while the stored status is one of these

        Returns:
            The updated session, or None when `only_if` did not match

        Raises:
            SessionNotFoundError: missing or owned by someone else
        """

    @abstractmethod
    def list_for_user(self, user_id: str) -> List[ScrapingSession]:
        """Newest first."""

    @abstractmethod
    def delete(self, session_id: str, user_id: str) -> None:
        """Delete a session and, by cascade, its jobs."""

    @abstractmethod
    def delete_older_than(self, user_id: str, cutoff: datetime) -> int:
        """Delete sessions created before `cutoff`. Returns the count."""


class JobStore(ABC):
    """Durable home of scraped jobs."""

    @abstractmethod
    def bulk_insert(self, jobs: List[ScrapedJob]) -> int:
        """
        Insert jobs, skipping any whose source URL is already stored for the
        same session. Returns the number inserted.
        """

    @abstractmethod
    def list_by_session(self, session_id: str, user_id: Optional[str] = None) -> List[ScrapedJob]:
        pass

    @abstractmethod
    def list_for_user(
        self,
        user_id: str,
        application_status: Optional[ApplicationStatus] = None,
    ) -> List[ScrapedJob]:
        pass

    @abstractmethod
    def count_by_session(self, session_id: str) -> int:
        pass

    @abstractmethod
    def update_application_status(
        self,
        job_id: str,
        user_id: str,
        status: ApplicationStatus,
        notes: Optional[str] = None,
    ) -> ScrapedJob:
        """
        Raises:
            JobNotFoundError: missing or owned by someone else
        """

    @abstractmethod
    def delete_job(self, job_id: str, user_id: str) -> None:
        """
        Raises:
            JobNotFoundError: missing or owned by someone else
        """

    @abstractmethod
    def delete_by_session(self, session_id: str) -> int:
        pass


# ============================================================================
# In-memory implementations
# ============================================================================

class InMemoryJobStore(JobStore):
    """Jobs held in a dict. Returned objects are copies."""

    def __init__(self):
        self._jobs: Dict[str, ScrapedJob] = {}
        self._lock = threading.RLock()

    def bulk_insert(self, jobs: List[ScrapedJob]) -> int:
        inserted = 0
        with self._lock:
            existing = {(job.session_id, job.source_url) for job in self._jobs.values()}
            for job in jobs:
                key = (job.session_id, job.source_url)
                if key in existing:
                    logger.debug(f"Skipping duplicate job {job.source_url} in session {job.session_id}")
                    continue
                existing.add(key)
                self._jobs[job.id] = job.model_copy(deep=True)
                inserted += 1
        return inserted

    def list_by_session(self, session_id: str, user_id: Optional[str] = None) -> List[ScrapedJob]:
        with self._lock:
            return [
                job.model_copy(deep=True)
                for job in self._jobs.values()
                if job.session_id == session_id and (user_id is None or job.user_id == user_id)
            ]

    def list_for_user(
        self,
        user_id: str,
        application_status: Optional[ApplicationStatus] = None,
    ) -> List[ScrapedJob]:
        with self._lock:
            jobs = [
                job.model_copy(deep=True)
                for job in self._jobs.values()
                if job.user_id == user_id
                and (application_status is None or job.application_status == application_status)
            ]
        return sorted(jobs, key=lambda job: job.scraped_at, reverse=True)

    def count_by_session(self, session_id: str) -> int:
        with self._lock:
            return sum(1 for job in self._jobs.values() if job.session_id == session_id)

    def update_application_status(
        self,
        job_id: str,
        user_id: str,
        status: ApplicationStatus,
        notes: Optional[str] = None,
    ) -> ScrapedJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.user_id != user_id:
                raise JobNotFoundError(job_id)
            job.application_status = status
            if notes is not None:
                job.notes = notes
            return job.model_copy(deep=True)

    def delete_job(self, job_id: str, user_id: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.user_id != user_id:
                raise JobNotFoundError(job_id)
            del self._jobs[job_id]

    def delete_by_session(self, session_id: str) -> int:
        with self._lock:
            doomed = [job_id for job_id, job in self._jobs.items() if job.session_id == session_id]
            for job_id in doomed:
                del self._jobs[job_id]
            return len(doomed)


class InMemorySessionStore(SessionStore):
    """Sessions held in a dict. Deleting a session deletes its jobs."""

    def __init__(self, job_store: Optional[JobStore] = None):
        self._sessions: Dict[str, ScrapingSession] = {}
        self._lock = threading.RLock()
        self.job_store = job_store

    def _owned(self, session_id: str, user_id: str) -> ScrapingSession:
        session = self._sessions.get(session_id)
        if session is None or session.user_id != user_id:
            raise SessionNotFoundError(session_id)
        return session

    def create(self, session: ScrapingSession) -> str:
        with self._lock:
            self._sessions[session.id] = session.model_copy(deep=True)
        logger.info(f"Created scraping session {session.id} for user {session.user_id}")
        return session.id

    def get(self, session_id: str, user_id: str) -> ScrapingSession:
        with self._lock:
            return self._owned(session_id, user_id).model_copy(deep=True)

    def update(
        self,
        session_id: str,
        user_id: str,
        fields: Dict[str, Any],
        only_if: Optional[Iterable[SessionStatus]] = None,
    ) -> Optional[ScrapingSession]:
        with self._lock:
            session = self._owned(session_id, user_id)
            if only_if is not None and session.status not in set(only_if):
                return None
            updated = session.model_copy(update={**copy.deepcopy(fields), "updated_at": utcnow()}, deep=True)
            self._sessions[session_id] = updated
            return updated.model_copy(deep=True)

    def list_for_user(self, user_id: str) -> List[ScrapingSession]:
        with self._lock:
            sessions = [s.model_copy(deep=True) for s in self._sessions.values() if s.user_id == user_id]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    def delete(self, session_id: str, user_id: str) -> None:
        with self._lock:
            self._owned(session_id, user_id)
            if self.job_store is not None:
                self.job_store.delete_by_session(session_id)
            del self._sessions[session_id]
        logger.info(f"Deleted scraping session {session_id}")

    def delete_older_than(self, user_id: str, cutoff: datetime) -> int:
        with self._lock:
            doomed = [
                s.id for s in self._sessions.values()
                if s.user_id == user_id and s.created_at < cutoff
            ]
            for session_id in doomed:
                self.delete(session_id, user_id)
        return len(doomed)
