"""
SQLAlchemy implementations of the session and job stores.

Sessions and jobs map onto the `scraping_sessions` and `scraped_jobs`
tables. Pydantic models are converted at the boundary; ORM objects never
leave this module.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable

from sqlalchemy import select, func as sql_func
from sqlalchemy.exc import IntegrityError

from jobscout.core.database import ScrapingSessionRecord, ScrapedJobRecord
from jobscout.core.errors import SessionNotFoundError, JobNotFoundError
from jobscout.core.schemas import (
    ScrapingSession, ScrapedJob, ScrapingProgress, SearchParams,
    SessionStatus, ApplicationStatus, utcnow
)
from jobscout.services.stores import SessionStore, JobStore

logger = logging.getLogger(__name__)


JSON_FIELDS = {"search_params", "progress"}


# ============================================================================
# Conversions
# ============================================================================

def _session_to_row(session: ScrapingSession) -> Dict[str, Any]:
    data = session.model_dump(mode="python")
    data["search_params"] = session.search_params.model_dump(mode="json")
    data["progress"] = session.progress.model_dump(mode="json")
    data["status"] = session.status.value
    return data


def _row_to_session(row: ScrapingSessionRecord) -> ScrapingSession:
    return ScrapingSession(
        id=row.id,
        user_id=row.user_id,
        cv_id=row.cv_id,
        search_params=SearchParams.model_validate(row.search_params),
        status=SessionStatus(row.status),
        progress=ScrapingProgress.model_validate(row.progress or {}),
        total_jobs_found=row.total_jobs_found or 0,
        google_sheets_url=row.google_sheets_url,
        error_message=row.error_message,
        retry_count=row.retry_count or 0,
        created_at=row.created_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
        updated_at=row.updated_at,
    )


def _field_to_column(name: str, value: Any) -> Any:
    if name in JSON_FIELDS and hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, SessionStatus):
        return value.value
    return value


def _job_to_row(job: ScrapedJob) -> Dict[str, Any]:
    data = job.model_dump(mode="python")
    data["application_status"] = job.application_status.value
    return data


def _row_to_job(row: ScrapedJobRecord) -> ScrapedJob:
    return ScrapedJob(
        id=row.id,
        session_id=row.session_id,
        user_id=row.user_id,
        cv_id=row.cv_id,
        source_url=row.source_url,
        title=row.title,
        title_short=row.title_short or row.title[:50],
        company=row.company,
        company_logo_url=row.company_logo_url or "",
        location=row.location or "",
        salary_range=row.salary_range,
        posted_time=row.posted_time or "",
        match_score=row.match_score,
        easy_apply=bool(row.easy_apply),
        insight_status=row.insight_status or "normal",
        insights=list(row.insights or []),
        application_status=ApplicationStatus(row.application_status),
        notes=row.notes,
        scraped_at=row.scraped_at,
    )


# ============================================================================
# Stores
# ============================================================================

class SQLSessionStore(SessionStore):
    """Session store on a SQLAlchemy session factory."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _owned(self, db, session_id: str, user_id: str, lock: bool = False) -> ScrapingSessionRecord:
        query = select(ScrapingSessionRecord).where(
            ScrapingSessionRecord.id == session_id,
            ScrapingSessionRecord.user_id == user_id,
        )
        if lock:
            query = query.with_for_update()
        row = db.execute(query).scalar_one_or_none()
        if row is None:
            raise SessionNotFoundError(session_id)
        return row

    def create(self, session: ScrapingSession) -> str:
        with self.session_factory() as db:
            db.add(ScrapingSessionRecord(**_session_to_row(session)))
            db.commit()
        logger.info(f"Created scraping session {session.id} for user {session.user_id}")
        return session.id

    def get(self, session_id: str, user_id: str) -> ScrapingSession:
        with self.session_factory() as db:
            return _row_to_session(self._owned(db, session_id, user_id))

    def update(
        self,
        session_id: str,
        user_id: str,
        fields: Dict[str, Any],
        only_if: Optional[Iterable[SessionStatus]] = None,
    ) -> Optional[ScrapingSession]:
        with self.session_factory() as db:
            row = self._owned(db, session_id, user_id, lock=True)
            if only_if is not None and row.status not in {status.value for status in only_if}:
                db.rollback()
                return None
            for name, value in fields.items():
                setattr(row, name, _field_to_column(name, value))
            row.updated_at = utcnow()
            db.commit()
            return _row_to_session(row)

    def list_for_user(self, user_id: str) -> List[ScrapingSession]:
        with self.session_factory() as db:
            rows = db.execute(
                select(ScrapingSessionRecord)
                .where(ScrapingSessionRecord.user_id == user_id)
                .order_by(ScrapingSessionRecord.created_at.desc())
            ).scalars().all()
            return [_row_to_session(row) for row in rows]

    def delete(self, session_id: str, user_id: str) -> None:
        with self.session_factory() as db:
            db.delete(self._owned(db, session_id, user_id))
            db.commit()
        logger.info(f"Deleted scraping session {session_id}")

    def delete_older_than(self, user_id: str, cutoff: datetime) -> int:
        with self.session_factory() as db:
            rows = db.execute(
                select(ScrapingSessionRecord).where(
                    ScrapingSessionRecord.user_id == user_id,
                    ScrapingSessionRecord.created_at < cutoff,
                )
            ).scalars().all()
            for row in rows:
                db.delete(row)
            db.commit()
            return len(rows)


class SQLJobStore(JobStore):
    """Job store on a SQLAlchemy session factory."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def bulk_insert(self, jobs: List[ScrapedJob]) -> int:
        if not jobs:
            return 0
        with self.session_factory() as db:
            session_ids = {job.session_id for job in jobs}
            stored = set(
                db.execute(
                    select(ScrapedJobRecord.session_id, ScrapedJobRecord.source_url)
                    .where(ScrapedJobRecord.session_id.in_(session_ids))
                ).all()
            )
            inserted = 0
            for job in jobs:
                key = (job.session_id, job.source_url)
                if key in stored:
                    continue
                stored.add(key)
                db.add(ScrapedJobRecord(**_job_to_row(job)))
                inserted += 1
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.error(f"Bulk insert of {len(jobs)} jobs failed on a uniqueness conflict")
                raise
        logger.info(f"Inserted {inserted} of {len(jobs)} jobs")
        return inserted

    def list_by_session(self, session_id: str, user_id: Optional[str] = None) -> List[ScrapedJob]:
        with self.session_factory() as db:
            query = select(ScrapedJobRecord).where(ScrapedJobRecord.session_id == session_id)
            if user_id is not None:
                query = query.where(ScrapedJobRecord.user_id == user_id)
            rows = db.execute(query.order_by(ScrapedJobRecord.scraped_at)).scalars().all()
            return [_row_to_job(row) for row in rows]

    def list_for_user(
        self,
        user_id: str,
        application_status: Optional[ApplicationStatus] = None,
    ) -> List[ScrapedJob]:
        with self.session_factory() as db:
            query = select(ScrapedJobRecord).where(ScrapedJobRecord.user_id == user_id)
            if application_status is not None:
                query = query.where(ScrapedJobRecord.application_status == application_status.value)
            rows = db.execute(query.order_by(ScrapedJobRecord.scraped_at.desc())).scalars().all()
            return [_row_to_job(row) for row in rows]

    def count_by_session(self, session_id: str) -> int:
        with self.session_factory() as db:
            return db.execute(
                select(sql_func.count())
                .select_from(ScrapedJobRecord)
                .where(ScrapedJobRecord.session_id == session_id)
            ).scalar_one()

    def update_application_status(
        self,
        job_id: str,
        user_id: str,
        status: ApplicationStatus,
        notes: Optional[str] = None,
    ) -> ScrapedJob:
        with self.session_factory() as db:
            row = db.execute(
                select(ScrapedJobRecord).where(
                    ScrapedJobRecord.id == job_id,
                    ScrapedJobRecord.user_id == user_id,
                )
            ).scalar_one_or_none()
            if row is None:
                raise JobNotFoundError(job_id)
            row.application_status = status.value
            if notes is not None:
                row.notes = notes
            db.commit()
            return _row_to_job(row)

    def delete_by_session(self, session_id: str) -> int:
        with self.session_factory() as db:
            rows = db.execute(
                select(ScrapedJobRecord).where(ScrapedJobRecord.session_id == session_id)
            ).scalars().all()
            for row in rows:
                db.delete(row)
            db.commit()
            return len(rows)

    def delete_job(self, job_id: str, user_id: str) -> None:
        with self.session_factory() as db:
            row = db.execute(
                select(ScrapedJobRecord).where(
                    ScrapedJobRecord.id == job_id,
                    ScrapedJobRecord.user_id == user_id,
                )
            ).scalar_one_or_none()
            if row is None:
                raise JobNotFoundError(job_id)
            db.delete(row)
            db.commit()
        logger.info(f"Deleted job {job_id}")
