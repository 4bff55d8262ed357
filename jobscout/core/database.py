"""
Database models for JobScout.

Uses SQLAlchemy for ORM. PostgreSQL is the production target; JSON columns
fall back to plain JSON elsewhere so the same tables work on SQLite.
"""

import uuid
from sqlalchemy import (
    create_engine, Column, String, Integer, Boolean, DateTime,
    Text, JSON, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, declarative_base, sessionmaker
from sqlalchemy.sql import func

from .config import DatabaseSettings


Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")


def generate_uuid():
    """Generate a new UUID string."""
    return str(uuid.uuid4())


# ============================================================================
# Scraping Sessions
# ============================================================================

class ScrapingSessionRecord(Base):
    """One LinkedIn scraping run for one search-parameter snapshot."""

    __tablename__ = "scraping_sessions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    cv_id = Column(String(36))

    # Immutable query snapshot (SearchParams)
    search_params = Column(JSONType, nullable=False)

    # State
    status = Column(String(20), default="pending", index=True)
    progress = Column(JSONType)  # ScrapingProgress

    # Outcome
    total_jobs_found = Column(Integer, default=0)
    google_sheets_url = Column(String(1000))
    error_message = Column(Text)
    retry_count = Column(Integer, default=0)

    # Timestamps
    created_at = Column(DateTime, default=func.now())
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    jobs = relationship(
        "ScrapedJobRecord",
        back_populates="session",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_sessions_user_status", "user_id", "status"),
        Index("idx_sessions_user_created", "user_id", "created_at"),
    )


# ============================================================================
# Scraped Jobs
# ============================================================================

class ScrapedJobRecord(Base):
    """Job listing scraped during a session."""

    __tablename__ = "scraped_jobs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    session_id = Column(
        String(36),
        ForeignKey("scraping_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(String(36), nullable=False, index=True)
    cv_id = Column(String(36))

    # Core info
    source_url = Column(String(1000), nullable=False)
    title = Column(String(500), nullable=False)
    title_short = Column(String(50))
    company = Column(String(255), nullable=False)
    company_logo_url = Column(String(1000), default="")
    location = Column(String(255))
    salary_range = Column(String(100))
    posted_time = Column(String(100))

    # Ranking
    match_score = Column(Integer, default=50)
    easy_apply = Column(Boolean, default=False)
    insight_status = Column(String(20), default="normal")
    insights = Column(JSONType)  # ["Promoted", "Easy Apply"]

    # Tracking (only user-editable field after scraping)
    application_status = Column(String(20), default="not_applied")
    notes = Column(Text)

    # Timestamps
    scraped_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    session = relationship("ScrapingSessionRecord", back_populates="jobs")

    __table_args__ = (
        UniqueConstraint("session_id", "source_url", name="uq_jobs_session_url"),
        Index("idx_jobs_session", "session_id"),
        Index("idx_jobs_user_status", "user_id", "application_status"),
    )


# ============================================================================
# Engine helpers
# ============================================================================

def create_db_engine(db_settings: DatabaseSettings, **kwargs):
    """Create an engine from database settings."""
    return create_engine(db_settings.url, echo=db_settings.echo, **kwargs)


def init_db(engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)


def get_session_factory(engine):
    """Session factory bound to the engine."""
    return sessionmaker(bind=engine, expire_on_commit=False)
