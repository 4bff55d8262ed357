"""
Pydantic schemas for scraping sessions, job records and browser interaction.

These schemas ensure:
1. Search parameters are validated before a session exists
2. Persisted sessions and jobs have one consistent shape
3. API responses are consistent
"""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Tuple
from enum import Enum
from pydantic import BaseModel, Field, field_validator


MAX_PROGRESS_ERRORS = 20
TITLE_SHORT_LENGTH = 50


def utcnow() -> datetime:
    """Naive UTC timestamp used for every stored datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# Enums for State Management
# ============================================================================

class SessionStatus(str, Enum):
    """Lifecycle states of a scraping session."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


class ProgressStage(str, Enum):
    """Finer-grained stage reported inside a session's progress."""

    INITIALIZING = "initializing"
    SEARCHING = "searching"
    EXTRACTING = "extracting"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class ApplicationStatus(str, Enum):
    """User-editable application tracking status of a scraped job."""

    NOT_APPLIED = "not_applied"
    APPLIED = "applied"
    IN_REVIEW = "in_review"
    INTERVIEW = "interview"
    REJECTED = "rejected"
    OFFER = "offer"


class ExperienceLevel(str, Enum):
    ENTRY = "entry"
    ASSOCIATE = "associate"
    MID = "mid"
    SENIOR = "senior"


class JobType(str, Enum):
    FULL_TIME = "full-time"
    PART_TIME = "part-time"
    CONTRACT = "contract"
    TEMPORARY = "temporary"


class DatePosted(str, Enum):
    PAST_24H = "past-24h"
    PAST_WEEK = "past-week"
    PAST_MONTH = "past-month"


class UpdateType(str, Enum):
    """Kinds of live updates emitted while a session runs."""

    PROGRESS = "progress"
    PAGE_COMPLETED = "page_completed"
    ERROR = "error"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================================================
# Search Parameters
# ============================================================================

def _ordered_unique(values: Tuple[str, ...]) -> Tuple[str, ...]:
    seen = set()
    result = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return tuple(result)


class SalaryRange(BaseModel):
    """Optional salary window. Either bound may be missing."""

    min: Optional[int] = None
    max: Optional[int] = None

    class Config:
        frozen = True


class SearchParams(BaseModel):
    """Immutable snapshot of a job search query."""

    keywords: Tuple[str, ...] = ()
    locations: Tuple[str, ...] = ()
    experience_level: Optional[ExperienceLevel] = None
    job_types: Tuple[JobType, ...] = ()
    date_posted: Optional[DatePosted] = None
    salary_range: Optional[SalaryRange] = None
    remote_work: bool = False
    easy_apply: bool = False

    class Config:
        frozen = True

    @field_validator("keywords", "locations")
    @classmethod
    def dedupe(cls, values: Tuple[str, ...]) -> Tuple[str, ...]:
        return _ordered_unique(values)

    @field_validator("job_types")
    @classmethod
    def dedupe_job_types(cls, values: Tuple[JobType, ...]) -> Tuple[JobType, ...]:
        return tuple(dict.fromkeys(values))


def validate_search_params(params: SearchParams) -> List[str]:
    """
    Check a search snapshot before a session is created.

    Returns:
        List of human-readable problems, empty when the params are usable.
    """
    errors = []
    if not params.keywords:
        errors.append("At least one keyword is required")
    if not params.locations:
        errors.append("At least one location is required")
    salary = params.salary_range
    if salary and salary.min is not None and salary.max is not None and salary.min > salary.max:
        errors.append("Minimum salary cannot be greater than maximum salary")
    return errors


# ============================================================================
# Session Schemas
# ============================================================================

class ScrapingProgress(BaseModel):
    """Mutable progress snapshot persisted with a session."""

    current_page: int = 0
    total_pages: int = 0
    jobs_found: int = 0
    jobs_processed: int = 0
    status: ProgressStage = ProgressStage.INITIALIZING
    message: str = "Initializing scraping session..."
    start_time: datetime = Field(default_factory=utcnow)
    errors: List[str] = Field(default_factory=list)

    def add_error(self, message: str) -> None:
        """Record an error, keeping only the most recent entries."""
        self.errors.append(message)
        if len(self.errors) > MAX_PROGRESS_ERRORS:
            del self.errors[:-MAX_PROGRESS_ERRORS]


class ProgressView(ScrapingProgress):
    """Progress with read-time derived fields."""

    progress_percentage: int = 0
    estimated_time_remaining: Optional[int] = Field(
        default=None,
        description="Seconds, only while the session is running"
    )


class ScrapingSession(BaseModel):
    """A scraping session record as held by the session store."""

    id: str
    user_id: str
    cv_id: Optional[str] = None
    search_params: SearchParams
    status: SessionStatus = SessionStatus.PENDING
    progress: ScrapingProgress = Field(default_factory=ScrapingProgress)
    total_jobs_found: int = 0
    google_sheets_url: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int = 0

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)


class SessionStatusView(BaseModel):
    """Session as returned to status readers."""

    id: str
    user_id: str
    cv_id: Optional[str] = None
    search_params: SearchParams
    status: SessionStatus
    progress: ProgressView
    total_jobs_found: int
    google_sheets_url: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime


# ============================================================================
# Job Data Schemas
# ============================================================================

class RawJobCard(BaseModel):
    """Fields pulled off a single result card before normalisation."""

    index: int
    title: str
    company: str
    location: str = ""
    posted_time: str = ""
    job_url: str
    company_logo_url: str = ""
    is_easy_apply: bool = False
    is_promoted: bool = False


class ScrapedJob(BaseModel):
    """Normalised job record persisted to the job store."""

    id: str
    session_id: str
    user_id: str
    cv_id: Optional[str] = None

    # Core info
    source_url: str
    title: str
    title_short: str
    company: str
    company_logo_url: str = ""
    location: str = ""
    salary_range: Optional[str] = None
    posted_time: str = ""

    # Ranking
    match_score: int = Field(ge=0, le=100)
    easy_apply: bool = False
    insight_status: str = "normal"  # "promoted" or "normal"
    insights: List[str] = Field(default_factory=list)

    # Tracking
    application_status: ApplicationStatus = ApplicationStatus.NOT_APPLIED
    notes: Optional[str] = None
    scraped_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# Browser / Navigation Schemas
# ============================================================================

class Viewport(BaseModel):
    width: int
    height: int


class BrowserFingerprint(BaseModel):
    """Identity presented to the scraped site."""

    user_agent: str
    viewport: Viewport
    timezone: str
    language: str
    platform: str


class MouseMovement(BaseModel):
    x: int
    y: int
    delay_ms: int


class InteractionStep(BaseModel):
    """One step of a humanised page interaction sequence."""

    action: str  # "scroll", "mouse_move", "pause"
    value: int = 0
    delay_ms: int = 0


class PageResponse(BaseModel):
    """Outcome of a browser navigation."""

    url: str
    status_code: Optional[int] = None
    elapsed_ms: int = 0


class NavigationState(BaseModel):
    """Navigator-internal state for one session. Never persisted."""

    current_url: str = ""
    current_page: int = 1
    total_pages: int = 1
    has_next_page: bool = False
    search_filters_applied: bool = False
    last_job_processed: int = 0


# ============================================================================
# Results and Events
# ============================================================================

class ScrapingUpdate(BaseModel):
    """Live event emitted while a session runs."""

    session_id: str
    type: UpdateType
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class ScrapingResult(BaseModel):
    """Outcome of a scrape. Always returned, never raised."""

    success: bool
    session_id: Optional[str] = None
    jobs_found: List[ScrapedJob] = Field(default_factory=list)
    total_jobs_scraped: int = 0
    google_sheets_url: Optional[str] = None
    export_error: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    duration_ms: int = 0
    aborted: bool = False
    cancelled: bool = False


class SheetExportConfig(BaseModel):
    """How a batch of jobs is written to a spreadsheet."""

    spreadsheet_name: str
    worksheet_name: str = "LinkedIn Jobs"
    include_headers: bool = True
    auto_format: bool = True
    share_with_user: Optional[str] = None


# ============================================================================
# API Response Schemas
# ============================================================================

class APIResponse(BaseModel):
    """Standard API response wrapper."""

    success: bool
    message: str
    data: Optional[Any] = None
    errors: Optional[List[str]] = None
