"""
Error taxonomy for scraping sessions.

Navigator failures are tagged with an ErrorKind at the point they are raised
so the orchestrator decides retry/skip/abort from the tag alone.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from jobscout.core.schemas import utcnow


class ErrorKind(str, Enum):
    """Closed set of scraping failure categories."""

    NAVIGATION = "navigation"
    EXTRACTION = "extraction"
    RATE_LIMIT = "rate_limit"
    BLOCKED = "blocked"
    NETWORK = "network"
    PARSING = "parsing"


CRITICAL_KINDS = frozenset({ErrorKind.RATE_LIMIT, ErrorKind.BLOCKED})


class JobScoutError(Exception):
    """Base class for all JobScout errors."""


class ScrapingError(JobScoutError):
    """A classified failure raised by the navigation/extraction layer."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        retryable: bool = True,
        page: Optional[int] = None,
        job_url: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retryable = retryable
        self.page = page
        self.job_url = job_url
        self.context = context or {}
        self.timestamp: datetime = utcnow()

    @property
    def is_critical(self) -> bool:
        """Critical errors end the page loop for the whole session."""
        return self.kind in CRITICAL_KINDS

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        kind: ErrorKind = ErrorKind.NETWORK,
        page: Optional[int] = None,
    ) -> "ScrapingError":
        """Wrap an unexpected exception from the automation layer."""
        if isinstance(exc, ScrapingError):
            return exc
        return cls(kind, str(exc) or exc.__class__.__name__, retryable=True, page=page)

    def describe(self) -> str:
        prefix = f"Page {self.page}: " if self.page is not None else ""
        return f"{prefix}[{self.kind.value}] {self.message}"

    def __repr__(self) -> str:
        return f"ScrapingError(kind={self.kind.value!r}, message={self.message!r}, page={self.page})"


class SearchParamsValidationError(JobScoutError, ValueError):
    """Search parameters rejected before a session was created."""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


class SessionNotFoundError(JobScoutError, LookupError):
    """Session missing or not owned by the requesting user."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class JobNotFoundError(JobScoutError, LookupError):
    """Job missing or not owned by the requesting user."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidSessionTransition(JobScoutError):
    """A command or status change the session's state does not allow."""

    def __init__(self, message: str, current=None, target=None):
        super().__init__(message)
        self.current = current
        self.target = target
