"""
Configuration management for JobScout.

Loads settings from environment variables with sensible defaults.
Uses pydantic-settings for validation.
"""

from typing import Optional, List
from pydantic_settings import BaseSettings
from pydantic import Field


class DatabaseSettings(BaseSettings):
    """Session/job store settings."""

    backend: str = Field(
        default="memory",
        description="Store backend: memory or sql"
    )
    url: str = Field(
        default="postgresql://localhost:5432/jobscout",
        description="SQLAlchemy database URL (used when backend is sql)"
    )
    echo: bool = Field(
        default=False,
        description="Log emitted SQL statements"
    )

    class Config:
        env_prefix = "DB_"


class AntiBlockingSettings(BaseSettings):
    """Timing and identity-rotation heuristics."""

    min_delay_ms: int = Field(default=1000, description="Lower bound of random delays")
    max_delay_ms: int = Field(default=3000, description="Upper bound of random delays")
    session_rotation: bool = Field(
        default=True,
        description="Rotate the browser fingerprint when the session ages"
    )
    mouse_movements: bool = Field(
        default=True,
        description="Emit mouse movements before clicks"
    )
    max_session_minutes: int = Field(
        default=30,
        description="Identity age after which a rotation is due"
    )
    max_requests_per_session: int = Field(
        default=100,
        description="Request count after which a rotation is due"
    )

    class Config:
        env_prefix = "ANTIBLOCK_"


class ScraperSettings(BaseSettings):
    """Scraping session configuration."""

    # Page loop
    max_pages: int = Field(
        default=10,
        description="Hard ceiling on result pages per session"
    )
    max_jobs_per_page: int = Field(
        default=25,
        description="Maximum cards used from a single result page"
    )
    results_per_page: int = Field(
        default=25,
        description="Page size used when paginating through the URL"
    )
    delay_between_pages_ms: int = Field(
        default=3000,
        description="Base delay between result pages"
    )
    page_jitter_ms: int = Field(
        default=1000,
        description="Random jitter added to the inter-page delay"
    )

    # Timeouts
    navigation_timeout_ms: int = Field(default=30000)
    selector_timeout_ms: int = Field(default=10000)
    page_load_timeout_ms: int = Field(default=15000)

    # Retry
    retry_attempts: int = Field(
        default=3,
        description="Total attempts for a retryable navigation/extraction step"
    )

    # Scoring
    priority_cities: List[str] = Field(
        default_factory=lambda: ["jakarta"],
        description="Locations that earn a match-score bonus"
    )

    # Pause handling
    pause_poll_interval: float = Field(
        default=2.0,
        description="Seconds between status checks while paused"
    )
    pause_timeout: float = Field(
        default=1800.0,
        description="Seconds a session may stay paused before it is failed"
    )

    export_to_sheets: bool = Field(default=True)
    headless: bool = Field(default=True)

    class Config:
        env_prefix = "SCRAPER_"


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets integration settings."""

    credentials_file: str = Field(
        default="google_credentials.json",
        description="Path to Google service account credentials"
    )
    worksheet_name: str = Field(
        default="LinkedIn Jobs",
        description="Title of the worksheet that receives job rows"
    )
    share_with_user: Optional[str] = Field(
        default=None,
        description="Email address the new spreadsheet is shared with"
    )

    class Config:
        env_prefix = "GOOGLE_"


class StatusSettings(BaseSettings):
    """Live status subscription settings."""

    poll_interval: float = Field(
        default=2.0,
        description="Seconds between session re-reads"
    )
    max_lifetime: float = Field(
        default=300.0,
        description="Seconds after which a subscription is closed"
    )

    class Config:
        env_prefix = "STATUS_"


class Settings(BaseSettings):
    """Main application settings aggregating all sub-settings."""

    # Application
    app_name: str = "JobScout"
    debug: bool = Field(default=False)
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    anti_blocking: AntiBlockingSettings = Field(default_factory=AntiBlockingSettings)
    scraper: ScraperSettings = Field(default_factory=ScraperSettings)
    google_sheets: GoogleSheetsSettings = Field(default_factory=GoogleSheetsSettings)
    status: StatusSettings = Field(default_factory=StatusSettings)

    class Config:
        env_prefix = "JOBSCOUT_"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings. Useful for dependency injection."""
    return settings
