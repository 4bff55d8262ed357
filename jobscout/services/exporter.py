"""
Spreadsheet export of scraped jobs.

Sheet rows have a fixed 12-column shape so exported sheets stay compatible with
each other regardless of the sink behind them. CSV downloads use a plain
11-column shape.
"""

import csv
import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, List, Dict

from jobscout.core.config import GoogleSheetsSettings
from jobscout.core.schemas import ScrapedJob, ApplicationStatus, SheetExportConfig, utcnow

logger = logging.getLogger(__name__)


HEADERS = [
    "Company Logo",
    "Job Title",
    "Company",
    "Location",
    "Salary",
    "Posted Time",
    "Application Status",
    "Easy Apply",
    "LinkedIn URL",
    "Match Score",
    "Scraped Date",
    "Additional Insights",
]

STATUS_LABELS = {
    ApplicationStatus.NOT_APPLIED: "Not Applied",
    ApplicationStatus.APPLIED: "Applied",
    ApplicationStatus.IN_REVIEW: "In Review",
    ApplicationStatus.INTERVIEW: "Interview",
    ApplicationStatus.REJECTED: "Rejected",
    ApplicationStatus.OFFER: "Offer",
}


def job_to_sheet_row(job: ScrapedJob) -> List[str]:
    """Render one job in the 12-column sheet shape."""
    return [
        f'=IMAGE("{job.company_logo_url}")' if job.company_logo_url else "",
        job.title,
        job.company,
        job.location,
        job.salary_range or "Not specified",
        job.posted_time,
        STATUS_LABELS[job.application_status],
        "Yes" if job.easy_apply else "No",
        f'=HYPERLINK("{job.source_url}", "View Job")',
        f"{job.match_score}%",
        job.scraped_at.strftime("%Y-%m-%d"),
        ", ".join(job.insights),
    ]


CSV_HEADERS = [
    "Job Title",
    "Company",
    "Location",
    "Salary Range",
    "Posted Time",
    "LinkedIn URL",
    "Easy Apply",
    "Application Status",
    "Match Score",
    "Additional Insights",
    "Scraped Date",
]


def job_to_csv_row(job: ScrapedJob) -> List[str]:
    """Render one job in the 11-column download shape (plain values, no formulas)."""
    return [
        job.title,
        job.company,
        job.location,
        job.salary_range or "",
        job.posted_time,
        job.source_url,
        "Yes" if job.easy_apply else "No",
        STATUS_LABELS[job.application_status],
        str(job.match_score),
        ", ".join(job.insights),
        job.scraped_at.strftime("%Y-%m-%d"),
    ]


def jobs_to_csv(jobs: List[ScrapedJob]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADERS)
    writer.writerows(job_to_csv_row(job) for job in jobs)
    return buffer.getvalue()


# ============================================================================
# Sinks
# ============================================================================

@dataclass
class SheetHandle:
    sheet_id: str
    url: str


class SpreadsheetSink(ABC):
    """Destination for exported rows."""

    @abstractmethod
    def create_sheet(self, config: SheetExportConfig) -> SheetHandle:
        pass

    @abstractmethod
    def append_rows(self, sheet_id: str, rows: List[List[str]], worksheet_name: str) -> None:
        pass


class GoogleSheetsSink(SpreadsheetSink):
    """
    Google Sheets via gspread and a service account.

    Each export creates a new spreadsheet owned by the service account and
    optionally shares it with the user.
    """

    SCOPES = [
        "https://www.googleapis.com/auth/spreadsheets",
        "https://www.googleapis.com/auth/drive",
    ]

    def __init__(self, config: Optional[GoogleSheetsSettings] = None):
        self.config = config or GoogleSheetsSettings()
        self._client = None

    @property
    def client(self):
        if self._client is None:
            import gspread
            from google.oauth2.service_account import Credentials

            credentials = Credentials.from_service_account_file(
                self.config.credentials_file,
                scopes=self.SCOPES,
            )
            self._client = gspread.authorize(credentials)
            logger.info("Authorized Google Sheets client")
        return self._client

    def create_sheet(self, config: SheetExportConfig) -> SheetHandle:
        spreadsheet = self.client.create(config.spreadsheet_name)
        worksheet = spreadsheet.sheet1
        worksheet.update_title(config.worksheet_name)

        if config.include_headers:
            worksheet.append_row(HEADERS, value_input_option="RAW")
            if config.auto_format:
                worksheet.format("A1:L1", {"textFormat": {"bold": True}})
                worksheet.freeze(rows=1)

        if config.share_with_user:
            try:
                spreadsheet.share(config.share_with_user, perm_type="user", role="writer")
            except Exception as e:
                logger.warning(f"Failed to share spreadsheet with {config.share_with_user}: {e}")

        logger.info(f"Created spreadsheet {spreadsheet.id}")
        return SheetHandle(sheet_id=spreadsheet.id, url=spreadsheet.url)

    def append_rows(self, sheet_id: str, rows: List[List[str]], worksheet_name: str) -> None:
        worksheet = self.client.open_by_key(sheet_id).worksheet(worksheet_name)
        worksheet.append_rows(rows, value_input_option="USER_ENTERED")


@dataclass
class InMemorySheet:
    config: SheetExportConfig
    rows: List[List[str]] = field(default_factory=list)


class InMemorySheetSink(SpreadsheetSink):
    """Keeps sheets in memory. Used by the demo and tests."""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.sheets: Dict[str, InMemorySheet] = {}
        self.fail_with = fail_with

    def create_sheet(self, config: SheetExportConfig) -> SheetHandle:
        if self.fail_with is not None:
            raise self.fail_with
        sheet_id = f"sheet-{len(self.sheets) + 1}"
        sheet = InMemorySheet(config=config)
        if config.include_headers:
            sheet.rows.append(list(HEADERS))
        self.sheets[sheet_id] = sheet
        return SheetHandle(sheet_id=sheet_id, url=f"memory://sheets/{sheet_id}")

    def append_rows(self, sheet_id: str, rows: List[List[str]], worksheet_name: str) -> None:
        self.sheets[sheet_id].rows.extend(rows)


# ============================================================================
# Exporter
# ============================================================================

class SheetExporter:
    """Turns a finished batch of jobs into a spreadsheet."""

    def __init__(self, sink: SpreadsheetSink, config: Optional[GoogleSheetsSettings] = None):
        self.sink = sink
        self.config = config or GoogleSheetsSettings()

    def default_config(self, title: Optional[str] = None) -> SheetExportConfig:
        return SheetExportConfig(
            spreadsheet_name=title or f"LinkedIn Jobs - {utcnow():%Y-%m-%d}",
            worksheet_name=self.config.worksheet_name,
            share_with_user=self.config.share_with_user,
        )

    def export(self, jobs: List[ScrapedJob], config: Optional[SheetExportConfig] = None) -> str:
        """
        Write jobs to a new spreadsheet.

        Returns:
            URL of the spreadsheet

        Raises:
            Whatever the sink raises; callers treat export as best-effort.
        """
        config = config or self.default_config()
        handle = self.sink.create_sheet(config)
        rows = [job_to_sheet_row(job) for job in jobs]
        if rows:
            self.sink.append_rows(handle.sheet_id, rows, config.worksheet_name)
        logger.info(f"Exported {len(rows)} jobs to {handle.url}")
        return handle.url
