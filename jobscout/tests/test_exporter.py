"""
Tests for spreadsheet export.

Run with: python -m pytest jobscout/tests/test_exporter.py -v
"""

import csv
import io
from datetime import datetime

from jobscout.core.config import GoogleSheetsSettings
from jobscout.core.schemas import ScrapedJob, ApplicationStatus, SheetExportConfig
from jobscout.services.exporter import (
    HEADERS, CSV_HEADERS, job_to_sheet_row, job_to_csv_row, jobs_to_csv,
    SheetExporter, InMemorySheetSink, GoogleSheetsSink
)


def make_job(**overrides) -> ScrapedJob:
    data = dict(
        id="job-1",
        session_id="s1",
        user_id="u1",
        source_url="https://www.linkedin.com/jobs/view/42/",
        title="Senior Data Engineer",
        title_short="Senior Data Engineer",
        company="Gojek",
        company_logo_url="https://media.licdn.com/logo/42.png",
        location="Jakarta, Indonesia",
        posted_time="2 days ago",
        match_score=80,
        easy_apply=True,
        insights=["Promoted", "Easy Apply"],
        scraped_at=datetime(2026, 2, 14, 9, 30),
    )
    data.update(overrides)
    return ScrapedJob(**data)


def test_job_to_sheet_row():
    row = job_to_sheet_row(make_job())

    assert len(row) == len(HEADERS) == 12
    assert row == [
        '=IMAGE("https://media.licdn.com/logo/42.png")',
        "Senior Data Engineer",
        "Gojek",
        "Jakarta, Indonesia",
        "Not specified",
        "2 days ago",
        "Not Applied",
        "Yes",
        '=HYPERLINK("https://www.linkedin.com/jobs/view/42/", "View Job")',
        "80%",
        "2026-02-14",
        "Promoted, Easy Apply",
    ]


def test_job_to_sheet_row_without_optional_values():
    row = job_to_sheet_row(make_job(
        company_logo_url="",
        salary_range="IDR 20-30M",
        easy_apply=False,
        insights=[],
        application_status=ApplicationStatus.INTERVIEW,
    ))

    assert row[0] == ""
    assert row[4] == "IDR 20-30M"
    assert row[6] == "Interview"
    assert row[7] == "No"
    assert row[11] == ""


def test_exporter_writes_header_and_rows():
    sink = InMemorySheetSink()
    exporter = SheetExporter(sink, GoogleSheetsSettings(worksheet_name="Jobs"))

    url = exporter.export([make_job(), make_job(id="job-2", source_url="https://www.linkedin.com/jobs/view/43/")])

    assert url == "memory://sheets/sheet-1"
    sheet = sink.sheets["sheet-1"]
    assert sheet.rows[0] == HEADERS
    assert len(sheet.rows) == 3
    assert sheet.config.worksheet_name == "Jobs"
    assert sheet.config.spreadsheet_name.startswith("LinkedIn Jobs - ")


def test_exporter_empty_batch_creates_header_only_sheet():
    sink = InMemorySheetSink()

    SheetExporter(sink).export([], SheetExportConfig(spreadsheet_name="Empty"))

    assert sink.sheets["sheet-1"].rows == [HEADERS]


# =============================================================================
# Google Sheets sink with a fake gspread client
# =============================================================================

class FakeWorksheet:
    def __init__(self):
        self.title = "Sheet1"
        self.rows = []
        self.formats = []
        self.frozen = None

    def update_title(self, title):
        self.title = title

    def append_row(self, row, value_input_option=None):
        self.rows.append(row)

    def append_rows(self, rows, value_input_option=None):
        self.value_input_option = value_input_option
        self.rows.extend(rows)

    def format(self, cell_range, fmt):
        self.formats.append((cell_range, fmt))

    def freeze(self, rows=None):
        self.frozen = rows


class FakeSpreadsheet:
    def __init__(self, name):
        self.id = "abc123"
        self.url = "https://docs.google.com/spreadsheets/d/abc123"
        self.name = name
        self.sheet1 = FakeWorksheet()
        self.shared_with = []

    def share(self, email, perm_type, role):
        if email == "broken@example.com":
            raise RuntimeError("sharing disabled")
        self.shared_with.append((email, perm_type, role))

    def worksheet(self, name):
        assert name == self.sheet1.title
        return self.sheet1


class FakeClient:
    def __init__(self):
        self.spreadsheets = {}

    def create(self, name):
        spreadsheet = FakeSpreadsheet(name)
        self.spreadsheets[spreadsheet.id] = spreadsheet
        return spreadsheet

    def open_by_key(self, key):
        return self.spreadsheets[key]


def test_google_sheets_sink_creates_formatted_sheet():
    sink = GoogleSheetsSink(GoogleSheetsSettings())
    sink._client = FakeClient()
    exporter = SheetExporter(sink)

    url = exporter.export([make_job()], SheetExportConfig(
        spreadsheet_name="My Jobs", share_with_user="me@example.com"
    ))

    spreadsheet = sink._client.spreadsheets["abc123"]
    worksheet = spreadsheet.sheet1
    assert url == spreadsheet.url
    assert worksheet.title == "LinkedIn Jobs"
    assert worksheet.rows[0] == HEADERS
    assert len(worksheet.rows) == 2
    assert worksheet.value_input_option == "USER_ENTERED"
    assert worksheet.formats == [("A1:L1", {"textFormat": {"bold": True}})]
    assert worksheet.frozen == 1
    assert spreadsheet.shared_with == [("me@example.com", "user", "writer")]


def test_google_sheets_sink_share_failure_is_not_fatal():
    sink = GoogleSheetsSink(GoogleSheetsSettings())
    sink._client = FakeClient()

    handle = sink.create_sheet(SheetExportConfig(spreadsheet_name="x", share_with_user="broken@example.com"))

    assert handle.sheet_id == "abc123"


# =============================================================================
# CSV download
# =============================================================================

def test_job_to_csv_row():
    row = job_to_csv_row(make_job(application_status=ApplicationStatus.IN_REVIEW))

    assert len(row) == len(CSV_HEADERS) == 11
    assert row == [
        "Senior Data Engineer",
        "Gojek",
        "Jakarta, Indonesia",
        "",
        "2 days ago",
        "https://www.linkedin.com/jobs/view/42/",
        "Yes",
        "In Review",
        "80",
        "Promoted, Easy Apply",
        "2026-02-14",
    ]


def test_jobs_to_csv_quotes_embedded_commas():
    text = jobs_to_csv([make_job(), make_job(id="job-2", company='Acme, "Inc"')])

    rows = list(csv.reader(io.StringIO(text)))

    assert rows[0] == CSV_HEADERS
    assert len(rows) == 3
    assert rows[2][1] == 'Acme, "Inc"'
    assert rows[1][9] == "Promoted, Easy Apply"
