"""Tests for Excel reports and Excel-driven imports."""

import io
from datetime import date, datetime

import openpyxl
import pytest

from postflow.excel import (
    CLIENT_ANALYTICS_HEADERS,
    CLIENT_POSTS_HEADERS,
    POSTS_REPORT_HEADERS,
    generate_client_report,
    generate_excel_report,
    process_analytics_upload,
    process_excel_upload,
    read_sheet_rows,
)
from postflow.ingest import IngestError, NotFoundError
from postflow.models import Analytics, Client, Post, PostStatus

URL = "https://typefully.com/t/a1"


def _load(content: bytes) -> openpyxl.Workbook:
    return openpyxl.load_workbook(io.BytesIO(content))


def _rows(ws) -> list[tuple]:
    return list(ws.iter_rows(values_only=True))


@pytest.fixture
def post(test_session, sample_client) -> Post:
    record = Post(
        client_id=sample_client.id,
        content="Launch teaser",
        tweet_text="Big news soon",
        typefully_url=URL,
        scheduled_date=datetime(2025, 8, 7, 6, 30),
        status=PostStatus.PENDING,
    )
    test_session.add(record)
    test_session.commit()
    return record


class TestGenerateExcelReport:
    def test_headers_and_rows(self, test_session, agency, post):
        wb = _load(generate_excel_report(test_session, agency.id))
        assert wb.sheetnames == ["Posts Report"]

        header, row = _rows(wb["Posts Report"])
        assert list(header) == POSTS_REPORT_HEADERS
        assert row[0] == "Northwind Coffee"
        assert row[1] == "Launch teaser"
        assert row[3] == URL
        assert row[4] == "2025-08-07T06:30:00Z"
        assert row[5] == "PENDING"

    def test_only_agency_posts(self, test_session, agency, post):
        from postflow.models import Agency

        other = Agency(name="Other", email="other@agency.test")
        test_session.add(other)
        test_session.commit()
        wb = _load(generate_excel_report(test_session, other.id))
        assert len(_rows(wb["Posts Report"])) == 1


class TestGenerateClientReport:
    def test_posts_and_analytics_sheets(self, test_session, sample_client, post):
        test_session.add(
            Analytics(
                client_id=sample_client.id,
                date=date(2025, 8, 1),
                impressions=1000,
                engagements=45,
                engagement_rate=0.045,
            )
        )
        test_session.commit()

        wb = _load(generate_client_report(test_session, sample_client.id))
        assert wb.sheetnames == ["Posts", "Analytics"]

        posts = _rows(wb["Posts"])
        assert list(posts[0]) == CLIENT_POSTS_HEADERS
        assert posts[1][0] == "Launch teaser"

        analytics = _rows(wb["Analytics"])
        assert list(analytics[0]) == CLIENT_ANALYTICS_HEADERS
        assert analytics[1][0] == "2025-08-01"
        assert analytics[1][3] == "4.50%"

    def test_analytics_only(self, test_session, sample_client):
        test_session.add(Analytics(client_id=sample_client.id, date=date(2025, 8, 1)))
        test_session.commit()
        wb = _load(generate_client_report(test_session, sample_client.id))
        assert wb.sheetnames == ["Analytics"]

    def test_recent_days_only(self, test_session, sample_client):
        for day in range(1, 32):
            test_session.add(Analytics(client_id=sample_client.id, date=date(2025, 8, day)))
        test_session.commit()
        wb = _load(generate_client_report(test_session, sample_client.id))
        rows = _rows(wb["Analytics"])[1:]
        assert len(rows) == 30
        assert rows[0][0] == "2025-08-31"

    def test_empty_client_gets_header_only_posts_sheet(self, test_session, sample_client):
        wb = _load(generate_client_report(test_session, sample_client.id))
        assert wb.sheetnames == ["Posts"]
        assert _rows(wb["Posts"]) == [tuple(CLIENT_POSTS_HEADERS)]

    def test_unknown_client(self, test_session):
        with pytest.raises(NotFoundError):
            generate_client_report(test_session, 999)


class TestReadSheetRows:
    def test_rows_keyed_by_normalized_header(self, workbook_bytes):
        content = workbook_bytes(["Client Name", " Status "], [["Northwind", "APPROVED"], [None, None]])
        assert read_sheet_rows(content) == [(2, {"client name": "Northwind", "status": "APPROVED"})]

    def test_row_numbers_survive_blank_rows(self, workbook_bytes):
        content = workbook_bytes(["Status"], [[None], ["APPROVED"]])
        assert read_sheet_rows(content) == [(3, {"status": "APPROVED"})]

    def test_not_a_workbook(self):
        with pytest.raises(IngestError, match="Could not read Excel file"):
            read_sheet_rows(b"not a zip file")

    def test_no_header(self, workbook_bytes):
        with pytest.raises(IngestError, match="no header row"):
            read_sheet_rows(workbook_bytes([], []))


class TestProcessExcelUpload:
    HEADER = ["Client Name", "Typefully URL", "Status", "Feedback"]

    def test_status_and_feedback_applied(self, test_session, agency, post, workbook_bytes):
        content = workbook_bytes(self.HEADER, [["Northwind Coffee", URL, "approved", "Looks great"]])
        result = process_excel_upload(test_session, agency.id, content)
        assert result == {"updated": 1, "errors": []}

        test_session.refresh(post)
        assert post.status == PostStatus.APPROVED
        assert post.feedback == "Looks great"

    def test_report_round_trip(self, test_session, agency, post):
        """A downloaded report edited in place can be uploaded straight back."""
        wb = _load(generate_excel_report(test_session, agency.id))
        ws = wb["Posts Report"]
        ws.cell(row=2, column=POSTS_REPORT_HEADERS.index("Status") + 1, value="REJECTED")
        buffer = io.BytesIO()
        wb.save(buffer)

        result = process_excel_upload(test_session, agency.id, buffer.getvalue())
        assert result["updated"] == 1
        test_session.refresh(post)
        assert post.status == PostStatus.REJECTED

    def test_unknown_post(self, test_session, agency, post, workbook_bytes):
        content = workbook_bytes(self.HEADER, [["Northwind Coffee", "https://typefully.com/t/zz", "APPROVED", ""]])
        result = process_excel_upload(test_session, agency.id, content)
        assert result["updated"] == 0
        assert result["errors"] == [
            'Row 2: Post not found for client "Northwind Coffee" with URL "https://typefully.com/t/zz"'
        ]

    def test_invalid_status(self, test_session, agency, post, workbook_bytes):
        content = workbook_bytes(self.HEADER, [["Northwind Coffee", URL, "maybe", ""]])
        result = process_excel_upload(test_session, agency.id, content)
        assert result["errors"] == ['Row 2: Invalid status "MAYBE"']
        test_session.refresh(post)
        assert post.status == PostStatus.PENDING

    def test_error_row_number_after_blank_row(self, test_session, agency, post, workbook_bytes):
        content = workbook_bytes(
            self.HEADER,
            [[None, None, None, None], ["Northwind Coffee", URL, "bogus", ""]],
        )
        result = process_excel_upload(test_session, agency.id, content)
        assert result["errors"] == ['Row 3: Invalid status "BOGUS"']

    def test_other_agency_cannot_edit(self, test_session, agency, post, workbook_bytes):
        content = workbook_bytes(self.HEADER, [["Northwind Coffee", URL, "APPROVED", ""]])
        result = process_excel_upload(test_session, agency.id + 1, content)
        assert result["updated"] == 0
        assert len(result["errors"]) == 1


class TestProcessAnalyticsUpload:
    def test_import(self, test_session, agency, sample_client, workbook_bytes):
        content = workbook_bytes(
            ["Date", "Client Name", "Impressions", "Engagements"],
            [[datetime(2025, 8, 1), "Northwind Coffee", 500, 25], ["2025-08-02", "Nobody", 1, 1]],
        )
        result = process_analytics_upload(test_session, agency.id, content)
        assert result["imported"] == 1
        assert result["errors"] == ['Row 3: Client "Nobody" not found']

        record = test_session.query(Analytics).one()
        assert record.date == date(2025, 8, 1)
        assert record.engagement_rate == pytest.approx(0.05)
