"""Tests for tweet, daily and follower analytics imports."""

from datetime import date, datetime

import pytest

from postflow.csv_processor import (
    normalize_followers_rows,
    normalize_twitter_rows,
    normalize_typefully_rows,
    process_followers_file,
    process_uploaded_file,
)
from postflow.ingest import IngestError, NotFoundError
from postflow.models import Analytics, FollowerAnalytics, TweetAnalytics, UploadStatus
from postflow.parsing import utcnow

TYPEFULLY_HEADER = (
    "tweet_id,created_at,text,url,retweet_count,reply_count,like_count,quote_count,"
    "impression_count,user_profile_clicks,bookmark_count,url_link_clicks,total_engagements,"
    "engagement_rate,is_thread_head,is_thread_part,is_note_tweet,conversation_length"
)

TWITTER_HEADER = (
    "Date,Impressions,Likes,Engagements,Bookmarks,Shares,New follows,Unfollows,Replies,"
    "Reposts,Profile visits,Create Post,Video views,Media views"
)


def _typefully_csv(like_count: int = 10) -> str:
    row = (
        f"123,2025-08-01T10:00:00Z,Hello world,https://x.com/i/status/123,2,1,{like_count},0,"
        "1000,4,3,5,50,5.0,true,false,no,1"
    )
    return f"{TYPEFULLY_HEADER}\n{row}\n"


def _twitter_csv(*rows: str) -> str:
    return TWITTER_HEADER + "\n" + "\n".join(rows) + "\n"


def _twitter_row(day: str, impressions: int = 1000, engagements: int = 40) -> str:
    return f"{day},{impressions},20,{engagements},1,0,3,0,2,5,10,0,7,9"


# ---------------------------------------------------------------------------
# Normalizers
# ---------------------------------------------------------------------------


class TestNormalizeTypefullyRows:
    def test_maps_all_fields(self):
        rows = [{
            "tweet_id": "123",
            "created_at": "2025-08-01T10:00:00Z",
            "text": "Hello",
            "url": "https://x.com/i/status/123",
            "impression_count": "1,000",
            "total_engagements": "50",
            "engagement_rate": "5.0",
            "is_thread_head": "TRUE",
            "is_note_tweet": "0",
            "conversation_length": "3",
        }]
        [record] = normalize_typefully_rows(rows)
        assert record["tweet_id"] == "123"
        assert record["tweet_url"] == "https://x.com/i/status/123"
        assert record["created_at"] == datetime(2025, 8, 1, 10, 0)
        assert record["impression_count"] == 1000
        assert record["total_engagements"] == 50
        assert record["engagement_rate"] == pytest.approx(5.0)
        assert record["is_thread_head"] is True
        assert record["is_note_tweet"] is False
        assert record["like_count"] == 0
        assert record["conversation_length"] == 3

    def test_rows_without_tweet_id_dropped(self):
        rows = [{"tweet_id": "", "created_at": "2025-08-01"}, {"tweet_id": "9", "created_at": "2025-08-01"}]
        assert [r["tweet_id"] for r in normalize_typefully_rows(rows)] == ["9"]

    def test_strict_reports_bad_created_at(self):
        errors: list[str] = []
        records = normalize_typefully_rows(
            [{"tweet_id": "1", "created_at": "soon"}], errors, strict=True
        )
        assert records == []
        assert errors == ['Row 2: Invalid created_at "soon"']


class TestNormalizeTwitterRows:
    def test_maps_renamed_columns(self):
        rows = [{
            "date": "2025-08-01",
            "impressions": "1000",
            "engagements": "40",
            "likes": "20",
            "replies": "2",
            "reposts": "5",
            "profile visits": "10",
            "new follows": "3",
            "media views": "9",
            "video views": "7",
        }]
        [record] = normalize_twitter_rows(rows)
        assert record["date"] == date(2025, 8, 1)
        assert record["retweets"] == 5
        assert record["profile_clicks"] == 10
        assert record["follows"] == 3
        assert record["media_views"] == 9
        assert record["media_engagements"] == 7
        assert record["url_clicks"] == 0
        assert record["dial_phone"] == 0
        assert record["engagement_rate"] == pytest.approx(0.04)
        assert record["click_through_rate"] == pytest.approx(0.01)

    def test_rows_without_date_dropped(self):
        rows = [{"date": "", "impressions": "5"}, {"date": "2025-08-02", "impressions": "5"}]
        assert len(normalize_twitter_rows(rows)) == 1

    def test_rates_zero_without_impressions(self):
        [record] = normalize_twitter_rows([{"date": "2025-08-01", "engagements": "4"}])
        assert record["engagement_rate"] == 0.0
        assert record["click_through_rate"] == 0.0

    def test_lenient_bad_date_uses_today(self):
        [record] = normalize_twitter_rows([{"date": "yesterday-ish"}])
        assert record["date"] == utcnow().date()

    def test_strict_bad_date_reported(self):
        errors: list[str] = []
        records = normalize_twitter_rows(
            [{"date": "2025-08-01"}, {"date": "yesterday-ish"}], errors, strict=True
        )
        assert len(records) == 1
        assert errors == ['Row 3: Invalid date "yesterday-ish"']


class TestNormalizeFollowersRows:
    def test_followers_gained_from_previous_row(self):
        rows = [
            {"date range": "2025-08-02 - 2025-08-08", "followers": "1000"},
            {"date range": "2025-08-09 - 2025-08-15", "followers": "1050"},
        ]
        records = normalize_followers_rows(rows)
        assert [r["followers_gained"] for r in records] == [0, 50]
        assert records[0]["start_date"] == date(2025, 8, 2)
        assert records[0]["end_date"] == date(2025, 8, 8)

    def test_single_date_used_for_both_ends(self):
        [record] = normalize_followers_rows([{"date range": "2025-08-02", "followers": "10"}])
        assert record["start_date"] == record["end_date"] == date(2025, 8, 2)

    def test_blank_and_invalid_rows_skipped_without_breaking_delta(self):
        rows = [
            {"date range": "2025-08-02 - 2025-08-08", "followers": "1000"},
            {"date range": "2025-08-09 - 2025-08-15", "followers": ""},
            {"date range": "2025-08-16 - 2025-08-22", "followers": "n/a"},
            {"date range": "2025-08-23 - 2025-08-29", "followers": "980"},
        ]
        records = normalize_followers_rows(rows)
        assert [r["follower_count"] for r in records] == [1000, 980]
        assert records[1]["followers_gained"] == -20

    def test_negative_count_clamped_before_delta(self):
        rows = [
            {"date range": "2025-08-02 - 2025-08-08", "followers": "-5"},
            {"date range": "2025-08-09 - 2025-08-15", "followers": "30"},
        ]
        records = normalize_followers_rows(rows)
        assert [r["follower_count"] for r in records] == [0, 30]
        assert [r["followers_gained"] for r in records] == [0, 30]

    def test_thousands_separator(self):
        [record] = normalize_followers_rows([{"date range": "2025-08-02", "followers": "1,050"}])
        assert record["follower_count"] == 1050

    def test_header_variants(self):
        rows = [{"week date range": "2025-08-02", "total followers": "7"}]
        [record] = normalize_followers_rows(rows, ["week date range", "total followers"])
        assert record["follower_count"] == 7


# ---------------------------------------------------------------------------
# process_uploaded_file
# ---------------------------------------------------------------------------


class TestProcessTypefullyUpload:
    def test_first_import_creates(self, test_session, sample_client, make_upload):
        upload = make_upload()
        result = process_uploaded_file(test_session, upload.id, sample_client.id, _typefully_csv())
        assert result["success"] is True
        assert result["format"] == "typefully-tweets"
        assert result["newRecords"] == 1
        assert result["updatedRecords"] == 0
        assert result["processedRecords"] == 1

    def test_second_import_updates(self, test_session, sample_client, make_upload):
        process_uploaded_file(test_session, make_upload().id, sample_client.id, _typefully_csv(10))
        result = process_uploaded_file(
            test_session, make_upload().id, sample_client.id, _typefully_csv(99)
        )
        assert result["newRecords"] == 0
        assert result["updatedRecords"] == 1

        tweets = test_session.query(TweetAnalytics).all()
        assert len(tweets) == 1
        assert tweets[0].like_count == 99
        assert tweets[0].impression_count == 1000

    def test_upload_finalized(self, test_session, sample_client, make_upload):
        upload = make_upload()
        process_uploaded_file(test_session, upload.id, sample_client.id, _typefully_csv())
        test_session.refresh(upload)
        assert upload.processed is True
        assert upload.status == UploadStatus.FINALIZED.value
        assert upload.format == "typefully-tweets"
        assert upload.records_created == 1

    def test_no_valid_tweets_fatal(self, test_session, sample_client, make_upload):
        csv_content = f"{TYPEFULLY_HEADER}\n,2025-08-01,no id\n"
        with pytest.raises(IngestError, match="No valid tweet data"):
            process_uploaded_file(test_session, make_upload().id, sample_client.id, csv_content)


class TestProcessTwitterUpload:
    def test_daily_rows_saved(self, test_session, sample_client, make_upload):
        upload = make_upload()
        csv_content = _twitter_csv(_twitter_row("2025-08-01"), _twitter_row("2025-08-02"))
        result = process_uploaded_file(test_session, upload.id, sample_client.id, csv_content)
        assert result["format"] == "twitter-legacy"
        assert result["newRecords"] == 2
        rows = test_session.query(Analytics).order_by(Analytics.date).all()
        assert [r.date for r in rows] == [date(2025, 8, 1), date(2025, 8, 2)]
        assert all(r.upload_id == upload.id for r in rows)

    def test_overlapping_export_replaces_range(self, test_session, sample_client, make_upload):
        first = make_upload("week1.csv")
        process_uploaded_file(
            test_session,
            first.id,
            sample_client.id,
            _twitter_csv(*[_twitter_row(f"2025-08-0{d}", impressions=100) for d in range(1, 6)]),
        )

        second = make_upload("week2.csv")
        process_uploaded_file(
            test_session,
            second.id,
            sample_client.id,
            _twitter_csv(_twitter_row("2025-08-03", impressions=500), _twitter_row("2025-08-07", impressions=500)),
        )

        rows = {r.date: r for r in test_session.query(Analytics).all()}
        # Days inside the new export's span come only from the new upload
        assert sorted(rows) == [date(2025, 8, 1), date(2025, 8, 2), date(2025, 8, 3), date(2025, 8, 7)]
        assert rows[date(2025, 8, 3)].impressions == 500
        assert rows[date(2025, 8, 1)].upload_id == first.id

    def test_reimport_same_upload_is_idempotent(self, test_session, sample_client, make_upload):
        upload = make_upload()
        csv_content = _twitter_csv(_twitter_row("2025-08-01"), _twitter_row("2025-08-02"))
        process_uploaded_file(test_session, upload.id, sample_client.id, csv_content)
        process_uploaded_file(test_session, upload.id, sample_client.id, csv_content)
        assert test_session.query(Analytics).count() == 2

    def test_duplicate_day_in_file_skipped(self, test_session, sample_client, make_upload):
        csv_content = _twitter_csv(_twitter_row("2025-08-01"), _twitter_row("2025-08-01"))
        result = process_uploaded_file(test_session, make_upload().id, sample_client.id, csv_content)
        assert result["newRecords"] == 1
        assert result["skippedRecords"] == 1
        assert test_session.query(Analytics).count() == 1

    def test_empty_content_fatal(self, test_session, sample_client, make_upload):
        upload = make_upload()
        with pytest.raises(IngestError, match="empty") as excinfo:
            process_uploaded_file(test_session, upload.id, sample_client.id, "")
        assert str(excinfo.value).startswith("CSV processing failed: ")

        test_session.refresh(upload)
        assert upload.status == UploadStatus.FAILED.value
        assert "empty" in upload.error_message
        assert upload.processed is False

    def test_strict_mode_reports_bad_dates(self, test_session, sample_client, make_upload, strict_parsing):
        csv_content = _twitter_csv(_twitter_row("2025-08-01"), _twitter_row("someday"))
        result = process_uploaded_file(test_session, make_upload().id, sample_client.id, csv_content)
        assert result["newRecords"] == 1
        assert result["errors"] == ['Row 3: Invalid date "someday"']


class TestProcessUploadedFileLookups:
    def test_unknown_upload(self, test_session, sample_client):
        with pytest.raises(NotFoundError, match="Upload record not found"):
            process_uploaded_file(test_session, 999, sample_client.id, _typefully_csv())

    def test_unknown_client(self, test_session, make_upload):
        upload = make_upload()
        with pytest.raises(NotFoundError, match="Client not found"):
            process_uploaded_file(test_session, upload.id, 999, _typefully_csv())
        test_session.refresh(upload)
        assert upload.status == UploadStatus.FAILED.value


# ---------------------------------------------------------------------------
# process_followers_file
# ---------------------------------------------------------------------------


class TestProcessFollowersFile:
    CSV = "Date Range,Followers\n2025-08-02 - 2025-08-08,1000\n2025-08-09 - 2025-08-15,1050\n"

    def test_import(self, test_session, sample_client, make_upload):
        result = process_followers_file(test_session, make_upload().id, sample_client.id, self.CSV)
        assert result["format"] == "followers"
        assert result["newRecords"] == 2

        rows = test_session.query(FollowerAnalytics).order_by(FollowerAnalytics.start_date).all()
        assert [r.followers_gained for r in rows] == [0, 50]

    def test_reimport_updates(self, test_session, sample_client, make_upload):
        process_followers_file(test_session, make_upload().id, sample_client.id, self.CSV)
        result = process_followers_file(test_session, make_upload().id, sample_client.id, self.CSV)
        assert result["newRecords"] == 0
        assert result["updatedRecords"] == 2
        assert test_session.query(FollowerAnalytics).count() == 2

    def test_wrong_headers(self, test_session, sample_client, make_upload):
        with pytest.raises(IngestError) as excinfo:
            process_followers_file(
                test_session, make_upload().id, sample_client.id, "Date,Count\n2025-08-02,3\n"
            )
        assert str(excinfo.value) == (
            'Followers CSV processing failed: Invalid followers CSV format. '
            'Expected "Date Range" and "Followers" columns'
        )

    def test_no_valid_rows(self, test_session, sample_client, make_upload):
        with pytest.raises(IngestError, match="No valid follower data"):
            process_followers_file(
                test_session, make_upload().id, sample_client.id, "Date Range,Followers\n2025-08-02,\n"
            )

    def test_empty(self, test_session, sample_client, make_upload):
        with pytest.raises(IngestError, match="Followers CSV processing failed: .*empty"):
            process_followers_file(test_session, make_upload().id, sample_client.id, "")
