"""
Unit tests for the usage query facade.
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from usage_ledger.core.query import UsageView, parse_view, query_usage
from usage_ledger.storage.repository import JsonFileUsageStore

TODAY = date(2024, 1, 10)


@pytest.fixture
def store(tmp_path):
    return JsonFileUsageStore(str(tmp_path / "usage.json"))


class TestParseView:
    """Test view selector resolution."""

    def test_known_views(self):
        for view in UsageView:
            assert parse_view(view.value) == view

    def test_case_insensitive(self):
        assert parse_view(" Daily ") == UsageView.DAILY

    def test_unknown_falls_back_to_all(self):
        assert parse_view("costs") == UsageView.ALL
        assert parse_view("") == UsageView.ALL
        assert parse_view(None) == UsageView.ALL


class TestQueryUsage:
    """Test views computed from a store."""

    def test_total_after_one_append(self, store, make_event):
        store.append(make_event(prompt_tokens=10, completion_tokens=5, user_id="u1", persona="p1"))

        total = query_usage(store, UsageView.TOTAL)

        assert total["totalTokens"] == 15
        assert total["totalRequests"] == 1
        assert total["totalUsers"] == 1

    def test_users_and_daily_for_one_user(self, store, make_event):
        store.append(make_event(prompt_tokens=10, completion_tokens=5,
                                timestamp=datetime(2024, 1, 8, 9, tzinfo=timezone.utc)))
        store.append(make_event(prompt_tokens=20, completion_tokens=5,
                                timestamp=datetime(2024, 1, 9, 9, tzinfo=timezone.utc)))

        users = query_usage(store, UsageView.USERS)
        assert len(users) == 1
        assert users[0]["totalTokens"] == 40
        assert users[0]["requestCount"] == 2

        daily = query_usage(store, UsageView.DAILY, days=2, today=TODAY - timedelta(days=1))
        assert [d["date"] for d in daily] == ["2024-01-08", "2024-01-09"]
        assert [d["totalTokens"] for d in daily] == [15, 25]

    def test_persona_ordering(self, store, make_event):
        store.append(make_event(persona="p2", prompt_tokens=5, completion_tokens=5))
        store.append(make_event(persona="p1", prompt_tokens=20, completion_tokens=10))

        personas = query_usage(store, UsageView.PERSONA)

        assert [(p["persona"], p["totalTokens"]) for p in personas] == [("p1", 30), ("p2", 10)]

    def test_daily_on_empty_store(self, store):
        daily = query_usage(store, UsageView.DAILY, days=7, today=TODAY)

        assert len(daily) == 7
        assert all(d["totalTokens"] == 0 and d["requestCount"] == 0 for d in daily)

    def test_hourly(self, store, make_event):
        store.append(make_event(timestamp=datetime(2024, 1, 9, 14, 30, tzinfo=timezone.utc)))

        hourly = query_usage(store, UsageView.HOURLY, tz=timezone.utc)

        assert len(hourly) == 24
        assert hourly[14] == {"hour": 14, "requestCount": 1, "totalTokens": 15}

    def test_records_newest_first(self, store, make_event):
        for day in (3, 5, 4):
            store.append(make_event(id=f"evt_{day}", timestamp=datetime(2024, 1, day, tzinfo=timezone.utc)))

        records = query_usage(store, UsageView.RECORDS)

        assert [r["id"] for r in records] == ["evt_5", "evt_4", "evt_3"]
        assert records[0]["timestamp"] == "2024-01-05T00:00:00.000Z"

    def test_all_views(self, store, make_event):
        store.append(make_event())

        report = query_usage(store, UsageView.ALL, days=3, today=TODAY, tz=timezone.utc)

        assert set(report) == {"total", "users", "daily", "persona", "hourly"}
        assert report["total"]["totalTokens"] == 15
        assert len(report["daily"]) == 3

    def test_all_views_read_history_once(self):
        store = MagicMock()
        store.read_all.return_value = []

        query_usage(store, UsageView.ALL, today=TODAY)

        store.read_all.assert_called_once_with()

    def test_days_must_be_positive(self, store):
        with pytest.raises(ValueError, match="days must be > 0"):
            query_usage(store, UsageView.DAILY, days=0)

    def test_days_upper_bound(self, store):
        with pytest.raises(ValueError, match="days must be <="):
            query_usage(store, UsageView.DAILY, days=1000000)

    def test_undecodable_store_gives_zero_views(self, tmp_path):
        path = tmp_path / "usage.json"
        path.write_bytes(b"\x80\x81")

        total = query_usage(JsonFileUsageStore(str(path)), UsageView.TOTAL)

        assert total["totalTokens"] == 0
        assert total["totalRequests"] == 0

    def test_unreadable_store_gives_zero_views(self, tmp_path):
        path = tmp_path / "usage.json"
        path.write_text("not json", encoding="utf-8")

        total = query_usage(JsonFileUsageStore(str(path)), UsageView.TOTAL)

        assert total == {
            "totalPromptTokens": 0,
            "totalCompletionTokens": 0,
            "totalTokens": 0,
            "totalRequests": 0,
            "totalUsers": 0,
        }
