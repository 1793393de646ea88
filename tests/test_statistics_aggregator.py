"""
Tests for hourly aggregation and delivery statistics.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from core.config import settings
from database import CAMPAIGNS, COMMUNICATION_LOGS, MESSAGES, SEGMENTS
from tasks.statistics_aggregator import (
    UNKNOWN_SEGMENT, StatisticsAggregator, aggregate, email_statistics,
)

NOW = datetime(2024, 5, 10, 15, 30, tzinfo=timezone.utc)


def entry(status, sent_at=None, delivered_at=None, created_at=NOW, **extra):
    doc = {"status": status, "sent_at": sent_at, "delivered_at": delivered_at, "created_at": created_at}
    doc.update(extra)
    return doc


class TestAggregate:

    def test_empty_window_is_all_zeros(self):
        result = aggregate([], window_days=7, now=NOW)

        assert result["total_messages"] == 0
        assert len(result["daily"]) == 7
        for day in result["daily"]:
            assert day["total"] == 0
            assert [h["hour"] for h in day["hourly"]] == list(range(24))
            assert {h["count"] for h in day["hourly"]} == {0}

    def test_days_are_most_recent_first(self):
        dates = [d["date"] for d in aggregate([], window_days=3, now=NOW)["daily"]]
        assert dates == ["2024-05-10", "2024-05-09", "2024-05-08"]

    def test_entries_land_in_their_hour(self):
        entries = [
            entry("SENT", sent_at=datetime(2024, 5, 10, 9, 5, tzinfo=timezone.utc)),
            entry("DELIVERED", sent_at=datetime(2024, 5, 10, 9, 55, tzinfo=timezone.utc)),
            entry("SENT", sent_at=datetime(2024, 5, 8, 23, 59, tzinfo=timezone.utc)),
        ]

        result = aggregate(entries, window_days=7, now=NOW)

        today, _, two_days_ago = result["daily"][:3]
        assert today["hourly"][9]["count"] == 2
        assert today["total"] == 2
        assert two_days_ago["hourly"][23]["count"] == 1
        assert result["total_messages"] == 3

    def test_day_totals_equal_hour_sums(self):
        entries = [entry("SENT", sent_at=NOW - timedelta(hours=h)) for h in range(0, 100, 7)]
        for day in aggregate(entries, window_days=7, now=NOW)["daily"]:
            assert day["total"] == sum(h["count"] for h in day["hourly"])

    def test_skips_unsent_future_and_stale_entries(self):
        entries = [
            entry("PENDING"),
            entry("SENT", sent_at=NOW + timedelta(minutes=5)),
            entry("SENT", sent_at=NOW - timedelta(days=30)),
            entry("SENT", sent_at="not a date"),
        ]
        assert aggregate(entries, window_days=7, now=NOW)["total_messages"] == 0

    def test_accepts_iso_strings(self):
        entries = [entry("SENT", sent_at="2024-05-10T14:00:00Z")]
        today = aggregate(entries, window_days=1, now=NOW)["daily"][0]
        assert today["hourly"][14]["count"] == 1

    def test_zero_day_window_is_empty(self):
        result = aggregate([entry("SENT", sent_at=NOW)], window_days=0, now=NOW)

        assert result["window_days"] == 0
        assert result["daily"] == []
        assert result["total_messages"] == 0

    def test_default_window_comes_from_settings(self):
        with patch.object(settings, "STATS_WINDOW_DAYS", 3):
            assert len(aggregate([], now=NOW)["daily"]) == 3


class TestEmailStatistics:

    def test_rates(self):
        sent_at = NOW - timedelta(minutes=10)
        entries = [
            entry("DELIVERED", sent_at=sent_at, delivered_at=sent_at + timedelta(minutes=2)),
            entry("DELIVERED", sent_at=sent_at, delivered_at=sent_at + timedelta(minutes=4)),
            entry("SENT", sent_at=sent_at),
            entry("FAILED"),
        ]

        stats = email_statistics(entries, now=NOW)

        assert stats["total_messages"] == 4
        assert stats["sent_count"] == 3
        assert stats["delivered_count"] == 2
        assert stats["failed_count"] == 1
        assert stats["success_rate"] == 75.0
        assert stats["delivery_rate"] == 66.67
        assert stats["average_delivery_time"] == 3.0

    def test_no_messages(self):
        stats = email_statistics([], now=NOW)
        assert stats["success_rate"] == 0.0
        assert stats["delivery_rate"] == 0.0
        assert stats["average_delivery_time"] == 0.0

    def test_recent_activity_windows(self):
        entries = [
            entry("SENT", created_at=NOW - timedelta(hours=2)),
            entry("SENT", created_at=NOW - timedelta(days=3)),
            entry("SENT", created_at=NOW - timedelta(days=20)),
            entry("SENT", created_at=NOW - timedelta(days=90)),
        ]
        assert email_statistics(entries, now=NOW)["recent_activity"] == {
            "last_24h": 1, "last_7d": 2, "last_30d": 3,
        }


class TestStatisticsAggregator:

    @pytest.mark.asyncio
    async def test_success_rates_per_campaign_and_segment(self, fallback_repo):
        await fallback_repo.insert(SEGMENTS, {"_id": "s1", "name": "VIP"})
        await fallback_repo.insert_many(CAMPAIGNS, [
            {"_id": "c1", "segment_id": "s1", "subject": "A", "status": "COMPLETED", "created_at": NOW},
            {"_id": "c2", "segment_id": "gone", "subject": "B", "status": "COMPLETED",
             "created_at": NOW - timedelta(days=1)},
        ])
        await fallback_repo.insert_many(COMMUNICATION_LOGS, [
            entry("DELIVERED", campaign_id="c1", sent_at=NOW),
            entry("FAILED", campaign_id="c1"),
            entry("SENT", campaign_id="c2", sent_at=NOW),
        ])

        result = await StatisticsAggregator(fallback_repo).success_rates()

        first, second = result["campaigns"]
        assert first["campaign_id"] == "c1"
        assert first["segment_name"] == "VIP"
        assert first["success_rate"] == 50.0
        assert first["delivery_rate"] == 100.0
        assert second["segment_name"] == UNKNOWN_SEGMENT
        assert result["overall_stats"]["total_campaigns"] == 2
        assert result["overall_stats"]["total_messages"] == 3
        names = sorted(s["segment_name"] for s in result["segment_breakdown"])
        assert names == [UNKNOWN_SEGMENT, "VIP"]

    @pytest.mark.asyncio
    async def test_hourly_snapshot_includes_standalone_messages(self, fallback_repo):
        now = datetime.now(timezone.utc)
        await fallback_repo.insert(COMMUNICATION_LOGS, entry("SENT", sent_at=now - timedelta(minutes=1)))
        await fallback_repo.insert(MESSAGES, entry("DELIVERED", sent_at=now - timedelta(minutes=1)))

        snapshot = await StatisticsAggregator(fallback_repo).hourly_snapshot()

        assert snapshot["total_messages"] == 2

    @pytest.mark.asyncio
    async def test_segment_breakdown_counts_each_status(self, fallback_repo):
        await fallback_repo.insert(SEGMENTS, {"_id": "s1", "name": "VIP", "customer_count": 3})
        await fallback_repo.insert(CAMPAIGNS, {"_id": "c1", "segment_id": "s1", "status": "COMPLETED"})
        await fallback_repo.insert_many(COMMUNICATION_LOGS, [
            entry("SENT", campaign_id="c1"),
            entry("DELIVERED", campaign_id="c1"),
            entry("DELIVERED", campaign_id="c1"),
        ])

        result = await StatisticsAggregator(fallback_repo).segment_breakdown("c1")

        counts = {row["status"]: row["count"] for row in result["status_breakdown"]}
        assert counts == {"PENDING": 0, "SENT": 1, "DELIVERED": 2, "FAILED": 0}
        assert result["segment"]["segment_name"] == "VIP"
        assert result["statistics"]["sent_count"] == 3

    @pytest.mark.asyncio
    async def test_stats_summary_for_selected_campaigns(self, fallback_repo):
        await fallback_repo.insert_many(CAMPAIGNS, [
            {"_id": "c1", "segment_id": "s1", "status": "COMPLETED"},
            {"_id": "c2", "segment_id": "s1", "status": "COMPLETED"},
            {"_id": "c3", "segment_id": "s1", "status": "COMPLETED"},
        ])
        await fallback_repo.insert_many(COMMUNICATION_LOGS, [
            entry("DELIVERED", campaign_id="c1"),
            entry("SENT", campaign_id="c1"),
            entry("FAILED", campaign_id="c1"),
            entry("PENDING", campaign_id="c1"),
            entry("DELIVERED", campaign_id="c2"),
            entry("FAILED", campaign_id="c3"),
        ])

        result = await StatisticsAggregator(fallback_repo).campaign_stats_summary(["c1", "c2", "gone", "c1"])

        first, second = result["campaigns"]
        assert first == {
            "campaign_id": "c1", "total": 4, "sent": 2, "failed": 1, "delivered": 1, "pending": 1,
            "success_rate": 50.0, "delivery_rate": 50.0,
        }
        assert second["campaign_id"] == "c2"
        assert second["success_rate"] == 100.0
        assert result["overall"] == {
            "total_campaigns": 2,
            "total_messages": 5,
            "total_sent": 3,
            "total_failed": 1,
            "total_delivered": 2,
            "total_pending": 1,
            "overall_success_rate": 60.0,
            "overall_delivery_rate": 66.67,
        }
        assert result["missing_campaign_ids"] == ["gone"]

    @pytest.mark.asyncio
    async def test_stats_summary_with_no_known_campaigns(self, fallback_repo):
        result = await StatisticsAggregator(fallback_repo).campaign_stats_summary(["gone"])

        assert result["campaigns"] == []
        assert result["overall"]["total_campaigns"] == 0
        assert result["overall"]["overall_success_rate"] == 0.0
