# backend/tasks/statistics_aggregator.py
"""
Read-only statistics over communication log entries and standalone messages.

`aggregate` builds the trailing-window hourly histogram used by the
dashboard chart; `email_statistics` the status counts and rates. Both are
pure so they can be exercised without a database.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from core.config import settings
from core.errors import NotFoundError
from core.time_utils import as_utc, utcnow
from database import CAMPAIGNS, COMMUNICATION_LOGS, CUSTOMERS, MESSAGES, SEGMENTS
from repository import BaseRepository, get_repository
from tasks.communication_log_store import DELIVERED, FAILED, PENDING, SENT

logger = logging.getLogger(__name__)

UNKNOWN_SEGMENT = "Unknown Segment"


def _rate(numerator: int, denominator: int) -> float:
    if not denominator:
        return 0.0
    return round(numerator / denominator * 100, 2)


def aggregate(entries: Iterable[Dict[str, Any]], window_days: Optional[int] = None,
              now: Optional[datetime] = None) -> Dict[str, Any]:
    """Hourly send counts for today and the previous window_days-1 UTC days, most recent first"""
    if window_days is None:
        window_days = settings.STATS_WINDOW_DAYS
    now = as_utc(now) or utcnow()

    days = [(now - timedelta(days=offset)).date() for offset in range(window_days)]
    buckets = {day: [0] * 24 for day in days}

    for entry in entries:
        sent_at = as_utc(entry.get("sent_at"))
        if sent_at is None or sent_at > now:
            continue
        hours = buckets.get(sent_at.date())
        if hours is not None:
            hours[sent_at.hour] += 1

    daily = []
    for day in days:
        hours = buckets[day]
        daily.append({
            "date": day.isoformat(),
            "total": sum(hours),
            "hourly": [{"hour": hour, "count": count} for hour, count in enumerate(hours)],
        })

    return {
        "total_messages": sum(d["total"] for d in daily),
        "window_days": window_days,
        "generated_at": now,
        "daily": daily,
    }


def email_statistics(entries: Iterable[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = as_utc(now) or utcnow()
    counts = defaultdict(int)
    delivery_minutes: List[float] = []
    recent = {"last_24h": 0, "last_7d": 0, "last_30d": 0}

    total = 0
    for entry in entries:
        total += 1
        status = entry.get("status")
        counts[status] += 1

        sent_at = as_utc(entry.get("sent_at"))
        delivered_at = as_utc(entry.get("delivered_at"))
        if status == DELIVERED and sent_at and delivered_at and delivered_at >= sent_at:
            delivery_minutes.append((delivered_at - sent_at).total_seconds() / 60)

        created_at = as_utc(entry.get("created_at"))
        if created_at and created_at <= now:
            age = now - created_at
            if age <= timedelta(hours=24):
                recent["last_24h"] += 1
            if age <= timedelta(days=7):
                recent["last_7d"] += 1
            if age <= timedelta(days=30):
                recent["last_30d"] += 1

    delivered = counts[DELIVERED]
    # accepted by the vendor, whether or not a receipt has arrived yet
    sent = counts[SENT] + delivered

    return {
        "total_messages": total,
        "sent_count": sent,
        "delivered_count": delivered,
        "failed_count": counts[FAILED],
        "pending_count": counts[PENDING],
        "success_rate": _rate(sent, total),
        "delivery_rate": _rate(delivered, sent),
        "average_delivery_time": round(sum(delivery_minutes) / len(delivery_minutes), 2) if delivery_minutes else 0.0,
        "recent_activity": recent,
    }


class StatisticsAggregator:
    def __init__(self, repository: Optional[BaseRepository] = None):
        self._repository = repository

    @property
    def repo(self) -> BaseRepository:
        return self._repository or get_repository()

    async def _all_entries(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        logs = await self.repo.find(COMMUNICATION_LOGS, filters)
        messages = await self.repo.find(MESSAGES, filters)
        return logs + messages

    async def _campaign(self, campaign_id: str) -> Dict[str, Any]:
        campaign = await self.repo.get(CAMPAIGNS, campaign_id)
        if not campaign:
            raise NotFoundError("Campaign", campaign_id)
        return campaign

    async def hourly_snapshot(self, window_days: Optional[int] = None) -> Dict[str, Any]:
        return aggregate(await self._all_entries(), window_days)

    async def message_statistics(self, start: Optional[datetime] = None,
                                 end: Optional[datetime] = None) -> Dict[str, Any]:
        created = {}
        if start:
            created["$gte"] = start
        if end:
            created["$lt"] = end
        filters = {"created_at": created} if created else None
        return email_statistics(await self._all_entries(filters))

    async def campaign_stats(self, campaign_id: str) -> Dict[str, Any]:
        campaign = await self._campaign(campaign_id)
        logs = await self.repo.find(COMMUNICATION_LOGS, {"campaign_id": campaign_id})
        stats = email_statistics(logs)
        stats["campaign_id"] = campaign_id
        stats["campaign_status"] = campaign.get("status")
        return stats

    async def campaign_stats_summary(self, campaign_ids: List[str]) -> Dict[str, Any]:
        """Per-campaign counts and rates for the given ids plus combined totals; unknown ids are listed apart"""
        campaign_ids = list(dict.fromkeys(campaign_ids))
        found = {c["_id"] for c in await self.repo.find_by_ids(CAMPAIGNS, campaign_ids)}
        known = [cid for cid in campaign_ids if cid in found]

        by_campaign = defaultdict(list)
        if known:
            for log in await self.repo.find(COMMUNICATION_LOGS, {"campaign_id": {"$in": known}}):
                by_campaign[log.get("campaign_id")].append(log)

        rows = []
        for campaign_id in known:
            stats = email_statistics(by_campaign[campaign_id])
            rows.append({
                "campaign_id": campaign_id,
                "total": stats["total_messages"],
                "sent": stats["sent_count"],
                "failed": stats["failed_count"],
                "delivered": stats["delivered_count"],
                "pending": stats["pending_count"],
                "success_rate": stats["success_rate"],
                "delivery_rate": stats["delivery_rate"],
            })

        totals = {field: sum(r[field] for r in rows) for field in ("total", "sent", "failed", "delivered", "pending")}
        return {
            "campaigns": rows,
            "overall": {
                "total_campaigns": len(rows),
                "total_messages": totals["total"],
                "total_sent": totals["sent"],
                "total_failed": totals["failed"],
                "total_delivered": totals["delivered"],
                "total_pending": totals["pending"],
                "overall_success_rate": _rate(totals["sent"], totals["total"]),
                "overall_delivery_rate": _rate(totals["delivered"], totals["sent"]),
            },
            "missing_campaign_ids": [cid for cid in campaign_ids if cid not in found],
        }

    async def success_rates(self) -> Dict[str, Any]:
        campaigns = await self.repo.find(CAMPAIGNS, sort=[("created_at", -1)])
        segments = {s["_id"]: s for s in await self.repo.find(SEGMENTS)}
        logs = await self.repo.find(COMMUNICATION_LOGS)

        by_campaign = defaultdict(list)
        for log in logs:
            by_campaign[log.get("campaign_id")].append(log)

        campaign_rows = []
        for campaign in campaigns:
            stats = email_statistics(by_campaign.get(campaign["_id"], []))
            segment = segments.get(campaign.get("segment_id"))
            campaign_rows.append({
                "campaign_id": campaign["_id"],
                "subject": campaign.get("subject"),
                "status": campaign.get("status"),
                "created_at": campaign.get("created_at"),
                "segment_id": campaign.get("segment_id"),
                "segment_name": segment.get("name") if segment else UNKNOWN_SEGMENT,
                "total_messages": stats["total_messages"],
                "sent_count": stats["sent_count"],
                "delivered_count": stats["delivered_count"],
                "failed_count": stats["failed_count"],
                "pending_count": stats["pending_count"],
                "success_rate": stats["success_rate"],
                "delivery_rate": stats["delivery_rate"],
            })

        with_messages = [row for row in campaign_rows if row["total_messages"]]
        overall = {
            "total_campaigns": len(campaign_rows),
            "total_messages": sum(r["total_messages"] for r in campaign_rows),
            "total_sent": sum(r["sent_count"] for r in campaign_rows),
            "total_delivered": sum(r["delivered_count"] for r in campaign_rows),
            "total_failed": sum(r["failed_count"] for r in campaign_rows),
            "average_success_rate": round(
                sum(r["success_rate"] for r in with_messages) / len(with_messages), 2
            ) if with_messages else 0.0,
            "average_delivery_rate": round(
                sum(r["delivery_rate"] for r in with_messages) / len(with_messages), 2
            ) if with_messages else 0.0,
        }

        grouped: Dict[str, Dict[str, Any]] = {}
        for row in campaign_rows:
            key = row["segment_id"] if row["segment_name"] != UNKNOWN_SEGMENT else UNKNOWN_SEGMENT
            group = grouped.setdefault(key, {
                "segment_id": row["segment_id"] if key != UNKNOWN_SEGMENT else None,
                "segment_name": row["segment_name"],
                "campaign_count": 0,
                "total_messages": 0,
                "sent_count": 0,
                "delivered_count": 0,
                "failed_count": 0,
            })
            group["campaign_count"] += 1
            for field in ("total_messages", "sent_count", "delivered_count", "failed_count"):
                group[field] += row[field]

        segment_breakdown = []
        for group in grouped.values():
            group["success_rate"] = _rate(group["sent_count"], group["total_messages"])
            group["delivery_rate"] = _rate(group["delivered_count"], group["sent_count"])
            segment_breakdown.append(group)

        return {
            "campaigns": campaign_rows,
            "overall_stats": overall,
            "segment_breakdown": segment_breakdown,
        }

    async def segment_breakdown(self, campaign_id: str) -> Dict[str, Any]:
        campaign = await self._campaign(campaign_id)
        segment = await self.repo.get(SEGMENTS, campaign.get("segment_id")) if campaign.get("segment_id") else None
        logs = await self.repo.find(COMMUNICATION_LOGS, {"campaign_id": campaign_id})
        stats = email_statistics(logs)

        return {
            "campaign_id": campaign_id,
            "segment": {
                "segment_id": campaign.get("segment_id"),
                "segment_name": segment.get("name") if segment else UNKNOWN_SEGMENT,
                "customer_count": segment.get("customer_count", 0) if segment else 0,
            },
            "statistics": stats,
            "status_breakdown": [
                {"status": status, "count": sum(1 for log in logs if log.get("status") == status)}
                for status in (PENDING, SENT, DELIVERED, FAILED)
            ],
        }

    async def summary(self) -> Dict[str, Any]:
        return {
            "segments": await self.repo.count(SEGMENTS),
            "campaigns": await self.repo.count(CAMPAIGNS),
            "customers": await self.repo.count(CUSTOMERS),
            "messages": email_statistics(await self._all_entries()),
            "generated_at": utcnow(),
        }


statistics_aggregator = StatisticsAggregator()
