# backend/routes/email_messages.py
"""Sent-message history across campaign log entries and standalone messages"""
from fastapi import APIRouter, HTTPException, Query
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
import logging

from core.config import settings
from core.errors import InvalidTransitionError, NotFoundError, ServiceError
from core.time_utils import as_utc, parse_day
from models.message_models import DeliveryStatusUpdate
from tasks.communication_log_store import (
    SENT, CommunicationLogStore, communication_log_store, message_log_store,
)
from tasks.statistics_aggregator import statistics_aggregator

router = APIRouter(tags=["messages"])
logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _day_bounds(start_date: Optional[str], end_date: Optional[str]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive YYYY-MM-DD bounds as [start 00:00, day after end 00:00) in UTC"""
    bounds = []
    for label, raw in (("start_date", start_date), ("end_date", end_date)):
        day = parse_day(raw)
        if raw and day is None:
            raise HTTPException(status_code=422, detail=f"{label} must be YYYY-MM-DD")
        bounds.append(day)

    start_day, end_day = bounds
    start = datetime.combine(start_day, time.min, tzinfo=timezone.utc) if start_day else None
    end = datetime.combine(end_day + timedelta(days=1), time.min, tzinfo=timezone.utc) if end_day else None
    return start, end


def _newest_first(entry: Dict[str, Any]) -> datetime:
    return as_utc(entry.get("sent_at")) or as_utc(entry.get("created_at")) or _EPOCH


async def _find_entry(message_id: str) -> Tuple[CommunicationLogStore, Dict[str, Any]]:
    for store in (communication_log_store, message_log_store):
        entry = await store.get(message_id)
        if entry:
            return store, entry
    raise NotFoundError("Message", message_id)


@router.get("/sent-messages")
async def list_sent_messages(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1),
    status: Optional[str] = Query(default=None),
    customer_id: Optional[str] = Query(default=None),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None)
):
    try:
        limit = min(limit, settings.MAX_PAGE_LIMIT)

        filters: Dict[str, Any] = {}
        if status and status.lower() != "all":
            filters["status"] = status.upper()
        if customer_id:
            filters["customer_id"] = customer_id

        start, end = _day_bounds(start_date, end_date)
        sent_range = {}
        if start:
            sent_range["$gte"] = start
        if end:
            sent_range["$lt"] = end
        if sent_range:
            filters["sent_at"] = sent_range

        entries: List[Dict[str, Any]] = []
        for store in (communication_log_store, message_log_store):
            entries.extend(await store.list_entries(filters))
        entries.sort(key=_newest_first, reverse=True)

        total = len(entries)
        skip = (page - 1) * limit
        return {
            "messages": entries[skip:skip + limit],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"List sent messages failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/sent-messages/stats")
async def sent_message_stats(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate")
):
    try:
        start, end = _day_bounds(start_date, end_date)
        statistics = await statistics_aggregator.message_statistics(start, end)
        return {
            "statistics": statistics,
            "period": {"start_date": start_date, "end_date": end_date},
        }

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Sent message stats failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/sent-messages/{message_id}")
async def get_sent_message(message_id: str):
    try:
        _, entry = await _find_entry(message_id)
        return entry

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Get sent message failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/sent-messages/{message_id}/delivery-status")
async def update_delivery_status(message_id: str, update: DeliveryStatusUpdate):
    """Manually settle a SENT message as DELIVERED or FAILED"""
    try:
        store, entry = await _find_entry(message_id)
        if entry.get("status") != SENT:
            raise InvalidTransitionError(message_id, entry.get("status"), update.status)

        updated = await store.apply_receipt(message_id, update.status, update.delivered_at, update.error_message)
        logger.info(f"Delivery status of {message_id} set to {update.status}")
        return updated

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Update delivery status failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
