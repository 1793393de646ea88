# backend/routes/messages.py
from fastapi import APIRouter, HTTPException, Query
from typing import Any, Dict, Optional
import logging

from core.errors import NotFoundError, ServiceError
from database import CUSTOMERS, MESSAGES
from models.message_models import MessageCreate
from repository import get_repository
from tasks.campaign_dispatcher import campaign_dispatcher
from tasks.communication_log_store import message_log_store
from tasks.message_composer import message_composer

router = APIRouter(tags=["messages"])
logger = logging.getLogger(__name__)


@router.post("/messages")
async def create_message(request: MessageCreate):
    """Queue a one-off personalized message for a single customer (status PENDING)"""
    try:
        customer = await get_repository().get(CUSTOMERS, request.customer_id)
        if not customer:
            raise NotFoundError("Customer", request.customer_id)

        message = message_composer.compose(
            [customer], request.message, request.discount_percentage, request.subject or ""
        )[0]
        created = await message_log_store.create_pending([message])
        return created[0]

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Create message failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/messages")
async def list_messages(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=1000),
    status: Optional[str] = Query(default=None)
):
    try:
        filters: Dict[str, Any] = {}
        if status and status.lower() != "all":
            filters["status"] = status.upper()

        repo = get_repository()
        skip = (page - 1) * limit
        messages = await repo.find(MESSAGES, filters, sort=[("created_at", -1)], skip=skip, limit=limit)
        total = await repo.count(MESSAGES, filters)

        return {
            "messages": messages,
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
        logger.error(f"List messages failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/messages/{message_id}/send")
async def send_message(message_id: str):
    try:
        return await campaign_dispatcher.send_single(message_id)

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Send message failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
