# backend/routes/campaigns.py
from fastapi import APIRouter, HTTPException, Query
from typing import Dict, Any
import logging

from core.config import settings
from core.errors import ServiceError, NotFoundError
from core.time_utils import utcnow
from database import CAMPAIGNS, COMMUNICATION_LOGS, SEGMENTS
from models.campaign_models import (
    CampaignCreate, CampaignStatsSummaryRequest, CampaignUpdate, DeliverCampaignRequest,
)
from repository import get_repository, new_id
from tasks.campaign_dispatcher import campaign_dispatcher
from tasks.statistics_aggregator import email_statistics, statistics_aggregator

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/campaigns/deliver")
async def deliver_campaign(request: DeliverCampaignRequest):
    """Personalize and dispatch one message per segment member"""
    try:
        return await campaign_dispatcher.deliver(
            segment_id=request.segment_id,
            subject=request.subject,
            message_template=request.message,
            discount_percentage=request.discount_percentage,
            refresh_segment=request.refresh_segment,
        )

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Campaign delivery failed: {e}")
        raise HTTPException(status_code=500, detail=f"Campaign delivery failed: {str(e)}")


@router.post("/campaigns")
async def create_campaign(campaign: CampaignCreate):
    """Save a campaign without sending it"""
    try:
        repo = get_repository()
        if not await repo.get(SEGMENTS, campaign.segment_id):
            raise NotFoundError("Segment", campaign.segment_id)

        now = utcnow()
        campaign_doc = {
            "_id": new_id(),
            "segment_id": campaign.segment_id,
            "subject": campaign.subject,
            "message_template": campaign.message,
            "discount_percentage": (
                settings.DEFAULT_DISCOUNT_PERCENTAGE
                if campaign.discount_percentage is None else campaign.discount_percentage
            ),
            "status": campaign.status,
            "total_messages": 0,
            "sent_count": 0,
            "failed_count": 0,
            "created_at": now,
            "updated_at": now,
            "completed_at": None,
        }
        return await repo.insert(CAMPAIGNS, campaign_doc)

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Create campaign failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/campaigns")
async def list_campaigns(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100)
):
    try:
        repo = get_repository()
        skip = (page - 1) * limit
        campaigns = await repo.find(CAMPAIGNS, sort=[("created_at", -1)], skip=skip, limit=limit)
        total = await repo.count(CAMPAIGNS)

        return {
            "campaigns": campaigns,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        }

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"List campaigns failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/campaigns/success-rates")
async def get_success_rates():
    """Per-campaign success rates with overall and per-segment roll-ups"""
    try:
        return await statistics_aggregator.success_rates()

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Success rates failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/campaigns/stats/summary")
async def get_campaigns_stats_summary(request: CampaignStatsSummaryRequest):
    """Counts and rates for several campaigns at once, with combined totals"""
    try:
        return await statistics_aggregator.campaign_stats_summary(request.campaign_ids)

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Campaign stats summary failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/campaigns/{campaign_id}")
async def get_campaign(campaign_id: str):
    try:
        repo = get_repository()
        campaign = await repo.get(CAMPAIGNS, campaign_id)
        if not campaign:
            raise NotFoundError("Campaign", campaign_id)

        logs = await repo.find(COMMUNICATION_LOGS, {"campaign_id": campaign_id})
        campaign["delivery_stats"] = email_statistics(logs)
        return campaign

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Get campaign failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/campaigns/{campaign_id}")
async def update_campaign(campaign_id: str, campaign: CampaignUpdate):
    try:
        changes: Dict[str, Any] = {}
        if campaign.subject is not None:
            changes["subject"] = campaign.subject
        if campaign.message is not None:
            changes["message_template"] = campaign.message
        if campaign.discount_percentage is not None:
            changes["discount_percentage"] = campaign.discount_percentage
        if campaign.status is not None:
            changes["status"] = campaign.status
        changes["updated_at"] = utcnow()

        updated = await get_repository().update(CAMPAIGNS, campaign_id, changes)
        if updated is None:
            raise NotFoundError("Campaign", campaign_id)
        return updated

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Update campaign failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/campaigns/{campaign_id}")
async def delete_campaign(campaign_id: str):
    """Delete the campaign record; its communication log entries are kept"""
    try:
        if not await get_repository().delete(CAMPAIGNS, campaign_id):
            raise NotFoundError("Campaign", campaign_id)
        return {"message": "Campaign deleted successfully", "campaign_id": campaign_id}

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Delete campaign failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/campaigns/{campaign_id}/logs")
async def get_campaign_logs(campaign_id: str):
    try:
        repo = get_repository()
        if not await repo.get(CAMPAIGNS, campaign_id):
            raise NotFoundError("Campaign", campaign_id)

        logs = await repo.find(COMMUNICATION_LOGS, {"campaign_id": campaign_id}, sort=[("created_at", 1)])
        return {"campaign_id": campaign_id, "logs": logs, "total": len(logs)}

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Get campaign logs failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/campaigns/{campaign_id}/stats")
async def get_campaign_stats(campaign_id: str):
    try:
        return await statistics_aggregator.campaign_stats(campaign_id)

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Campaign stats failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/campaigns/{campaign_id}/stats/segment-breakdown")
async def get_campaign_segment_breakdown(campaign_id: str):
    try:
        return await statistics_aggregator.segment_breakdown(campaign_id)

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Segment breakdown failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
