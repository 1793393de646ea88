# backend/tasks/campaign_dispatcher.py
"""
Campaign delivery pipeline:
materialize segment -> compose messages -> store PENDING log entries ->
concurrent vendor fan-out -> SENT/FAILED per entry -> campaign summary.

A vendor receipt is released only after its entry is stored as SENT.
Receipts may still be outstanding when deliver() returns; they advance
entries to DELIVERED in the background.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from core.config import settings
from core.errors import InvalidTransitionError, NotFoundError
from core.time_utils import utcnow
from database import CAMPAIGNS
from models.campaign_models import CampaignStatus
from repository import BaseRepository, get_repository, new_id
from routes.vendor_services import BaseVendorGateway, VendorSendResult, get_vendor_gateway
from tasks.communication_log_store import (
    PENDING, SENT,
    CommunicationLogStore, communication_log_store, message_log_store,
)
from tasks.message_composer import MessageComposer, message_composer
from tasks.segment_materializer import SegmentMaterializer, segment_materializer

logger = logging.getLogger(__name__)

VENDOR_API_ERROR = "Vendor API error"


class CampaignDispatcher:
    def __init__(self,
                 repository: Optional[BaseRepository] = None,
                 gateway: Optional[BaseVendorGateway] = None,
                 log_store: Optional[CommunicationLogStore] = None,
                 materializer: Optional[SegmentMaterializer] = None,
                 composer: Optional[MessageComposer] = None,
                 concurrency: Optional[int] = None):
        self._repository = repository
        self._gateway = gateway
        self.log_store = log_store or communication_log_store
        self.materializer = materializer or segment_materializer
        self.composer = composer or message_composer
        self.concurrency = concurrency or settings.DISPATCH_CONCURRENCY

    @property
    def repo(self) -> BaseRepository:
        return self._repository or get_repository()

    @property
    def gateway(self) -> BaseVendorGateway:
        return self._gateway or get_vendor_gateway()

    async def _send_one(self, message: Dict[str, Any], store: CommunicationLogStore,
                        semaphore: asyncio.Semaphore) -> Dict[str, Any]:
        async with semaphore:
            try:
                result = await self.gateway.send(message)
            except Exception as e:
                logger.error(f"❌ Vendor call failed for {message['_id']}: {e}")
                result = VendorSendResult(accepted=False, error_message=VENDOR_API_ERROR)

        if not result.accepted:
            return await store.mark_failed(message["_id"], result.error_message or VENDOR_API_ERROR)

        entry = await store.mark_sent(message["_id"], result.vendor_message_id)
        # the receipt must not race the SENT write
        self.gateway.schedule_receipt(result)
        return entry

    async def _fan_out(self, messages: List[Dict[str, Any]], store: CommunicationLogStore) -> List[Dict[str, Any]]:
        semaphore = asyncio.Semaphore(self.concurrency)
        return await asyncio.gather(*(self._send_one(m, store, semaphore) for m in messages))

    async def deliver(self, segment_id: str, subject: str, message_template: str,
                      discount_percentage: Optional[float] = None,
                      refresh_segment: bool = False) -> Dict[str, Any]:
        discount = settings.DEFAULT_DISCOUNT_PERCENTAGE if discount_percentage is None else discount_percentage

        segment = await self.materializer.ensure_materialized(segment_id, force=refresh_segment)
        customers = await self.materializer.load_members(segment)

        now = utcnow()
        campaign = {
            "_id": new_id(),
            "segment_id": segment_id,
            "subject": subject,
            "message_template": message_template,
            "discount_percentage": discount,
            "status": CampaignStatus.ACTIVE.value,
            "total_messages": len(customers),
            "sent_count": 0,
            "failed_count": 0,
            "created_at": now,
            "updated_at": now,
            "completed_at": None,
        }
        await self.repo.insert(CAMPAIGNS, campaign)
        campaign_id = campaign["_id"]
        logger.info(f"🚀 Delivering campaign {campaign_id} to {len(customers)} customers of segment {segment_id}")

        messages = self.composer.compose(customers, message_template, discount, subject, campaign_id)
        if messages:
            await self.log_store.create_pending(messages)

        entries = await self._fan_out(messages, self.log_store)
        sent_count = sum(1 for e in entries if e.get("status") == SENT)
        failed_count = len(entries) - sent_count

        finished = utcnow()
        await self.repo.update(CAMPAIGNS, campaign_id, {
            "status": CampaignStatus.COMPLETED.value,
            "sent_count": sent_count,
            "failed_count": failed_count,
            "completed_at": finished,
            "updated_at": finished,
        })

        logger.info(f"✅ Campaign {campaign_id}: {sent_count} sent, {failed_count} failed")
        return {
            "success": True,
            "campaign_id": campaign_id,
            "message": f"Campaign delivered: {sent_count} sent, {failed_count} failed",
            "total_messages": len(entries),
            "sent_count": sent_count,
            "failed_count": failed_count,
            "communication_logs": entries,
        }

    async def send_single(self, message_id: str, store: Optional[CommunicationLogStore] = None) -> Dict[str, Any]:
        """Dispatch one standalone PENDING message"""
        store = store or message_log_store
        message = await store.get(message_id)
        if not message:
            raise NotFoundError("Message", message_id)
        if message.get("status") != PENDING:
            raise InvalidTransitionError(message_id, message.get("status"), SENT)

        semaphore = asyncio.Semaphore(1)
        return await self._send_one(message, store, semaphore)


campaign_dispatcher = CampaignDispatcher()
