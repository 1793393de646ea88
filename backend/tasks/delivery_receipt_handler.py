# backend/tasks/delivery_receipt_handler.py
import logging
from datetime import datetime
from typing import List, Optional

from core.errors import InvalidTransitionError, NotFoundError
from models.message_models import TERMINAL_STATUSES
from tasks.communication_log_store import (
    SENT,
    CommunicationLogStore, communication_log_store, message_log_store,
)

logger = logging.getLogger(__name__)


class DeliveryReceiptHandler:
    """Applies vendor delivery confirmations to SENT log entries.

    Receipts are advisory: anything that does not describe a legal
    SENT -> DELIVERED/FAILED move is ignored and reported as 0 updates.
    """

    def __init__(self, stores: Optional[List[CommunicationLogStore]] = None):
        self.stores = stores or [communication_log_store, message_log_store]

    async def on_receipt(self, message_id: str, vendor_message_id: Optional[str], final_status: str,
                         delivered_at: Optional[datetime] = None,
                         error_message: Optional[str] = None) -> int:
        try:
            final_status = (final_status or "").upper()
            if final_status not in TERMINAL_STATUSES:
                logger.debug(f"Ignoring receipt for {message_id} with status {final_status}")
                return 0

            for store in self.stores:
                entry = await store.get(message_id)
                if entry:
                    break
            else:
                logger.info(f"Receipt for unknown message {message_id} ignored")
                return 0

            if entry.get("status") != SENT:
                logger.info(f"Receipt for {message_id} ignored, entry is {entry.get('status')}")
                return 0

            stored_vendor_id = entry.get("vendor_message_id")
            if vendor_message_id and stored_vendor_id and vendor_message_id != stored_vendor_id:
                logger.warning(
                    f"⚠️ Receipt vendor id {vendor_message_id} does not match {stored_vendor_id} for {message_id}"
                )
                return 0

            await store.apply_receipt(message_id, final_status, delivered_at, error_message)
            logger.debug(f"📬 {message_id} → {final_status}")
            return 1

        except (InvalidTransitionError, NotFoundError) as e:
            logger.info(f"Receipt for {message_id} not applied: {e}")
            return 0
        except Exception as e:
            logger.error(f"❌ Receipt processing failed for {message_id}: {e}")
            return 0


delivery_receipt_handler = DeliveryReceiptHandler()
