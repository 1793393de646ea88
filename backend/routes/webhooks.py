# backend/routes/webhooks.py
from fastapi import APIRouter
import logging

from models.message_models import DeliveryReceiptRequest
from tasks.delivery_receipt_handler import delivery_receipt_handler

router = APIRouter(tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/delivery-receipt")
async def delivery_receipt(receipt: DeliveryReceiptRequest):
    """Vendor delivery confirmation. Stale, duplicate or unknown receipts are acknowledged with updated_count 0."""
    updated_count = await delivery_receipt_handler.on_receipt(
        receipt.message_id,
        receipt.vendor_message_id,
        receipt.status,
        delivered_at=receipt.delivered_at,
        error_message=receipt.error_message,
    )

    if updated_count:
        message = f"Message {receipt.message_id} marked {receipt.status}"
    else:
        message = f"No update applied for message {receipt.message_id}"
    logger.debug(message)

    return {"success": True, "message": message, "updated_count": updated_count}
