# backend/tasks/receipt_tasks.py
import logging

import httpx

from celery_app import celery_app
from core.config import settings
from core.time_utils import utcnow

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=settings.MAX_RECEIPT_RETRIES, queue="receipts",
                 name="tasks.send_delivery_receipt")
def send_delivery_receipt(self, message_id, vendor_message_id=None, status="DELIVERED",
                          delivered_at=None, error_message=None):
    """Post a delayed vendor confirmation to the delivery-receipt webhook"""
    payload = {
        "message_id": message_id,
        "vendor_message_id": vendor_message_id,
        "status": status,
        "delivered_at": delivered_at or (utcnow().isoformat() if status == "DELIVERED" else None),
        "error_message": error_message,
    }

    try:
        response = httpx.post(
            settings.RECEIPT_CALLBACK_URL,
            json=payload,
            timeout=settings.RECEIPT_CALLBACK_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        updated_count = response.json().get("updated_count", 0)
        logger.info(f"📬 Receipt delivered for {message_id}: updated={updated_count}")
        return {"message_id": message_id, "updated_count": updated_count}

    except httpx.HTTPError as e:
        logger.warning(f"⚠️ Receipt callback failed for {message_id}: {e}")
        raise self.retry(countdown=5 * (self.request.retries + 1), exc=e)
