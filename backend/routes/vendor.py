# backend/routes/vendor.py
from fastapi import APIRouter, HTTPException
import logging

from models.message_models import MessageStatus, VendorSendRequest
from routes.vendor_services import get_vendor_gateway

router = APIRouter(tags=["vendor"])
logger = logging.getLogger(__name__)


@router.post("/vendor/send")
async def vendor_send(request: VendorSendRequest):
    """Simulated vendor endpoint: synchronous accept/reject, receipt follows later for accepted messages"""
    try:
        gateway = get_vendor_gateway()
        result = await gateway.send({
            "_id": request.message_id,
            "customer_email": request.customer_email,
            "customer_name": request.customer_name,
            "subject": request.subject,
            "body": request.message,
        })
        gateway.schedule_receipt(result)

        response = {
            "success": result.accepted,
            "message_id": request.message_id,
            "vendor_message_id": result.vendor_message_id,
            "status": MessageStatus.SENT.value if result.accepted else MessageStatus.FAILED.value,
        }
        if not result.accepted:
            response["error_message"] = result.error_message
        return response

    except Exception as e:
        logger.error(f"Vendor send failed for {request.message_id}: {e}")
        raise HTTPException(status_code=500, detail="Vendor API error")
