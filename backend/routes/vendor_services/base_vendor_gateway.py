# backend/routes/vendor_services/base_vendor_gateway.py
from typing import Any, Dict, Optional
from dataclasses import dataclass

from tasks.receipt_scheduler import ReceiptPayload

@dataclass
class VendorSendResult:
    accepted: bool
    vendor_message_id: Optional[str] = None
    error_message: Optional[str] = None
    receipt: Optional[ReceiptPayload] = None
    receipt_delay: float = 0.0

class BaseVendorGateway:
    name = "base"

    async def send(self, message: Dict[str, Any]) -> VendorSendResult:
        raise NotImplementedError("send must be implemented by subclasses")

    def schedule_receipt(self, result: VendorSendResult) -> bool:
        """Release the receipt of an accepted send; call once the SENT state is stored"""
        return False
