# backend/routes/vendor_services/simulated_vendor_gateway.py
import asyncio
import logging
import random
import time
import uuid
from typing import Any, Dict, Optional, Tuple

from core.config import settings
from tasks.receipt_scheduler import BaseReceiptScheduler, ReceiptPayload, get_receipt_scheduler
from .base_vendor_gateway import BaseVendorGateway, VendorSendResult

logger = logging.getLogger(__name__)

VENDOR_ERRORS = (
    "Invalid email address",
    "Recipient mailbox full",
    "Network timeout",
    "Service temporarily unavailable",
    "Invalid message format",
)


class SimulatedVendorGateway(BaseVendorGateway):
    """Stand-in messaging vendor: random latency, injected rejections, delayed receipts for accepted messages"""

    name = "simulated"

    def __init__(self,
                 failure_rate: Optional[float] = None,
                 latency_range: Optional[Tuple[float, float]] = None,
                 receipt_delay_range: Optional[Tuple[float, float]] = None,
                 scheduler: Optional[BaseReceiptScheduler] = None,
                 rng: Optional[random.Random] = None,
                 sleep=asyncio.sleep):
        self.failure_rate = settings.VENDOR_FAILURE_RATE if failure_rate is None else failure_rate
        self.latency_range = latency_range or (
            settings.VENDOR_LATENCY_MIN_SECONDS, settings.VENDOR_LATENCY_MAX_SECONDS
        )
        self.receipt_delay_range = receipt_delay_range or (
            settings.RECEIPT_DELAY_MIN_SECONDS, settings.RECEIPT_DELAY_MAX_SECONDS
        )
        self._scheduler = scheduler
        self.rng = rng or random.Random()
        self._sleep = sleep

    @property
    def scheduler(self) -> BaseReceiptScheduler:
        return self._scheduler or get_receipt_scheduler()

    def _vendor_message_id(self) -> str:
        return f"vendor_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"

    async def send(self, message: Dict[str, Any]) -> VendorSendResult:
        message_id = str(message.get("_id") or message.get("message_id"))

        latency = self.rng.uniform(*self.latency_range)
        if latency > 0:
            await self._sleep(latency)

        if self.rng.random() < self.failure_rate:
            error = self.rng.choice(VENDOR_ERRORS)
            logger.info(f"❌ Vendor rejected {message_id} ({message.get('customer_email')}): {error}")
            return VendorSendResult(accepted=False, error_message=error)

        vendor_message_id = self._vendor_message_id()
        delay = self.rng.uniform(*self.receipt_delay_range)
        logger.debug(f"✅ Vendor accepted {message_id} as {vendor_message_id}, receipt in {delay:.2f}s")
        return VendorSendResult(
            accepted=True,
            vendor_message_id=vendor_message_id,
            receipt=ReceiptPayload(message_id=message_id, vendor_message_id=vendor_message_id),
            receipt_delay=delay,
        )

    def schedule_receipt(self, result: VendorSendResult) -> bool:
        if not result.accepted or result.receipt is None:
            return False
        try:
            self.scheduler.schedule(result.receipt, result.receipt_delay)
            return True
        except Exception as e:
            logger.error(f"❌ Could not schedule delivery receipt for {result.receipt.message_id}: {e}")
            return False
