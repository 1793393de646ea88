# backend/tasks/receipt_scheduler.py
"""
Delayed delivery-receipt scheduling.

An accepted vendor send carries its receipt; the caller hands it to a
scheduler once the entry is stored as SENT. The asyncio scheduler runs
the receipt inside this process; the Celery scheduler defers it to a
worker that posts it back to the delivery-receipt webhook.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Set

from core.config import settings
from core.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ReceiptPayload:
    message_id: str
    vendor_message_id: Optional[str]
    status: str = "DELIVERED"
    delivered_at: Optional[datetime] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.delivered_at is not None:
            data["delivered_at"] = self.delivered_at.isoformat()
        return data


class BaseReceiptScheduler(ABC):
    @abstractmethod
    def schedule(self, receipt: ReceiptPayload, delay: float) -> None:
        """Submit the receipt to run after `delay` seconds; never blocks the caller"""


class AsyncioReceiptScheduler(BaseReceiptScheduler):
    def __init__(self, handler=None):
        self._handler = handler
        self._pending: Set[asyncio.Task] = set()

    @property
    def handler(self):
        if self._handler is None:
            from tasks.delivery_receipt_handler import delivery_receipt_handler
            return delivery_receipt_handler
        return self._handler

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def schedule(self, receipt: ReceiptPayload, delay: float) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(receipt, delay))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, receipt: ReceiptPayload, delay: float) -> None:
        try:
            await asyncio.sleep(max(delay, 0))
            if receipt.status == "DELIVERED" and receipt.delivered_at is None:
                receipt.delivered_at = utcnow()
            await self.handler.on_receipt(
                receipt.message_id,
                receipt.vendor_message_id,
                receipt.status,
                delivered_at=receipt.delivered_at,
                error_message=receipt.error_message,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Delivery receipt for {receipt.message_id} failed: {e}")

    async def drain(self) -> None:
        """Wait for every receipt scheduled so far (and any scheduled while waiting)"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class CeleryReceiptScheduler(BaseReceiptScheduler):
    def schedule(self, receipt: ReceiptPayload, delay: float) -> None:
        from tasks.receipt_tasks import send_delivery_receipt
        send_delivery_receipt.apply_async(kwargs=receipt.to_dict(), countdown=max(delay, 0))


_scheduler: Optional[BaseReceiptScheduler] = None


def get_receipt_scheduler() -> BaseReceiptScheduler:
    global _scheduler
    if _scheduler is None:
        if settings.RECEIPT_SCHEDULER == "celery":
            _scheduler = CeleryReceiptScheduler()
        else:
            _scheduler = AsyncioReceiptScheduler()
        logger.info(f"📮 Receipt scheduler: {settings.RECEIPT_SCHEDULER}")
    return _scheduler


def set_receipt_scheduler(scheduler: Optional[BaseReceiptScheduler]) -> None:
    global _scheduler
    _scheduler = scheduler
