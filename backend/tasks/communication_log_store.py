# backend/tasks/communication_log_store.py
"""
Per-message delivery log with an enforced status state machine.

    PENDING -> SENT | FAILED
    SENT    -> DELIVERED | FAILED

DELIVERED and FAILED are terminal. Every transition is a compare-and-set
on the current status, so a concurrent writer cannot move an entry out of
a state it has already left.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.errors import InvalidTransitionError, NotFoundError
from core.time_utils import utcnow
from database import COMMUNICATION_LOGS, MESSAGES
from models.message_models import MessageStatus
from repository import BaseRepository, get_repository

logger = logging.getLogger(__name__)

PENDING = MessageStatus.PENDING.value
SENT = MessageStatus.SENT.value
DELIVERED = MessageStatus.DELIVERED.value
FAILED = MessageStatus.FAILED.value

ALLOWED_TRANSITIONS = {
    PENDING: {SENT, FAILED},
    SENT: {DELIVERED, FAILED},
    DELIVERED: set(),
    FAILED: set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


class CommunicationLogStore:
    def __init__(self, collection: str = COMMUNICATION_LOGS, repository: Optional[BaseRepository] = None):
        self.collection = collection
        self._repository = repository

    @property
    def repo(self) -> BaseRepository:
        return self._repository or get_repository()

    async def create_pending(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        for message in messages:
            message["status"] = PENDING
        return await self.repo.insert_many(self.collection, messages)

    async def get(self, entry_id: str) -> Optional[Dict[str, Any]]:
        return await self.repo.get(self.collection, entry_id)

    async def list_entries(self, filters: Optional[Dict[str, Any]] = None, sort=None,
                           skip: int = 0, limit: int = 0) -> List[Dict[str, Any]]:
        return await self.repo.find(self.collection, filters, sort, skip, limit)

    async def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        return await self.repo.count(self.collection, filters)

    async def transition(self, entry_id: str, target: str, changes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        entry = await self.get(entry_id)
        if not entry:
            raise NotFoundError("Message", entry_id)

        current = entry.get("status")
        if not can_transition(current, target):
            raise InvalidTransitionError(entry_id, current, target)

        update = dict(changes or {})
        update["status"] = target
        update["updated_at"] = utcnow()

        updated = await self.repo.update(self.collection, entry_id, update, expected={"status": current})
        if updated is None:
            # another writer moved the entry first
            latest = await self.get(entry_id)
            raise InvalidTransitionError(entry_id, (latest or {}).get("status", current), target)
        return updated

    async def mark_sent(self, entry_id: str, vendor_message_id: Optional[str],
                        sent_at: Optional[datetime] = None) -> Dict[str, Any]:
        return await self.transition(entry_id, SENT, {
            "vendor_message_id": vendor_message_id,
            "sent_at": sent_at or utcnow(),
        })

    async def mark_failed(self, entry_id: str, error_message: str) -> Dict[str, Any]:
        return await self.transition(entry_id, FAILED, {"error_message": error_message})

    async def apply_receipt(self, entry_id: str, status: str, delivered_at: Optional[datetime] = None,
                            error_message: Optional[str] = None) -> Dict[str, Any]:
        if status == DELIVERED:
            return await self.transition(entry_id, DELIVERED, {"delivered_at": delivered_at or utcnow()})
        return await self.transition(entry_id, FAILED, {"error_message": error_message or "Delivery failed"})


communication_log_store = CommunicationLogStore(COMMUNICATION_LOGS)
message_log_store = CommunicationLogStore(MESSAGES)
