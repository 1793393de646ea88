"""
Tests for campaign fan-out and single-message dispatch.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.errors import InvalidTransitionError, NotFoundError
from database import CAMPAIGNS, COMMUNICATION_LOGS, CUSTOMERS, MESSAGES, SEGMENTS
from fallback_store import FallbackStore
from repository import FallbackRepository, new_id, set_repository
from routes.vendor_services import VendorSendResult
from tasks.campaign_dispatcher import VENDOR_API_ERROR, CampaignDispatcher
from tasks.communication_log_store import CommunicationLogStore
from tasks.message_composer import MessageComposer
from tasks.receipt_scheduler import AsyncioReceiptScheduler
from tasks.delivery_receipt_handler import DeliveryReceiptHandler
from tests.conftest import make_customer, make_gateway

EVERYONE = {"and": [], "or": []}


class SlowRepository(FallbackRepository):
    """Yields to the event loop on every lookup and write, like a networked database"""

    async def get(self, collection, doc_id):
        await asyncio.sleep(0.01)
        return await super().get(collection, doc_id)

    async def update(self, collection, doc_id, changes, expected=None):
        await asyncio.sleep(0.01)
        return await super().update(collection, doc_id, changes, expected)


async def add_segment(repo, rules=EVERYONE, name="Everyone"):
    segment = {"_id": new_id(), "name": name, "rules": rules, "customer_ids": [],
               "customer_count": 0, "materialized_at": None}
    await repo.insert(SEGMENTS, segment)
    return segment["_id"]


async def add_customers(repo, count):
    customers = [make_customer(f"Customer {i}", f"c{i}@example.com", spend=i * 100) for i in range(count)]
    await repo.insert_many(CUSTOMERS, customers)
    return customers


def dispatcher_for(repo, gateway, concurrency=4):
    return CampaignDispatcher(
        repository=repo,
        gateway=gateway,
        log_store=CommunicationLogStore(COMMUNICATION_LOGS, repo),
        concurrency=concurrency,
    )


class TestDeliver:

    @pytest.mark.asyncio
    async def test_all_messages_end_delivered(self, fallback_repo):
        await add_customers(fallback_repo, 10)
        segment_id = await add_segment(fallback_repo)
        log_store = CommunicationLogStore(COMMUNICATION_LOGS, fallback_repo)
        scheduler = AsyncioReceiptScheduler(DeliveryReceiptHandler([log_store]))
        gateway = make_gateway(failure_rate=0.0, scheduler=scheduler, receipt_delay=(0.01, 0.02))
        dispatcher = CampaignDispatcher(fallback_repo, gateway, log_store, concurrency=3)

        summary = await dispatcher.deliver(segment_id, "Hello", "Hi {name}, {discount}% off", 15)

        assert summary["total_messages"] == 10
        assert summary["sent_count"] == 10
        assert summary["failed_count"] == 0
        assert {e["status"] for e in summary["communication_logs"]} == {"SENT"}

        await scheduler.drain()

        logs = await fallback_repo.find(COMMUNICATION_LOGS, {"campaign_id": summary["campaign_id"]})
        assert len(logs) == 10
        assert {log["status"] for log in logs} == {"DELIVERED"}
        assert all(log["body"].endswith("15% off") for log in logs)

    @pytest.mark.asyncio
    async def test_instant_receipts_still_deliver_on_slow_storage(self, fallback_repo, tmp_path):
        repo = SlowRepository(FallbackStore(str(tmp_path / "slow.json")))
        set_repository(repo)
        await add_customers(repo, 10)
        segment_id = await add_segment(repo)
        log_store = CommunicationLogStore(COMMUNICATION_LOGS, repo)
        scheduler = AsyncioReceiptScheduler(DeliveryReceiptHandler([log_store]))
        gateway = make_gateway(failure_rate=0.0, scheduler=scheduler, receipt_delay=(0.0, 0.005))
        dispatcher = CampaignDispatcher(repo, gateway, log_store, concurrency=10)

        summary = await dispatcher.deliver(segment_id, "Hello", "Hi {name}")
        await scheduler.drain()

        logs = await repo.find(COMMUNICATION_LOGS, {"campaign_id": summary["campaign_id"]})
        assert len(logs) == 10
        assert {log["status"] for log in logs} == {"DELIVERED"}

    @pytest.mark.asyncio
    async def test_counts_add_up_with_rejections(self, fallback_repo):
        await add_customers(fallback_repo, 40)
        segment_id = await add_segment(fallback_repo)
        dispatcher = dispatcher_for(fallback_repo, make_gateway(failure_rate=0.5, seed=11))

        summary = await dispatcher.deliver(segment_id, "S", "Hi {name}")

        assert summary["sent_count"] + summary["failed_count"] == summary["total_messages"] == 40
        assert 0 < summary["failed_count"] < 40
        failed = [e for e in summary["communication_logs"] if e["status"] == "FAILED"]
        assert all(e["error_message"] for e in failed)

    @pytest.mark.asyncio
    async def test_campaign_record_is_completed(self, fallback_repo):
        await add_customers(fallback_repo, 3)
        segment_id = await add_segment(fallback_repo)
        dispatcher = dispatcher_for(fallback_repo, make_gateway(failure_rate=1.0))

        summary = await dispatcher.deliver(segment_id, "S", "Hi {name}", 20)

        campaign = await fallback_repo.get(CAMPAIGNS, summary["campaign_id"])
        assert campaign["status"] == "COMPLETED"
        assert campaign["failed_count"] == 3
        assert campaign["sent_count"] == 0
        assert campaign["completed_at"] is not None
        assert campaign["discount_percentage"] == 20

    @pytest.mark.asyncio
    async def test_gateway_exception_becomes_vendor_api_error(self, fallback_repo):
        await add_customers(fallback_repo, 2)
        segment_id = await add_segment(fallback_repo)
        gateway = MagicMock()
        gateway.send = AsyncMock(side_effect=ConnectionError("socket closed"))

        summary = await dispatcher_for(fallback_repo, gateway).deliver(segment_id, "S", "Hi")

        assert summary["failed_count"] == 2
        assert {e["error_message"] for e in summary["communication_logs"]} == {VENDOR_API_ERROR}

    @pytest.mark.asyncio
    async def test_empty_segment(self, fallback_repo):
        segment_id = await add_segment(fallback_repo, {"and": [{"field": "spend", "op": ">", "value": 1}]})

        summary = await dispatcher_for(fallback_repo, make_gateway()).deliver(segment_id, "S", "Hi")

        assert summary["total_messages"] == 0
        assert summary["communication_logs"] == []

    @pytest.mark.asyncio
    async def test_unknown_segment(self, fallback_repo):
        with pytest.raises(NotFoundError):
            await dispatcher_for(fallback_repo, make_gateway()).deliver("missing", "S", "Hi")
        assert await fallback_repo.count(CAMPAIGNS) == 0


class TestSendSingle:

    async def pending_message(self, repo):
        store = CommunicationLogStore(MESSAGES, repo)
        message = MessageComposer().compose([make_customer("Ann", "ann@example.com")], "Hi {name}", 10)[0]
        await store.create_pending([message])
        return store, message["_id"]

    @pytest.mark.asyncio
    async def test_accepted_message_is_sent(self, fallback_repo):
        store, message_id = await self.pending_message(fallback_repo)
        gateway = MagicMock()
        gateway.send = AsyncMock(return_value=VendorSendResult(accepted=True, vendor_message_id="vendor_1"))

        entry = await dispatcher_for(fallback_repo, gateway).send_single(message_id, store)

        assert entry["status"] == "SENT"
        assert entry["vendor_message_id"] == "vendor_1"

    @pytest.mark.asyncio
    async def test_receipt_released_after_sent_is_stored(self, fallback_repo):
        store, message_id = await self.pending_message(fallback_repo)
        result = VendorSendResult(accepted=True, vendor_message_id="vendor_1")
        seen, released = [], []

        async def status_at_release():
            seen.append((await store.get(message_id))["status"])

        gateway = MagicMock()
        gateway.send = AsyncMock(return_value=result)
        gateway.schedule_receipt.side_effect = lambda r: released.append(asyncio.ensure_future(status_at_release()))

        await dispatcher_for(fallback_repo, gateway).send_single(message_id, store)
        await asyncio.gather(*released)

        gateway.schedule_receipt.assert_called_once_with(result)
        assert seen == ["SENT"]

    @pytest.mark.asyncio
    async def test_rejected_message_releases_no_receipt(self, fallback_repo):
        store, message_id = await self.pending_message(fallback_repo)
        gateway = MagicMock()
        gateway.send = AsyncMock(return_value=VendorSendResult(accepted=False, error_message="Network timeout"))

        entry = await dispatcher_for(fallback_repo, gateway).send_single(message_id, store)

        assert entry["status"] == "FAILED"
        gateway.schedule_receipt.assert_not_called()

    @pytest.mark.asyncio
    async def test_only_pending_messages_can_be_sent(self, fallback_repo):
        store, message_id = await self.pending_message(fallback_repo)
        await store.mark_failed(message_id, "Network timeout")

        with pytest.raises(InvalidTransitionError):
            await dispatcher_for(fallback_repo, make_gateway()).send_single(message_id, store)

    @pytest.mark.asyncio
    async def test_unknown_message(self, fallback_repo):
        store = CommunicationLogStore(MESSAGES, fallback_repo)
        with pytest.raises(NotFoundError):
            await dispatcher_for(fallback_repo, make_gateway()).send_single("missing", store)
