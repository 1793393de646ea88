"""
Tests for the communication log state machine.
"""
import pytest

from core.errors import InvalidTransitionError, NotFoundError
from database import COMMUNICATION_LOGS
from tasks.communication_log_store import (
    ALLOWED_TRANSITIONS, CommunicationLogStore, can_transition,
)
from tasks.message_composer import MessageComposer
from tests.conftest import make_customer


async def pending_entry(repo):
    store = CommunicationLogStore(COMMUNICATION_LOGS, repo)
    message = MessageComposer().compose([make_customer("Ann", "ann@example.com")], "Hi {name}", 10, "S", "c1")[0]
    await store.create_pending([message])
    return store, message["_id"]


class TestTransitionTable:

    def test_terminal_states_have_no_exits(self):
        assert ALLOWED_TRANSITIONS["DELIVERED"] == set()
        assert ALLOWED_TRANSITIONS["FAILED"] == set()

    @pytest.mark.parametrize("current,target,allowed", [
        ("PENDING", "SENT", True),
        ("PENDING", "FAILED", True),
        ("PENDING", "DELIVERED", False),
        ("SENT", "DELIVERED", True),
        ("SENT", "FAILED", True),
        ("SENT", "PENDING", False),
        ("FAILED", "DELIVERED", False),
        ("DELIVERED", "FAILED", False),
    ])
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed


class TestCommunicationLogStore:

    @pytest.mark.asyncio
    async def test_sent_then_delivered(self, fallback_repo):
        store, entry_id = await pending_entry(fallback_repo)

        sent = await store.mark_sent(entry_id, "vendor_1")
        assert sent["status"] == "SENT"
        assert sent["vendor_message_id"] == "vendor_1"
        assert sent["sent_at"] is not None

        delivered = await store.apply_receipt(entry_id, "DELIVERED")
        assert delivered["status"] == "DELIVERED"
        assert delivered["delivered_at"] is not None

    @pytest.mark.asyncio
    async def test_failed_is_terminal(self, fallback_repo):
        store, entry_id = await pending_entry(fallback_repo)
        await store.mark_failed(entry_id, "Recipient mailbox full")

        with pytest.raises(InvalidTransitionError):
            await store.apply_receipt(entry_id, "DELIVERED")

        entry = await store.get(entry_id)
        assert entry["status"] == "FAILED"
        assert entry["error_message"] == "Recipient mailbox full"

    @pytest.mark.asyncio
    async def test_pending_cannot_be_delivered(self, fallback_repo):
        store, entry_id = await pending_entry(fallback_repo)
        with pytest.raises(InvalidTransitionError):
            await store.apply_receipt(entry_id, "DELIVERED")

    @pytest.mark.asyncio
    async def test_sent_can_fail_on_receipt(self, fallback_repo):
        store, entry_id = await pending_entry(fallback_repo)
        await store.mark_sent(entry_id, "vendor_1")

        failed = await store.apply_receipt(entry_id, "FAILED", error_message="Bounced")

        assert failed["status"] == "FAILED"
        assert failed["error_message"] == "Bounced"

    @pytest.mark.asyncio
    async def test_unknown_entry(self, fallback_repo):
        store = CommunicationLogStore(COMMUNICATION_LOGS, fallback_repo)
        with pytest.raises(NotFoundError):
            await store.mark_sent("missing", "vendor_1")

    @pytest.mark.asyncio
    async def test_compare_and_set_rejects_stale_writer(self, fallback_repo):
        store, entry_id = await pending_entry(fallback_repo)
        await store.mark_sent(entry_id, "vendor_1")

        # a writer that still believes the entry is PENDING
        stale = await fallback_repo.update(COMMUNICATION_LOGS, entry_id, {"status": "FAILED"}, expected={"status": "PENDING"})

        assert stale is None
        assert (await store.get(entry_id))["status"] == "SENT"
