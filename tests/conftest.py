"""
Shared fixtures.

Every test that touches persistence runs against a FallbackRepository
backed by a JSON file in pytest's tmp_path, installed as the process-wide
repository so the module-level services pick it up.
"""
import random
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from core.time_utils import utcnow
from database import CUSTOMERS
from fallback_store import FallbackStore
from repository import FallbackRepository, new_id, set_repository
from routes.vendor_services import SimulatedVendorGateway, set_vendor_gateway
from tasks.receipt_scheduler import set_receipt_scheduler


def make_customer(name, email, spend=0, visits=0, days_inactive=1, **extra):
    customer = {
        "_id": new_id(),
        "name": name,
        "email": email,
        "phone": None,
        "spend": spend,
        "visits": visits,
        "last_active": utcnow() - timedelta(days=days_inactive),
        "created_at": utcnow(),
    }
    customer.update(extra)
    return customer


def make_gateway(failure_rate=0.0, scheduler=None, seed=7, receipt_delay=(0.0, 0.0)):
    return SimulatedVendorGateway(
        failure_rate=failure_rate,
        latency_range=(0.0, 0.0),
        receipt_delay_range=receipt_delay,
        scheduler=scheduler if scheduler is not None else MagicMock(),
        rng=random.Random(seed),
    )


@pytest.fixture
def fallback_repo(tmp_path):
    repo = FallbackRepository(FallbackStore(str(tmp_path / "store.json")))
    set_repository(repo)
    yield repo
    set_repository(None)
    set_vendor_gateway(None)
    set_receipt_scheduler(None)


@pytest.fixture
def sample_customers():
    return [
        make_customer("Ann", "ann@example.com", spend=500, visits=2, days_inactive=3),
        make_customer("Bob", "bob@example.com", spend=1500, visits=8, days_inactive=20),
        make_customer("Cara", "cara@shop.io", spend=2500, visits=15, days_inactive=1),
    ]


@pytest.fixture
def seeded_repo(fallback_repo, sample_customers):
    fallback_repo.store.upsert_many(CUSTOMERS, sample_customers)
    return fallback_repo
