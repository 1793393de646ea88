# backend/scripts/seed_customers.py
"""
Load sample customers into the active persistence backend.
Idempotent by email. Run: python backend/scripts/seed_customers.py
"""
import asyncio
import sys
import os
from datetime import timedelta
from typing import Any, Dict, List

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.errors import PersistenceUnavailableError
from core.time_utils import utcnow
from database import CUSTOMERS
from repository import BaseRepository, get_repository, new_id
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_CUSTOMERS = [
    ("Ann Lee", "ann.lee@example.com", "+1-555-0101", 1500, 12, 2),
    ("Ravi Kumar", "ravi.kumar@example.com", "+91-98765-43210", 320, 3, 40),
    ("Maria Garcia", "maria.garcia@example.com", "+34-600-123-456", 2750, 25, 1),
    ("John Smith", "john.smith@example.com", "+1-555-0199", 80, 1, 120),
    ("Priya Shah", "priya.shah@example.com", "+91-99887-76655", 980, 9, 15),
    ("Chen Wei", "chen.wei@example.com", "+86-138-0000-1111", 4100, 31, 3),
    ("Fatima Noor", "fatima.noor@example.com", None, 640, 6, 60),
    ("Lucas Martin", "lucas.martin@example.com", "+33-6-12-34-56-78", 1220, 14, 7),
]


def build_sample_customers() -> List[Dict[str, Any]]:
    now = utcnow()
    return [
        {
            "_id": new_id(),
            "name": name,
            "email": email,
            "phone": phone,
            "spend": spend,
            "visits": visits,
            "last_active": now - timedelta(days=days_inactive),
            "created_at": now,
        }
        for name, email, phone, spend, visits, days_inactive in SAMPLE_CUSTOMERS
    ]


async def seed_customers(repository: BaseRepository = None) -> int:
    repository = repository or get_repository()
    try:
        existing = {c.get("email") for c in await repository.find(CUSTOMERS)}
    except PersistenceUnavailableError:
        # nothing stored locally yet and the database is down
        existing = set()

    new_customers = [c for c in build_sample_customers() if c["email"] not in existing]
    if new_customers:
        await repository.insert_many(CUSTOMERS, new_customers)

    logger.info(f"✅ Seeded {len(new_customers)} customers ({len(existing)} already present)")
    return len(new_customers)


if __name__ == "__main__":
    asyncio.run(seed_customers())
