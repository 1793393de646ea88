# backend/tasks/segment_materializer.py
"""
Segment materialization: run the rule engine over the customer set and
cache the matching ids on the segment document.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.errors import NotFoundError
from core.rule_engine import evaluate
from core.time_utils import utcnow
from database import CUSTOMERS, SEGMENTS
from repository import BaseRepository, get_repository

logger = logging.getLogger(__name__)


@dataclass
class MaterializationResult:
    ids: List[str] = field(default_factory=list)
    count: int = 0


def materialize(rule_group: Any, customers: List[Dict[str, Any]]) -> MaterializationResult:
    """Ids of matching customers, in input order"""
    ids = [str(c.get("_id")) for c in customers if evaluate(c, rule_group)]
    return MaterializationResult(ids=ids, count=len(ids))


class SegmentMaterializer:
    def __init__(self, repository: Optional[BaseRepository] = None):
        self._repository = repository

    @property
    def repo(self) -> BaseRepository:
        return self._repository or get_repository()

    async def _load_segment(self, segment_id: str) -> Dict[str, Any]:
        segment = await self.repo.get(SEGMENTS, segment_id)
        if not segment:
            raise NotFoundError("Segment", segment_id)
        return segment

    async def preview(self, rule_group: Any) -> int:
        customers = await self.repo.find(CUSTOMERS)
        return materialize(rule_group, customers).count

    async def refresh(self, segment_id: str) -> Dict[str, Any]:
        """Recompute and store the segment's member ids; returns the updated segment"""
        segment = await self._load_segment(segment_id)
        customers = await self.repo.find(CUSTOMERS)
        result = materialize(segment.get("rules") or {}, customers)

        now = utcnow()
        updated = await self.repo.update(SEGMENTS, segment_id, {
            "customer_ids": result.ids,
            "customer_count": result.count,
            "materialized_at": now,
            "updated_at": now,
        })
        if updated is None:
            raise NotFoundError("Segment", segment_id)

        logger.info(
            f"🎯 Segment {segment.get('name', segment_id)}: "
            f"{segment.get('customer_count', 0)} → {result.count} customers"
        )
        return updated

    async def refresh_all(self) -> Dict[str, int]:
        segments = await self.repo.find(SEGMENTS)
        refreshed = failed = 0
        for segment in segments:
            try:
                await self.refresh(segment["_id"])
                refreshed += 1
            except Exception as e:
                failed += 1
                logger.error(f"Failed to refresh segment {segment.get('_id')}: {e}")
                continue

        logger.info(f"Background refresh completed: {refreshed} refreshed, {failed} failed")
        return {"refreshed": refreshed, "failed": failed}

    async def ensure_materialized(self, segment_id: str, force: bool = False) -> Dict[str, Any]:
        segment = await self._load_segment(segment_id)
        if force or segment.get("materialized_at") is None:
            segment = await self.refresh(segment_id)
        return segment

    async def load_members(self, segment: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Customer records for the cached ids, in id order; ids whose customer is gone are skipped"""
        ids = list(segment.get("customer_ids") or [])
        docs = await self.repo.find_by_ids(CUSTOMERS, ids)
        by_id = {str(d["_id"]): d for d in docs}
        return [by_id[i] for i in ids if i in by_id]

    async def get_customers(self, segment_id: str, limit: int = 50, offset: int = 0,
                            refresh: bool = False) -> Dict[str, Any]:
        segment = await self.ensure_materialized(segment_id, force=refresh)

        ids = list(segment.get("customer_ids") or [])
        total = len(ids)
        page_ids = ids[offset:offset + limit]
        customers = await self.load_members({"customer_ids": page_ids})

        return {
            "customers": customers,
            "pagination": {
                "limit": limit,
                "offset": offset,
                "total": total,
                "has_more": offset + limit < total,
            },
            "segment": {
                "_id": segment["_id"],
                "name": segment.get("name"),
                "customer_count": segment.get("customer_count", total),
                "materialized_at": segment.get("materialized_at"),
            },
        }


segment_materializer = SegmentMaterializer()
