# routes/segments.py - Rule-based customer segments
from fastapi import APIRouter, HTTPException, Query, BackgroundTasks
from typing import Dict, Any
import logging

from core.errors import RuleValidationError, ServiceError, NotFoundError
from core.rule_engine import parse_rules, validate_rule_group
from core.time_utils import utcnow
from database import SEGMENTS
from models.segment_models import (
    RuleGroup, SegmentCreate, SegmentFromText, SegmentPreview, SegmentRulesText, SegmentUpdate,
)
from repository import get_repository, new_id
from tasks.segment_materializer import segment_materializer

logger = logging.getLogger(__name__)
router = APIRouter()


def _check_rules(rules) -> Dict[str, Any]:
    problems = validate_rule_group(rules)
    if problems:
        raise RuleValidationError(problems)
    return rules.to_document()


def _summary(segment: Dict[str, Any]) -> Dict[str, Any]:
    listed = dict(segment)
    listed.pop("customer_ids", None)
    return listed


@router.get("")
async def list_segments(
    limit: int = Query(default=100, ge=1, le=500),
    skip: int = Query(default=0, ge=0)
):
    """List segments, newest first, without their cached member ids"""
    try:
        repo = get_repository()
        segments = await repo.find(SEGMENTS, sort=[("created_at", -1)], skip=skip, limit=limit)
        total = await repo.count(SEGMENTS)

        return {
            "segments": [_summary(s) for s in segments],
            "total": total,
            "page": (skip // limit) + 1,
            "total_pages": (total + limit - 1) // limit,
        }

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"List segments failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


async def _create(name: str, rules: RuleGroup, created_by: str) -> Dict[str, Any]:
    repo = get_repository()
    rules_doc = _check_rules(rules)

    existing = await repo.find(SEGMENTS, {"name": name}, limit=1)
    if existing:
        raise HTTPException(
            status_code=400,
            detail=f"Segment with name '{name}' already exists"
        )

    now = utcnow()
    segment_doc = {
        "_id": new_id(),
        "name": name,
        "rules": rules_doc,
        "created_by": created_by,
        "created_at": now,
        "updated_at": now,
        "customer_ids": [],
        "customer_count": 0,
        "materialized_at": None,
    }
    await repo.insert(SEGMENTS, segment_doc)
    segment = await segment_materializer.refresh(segment_doc["_id"])

    logger.info(f"Created segment '{name}' with {segment['customer_count']} customers")
    return segment


@router.post("")
async def create_segment(segment_data: SegmentCreate):
    """Create a segment and materialize its members immediately"""
    try:
        return await _create(segment_data.name, segment_data.rules, segment_data.created_by)

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Create segment failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/parse-rules")
async def parse_segment_rules(request: SegmentRulesText):
    """Translate a plain-text description into rules, with the match count they would give"""
    try:
        rules = RuleGroup.model_validate(parse_rules(request.text))
        count = await segment_materializer.preview(rules)
        return {"rules": rules.to_document(), "count": count}

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Parse segment rules failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/from-text")
async def create_segment_from_text(segment_data: SegmentFromText):
    try:
        rules = RuleGroup.model_validate(parse_rules(segment_data.text))
        return await _create(segment_data.name, rules, segment_data.created_by)

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Create segment from text failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/preview")
async def preview_segment(preview_data: SegmentPreview):
    """Count matching customers without saving anything"""
    try:
        _check_rules(preview_data.rules)
        count = await segment_materializer.preview(preview_data.rules)
        return {"count": count}

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Preview segment failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/bulk-refresh")
async def refresh_all_segments(background_tasks: BackgroundTasks):
    try:
        segment_count = await get_repository().count(SEGMENTS)
        background_tasks.add_task(segment_materializer.refresh_all)

        return {
            "message": f"Started background refresh for {segment_count} segments",
            "segment_count": segment_count,
        }

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Bulk refresh failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{segment_id}")
async def get_segment(segment_id: str):
    try:
        segment = await get_repository().get(SEGMENTS, segment_id)
        if not segment:
            raise NotFoundError("Segment", segment_id)
        return segment

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Get segment failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/{segment_id}")
async def update_segment(segment_id: str, segment_data: SegmentUpdate):
    """Rename a segment or replace its rules; new rules are re-materialized"""
    try:
        repo = get_repository()
        existing = await repo.get(SEGMENTS, segment_id)
        if not existing:
            raise NotFoundError("Segment", segment_id)

        update_data: Dict[str, Any] = {"updated_at": utcnow()}

        if segment_data.name:
            conflicts = await repo.find(SEGMENTS, {"name": segment_data.name, "_id": {"$ne": segment_id}}, limit=1)
            if conflicts:
                raise HTTPException(
                    status_code=400,
                    detail=f"Segment name '{segment_data.name}' already exists"
                )
            update_data["name"] = segment_data.name

        if segment_data.rules is not None:
            update_data["rules"] = _check_rules(segment_data.rules)

        segment = await repo.update(SEGMENTS, segment_id, update_data)
        if segment is None:
            raise NotFoundError("Segment", segment_id)

        if segment_data.rules is not None:
            segment = await segment_materializer.refresh(segment_id)

        return segment

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Update segment failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/{segment_id}")
async def delete_segment(segment_id: str):
    """Delete a segment; campaigns that reference it are left as they are"""
    try:
        deleted = await get_repository().delete(SEGMENTS, segment_id)
        if not deleted:
            raise NotFoundError("Segment", segment_id)

        logger.info(f"Deleted segment {segment_id}")
        return {"message": "Segment deleted successfully", "segment_id": segment_id}

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Delete segment failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{segment_id}/refresh")
async def refresh_segment(segment_id: str):
    try:
        before = await get_repository().get(SEGMENTS, segment_id)
        if not before:
            raise NotFoundError("Segment", segment_id)

        segment = await segment_materializer.refresh(segment_id)
        return {
            "message": "Segment refreshed",
            "new_count": segment["customer_count"],
            "previous_count": before.get("customer_count", 0),
            "materialized_at": segment["materialized_at"],
        }

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Refresh segment failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{segment_id}/customers")
async def get_segment_customers(
    segment_id: str,
    limit: int = Query(default=50, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    refresh: bool = Query(default=False)
):
    """Page through a segment's materialized members (materializes on first read)"""
    try:
        return await segment_materializer.get_customers(segment_id, limit=limit, offset=offset, refresh=refresh)

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Get segment customers failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
