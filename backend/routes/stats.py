"""
Stats routes for the dashboard: hourly send histogram and service summary.
Summary responses are cached in Redis when ENABLE_STATS_CACHE is on.
"""

from fastapi import APIRouter, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from typing import Dict, Optional
import json
import logging

import redis.asyncio as redis

from core.config import settings, get_redis_key
from core.errors import ServiceError
from tasks.statistics_aggregator import statistics_aggregator

logger = logging.getLogger(__name__)

# Create router (no prefix - main.py adds /api/stats)
router = APIRouter()


class CacheKeys:
    SUMMARY = "stats:summary"
    HOURLY = "stats:hourly:{days}"


_redis_client: Optional[redis.Redis] = None


def get_redis() -> Optional[redis.Redis]:
    """Redis client for the stats cache, or None when caching is disabled"""
    global _redis_client
    if not settings.ENABLE_STATS_CACHE:
        return None
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2
        )
    return _redis_client


class StatsCache:
    """Best-effort caching layer; every failure degrades to a cache miss"""

    @staticmethod
    async def get(key: str) -> Optional[Dict]:
        try:
            redis_client = get_redis()
            if not redis_client:
                return None

            cached = await redis_client.get(get_redis_key(key))
            if cached:
                logger.debug(f"✅ Cache HIT: {key}")
                return json.loads(cached)

            logger.debug(f"❌ Cache MISS: {key}")
            return None

        except Exception as e:
            logger.warning(f"Cache read error for {key}: {e}")
            return None

    @staticmethod
    async def set(key: str, data: Dict, ttl: Optional[int] = None) -> bool:
        try:
            redis_client = get_redis()
            if not redis_client:
                return False

            await redis_client.setex(
                get_redis_key(key),
                ttl or settings.STATS_CACHE_TTL_SECONDS,
                json.dumps(data, default=str)
            )
            logger.debug(f"💾 Cached: {key}")
            return True

        except Exception as e:
            logger.warning(f"Cache write error for {key}: {e}")
            return False


@router.get("/messages/hourly")
async def get_hourly_message_stats(window_days: int = Query(default=settings.STATS_WINDOW_DAYS, ge=1, le=90)):
    """Per-hour send counts for the trailing window, most recent day first"""
    try:
        cache_key = CacheKeys.HOURLY.format(days=window_days)
        cached = await StatsCache.get(cache_key)
        if cached:
            return cached

        snapshot = jsonable_encoder(await statistics_aggregator.hourly_snapshot(window_days))
        await StatsCache.set(cache_key, snapshot)
        return snapshot

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Hourly stats failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/summary")
async def get_summary():
    try:
        cached = await StatsCache.get(CacheKeys.SUMMARY)
        if cached:
            return cached

        summary = jsonable_encoder(await statistics_aggregator.summary())
        await StatsCache.set(CacheKeys.SUMMARY, summary)
        return summary

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Stats summary failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
