import logging
from datetime import timezone
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from core.config import settings

logger = logging.getLogger(__name__)

# ===== COLLECTION NAMES =====
SEGMENTS = "segments"
CAMPAIGNS = "campaigns"
COMMUNICATION_LOGS = "communication_logs"
MESSAGES = "messages"
CUSTOMERS = "customers"

COLLECTIONS = (SEGMENTS, CAMPAIGNS, COMMUNICATION_LOGS, MESSAGES, CUSTOMERS)

# ===== CLIENT INSTANCES =====
async_client: Optional[AsyncIOMotorClient] = None
async_database: Optional[AsyncIOMotorDatabase] = None

_async_initialized = False
_indexes_created = False


# ============================================
# ASYNC CLIENT INITIALIZATION
# ============================================

def initialize_async_client() -> AsyncIOMotorClient:
    """Initialize async MongoDB client (lazy, connection happens on first operation)"""
    global async_client, async_database, _async_initialized

    if async_client is not None and _async_initialized:
        return async_client

    try:
        async_client = AsyncIOMotorClient(
            settings.MONGODB_URI,
            maxPoolSize=settings.DB_MAX_POOL_SIZE,
            minPoolSize=settings.DB_MIN_POOL_SIZE,
            maxIdleTimeMS=settings.DB_MAX_IDLE_TIME_MS,
            connectTimeoutMS=settings.DB_CONNECT_TIMEOUT_MS,
            serverSelectionTimeoutMS=settings.DB_SERVER_SELECTION_TIMEOUT_MS,
            retryWrites=True,
            retryReads=True,
            tz_aware=True,
            tzinfo=timezone.utc,
            appName="segment_campaigns_async"
        )
        async_database = async_client[settings.MONGODB_DATABASE]
        _async_initialized = True
        logger.info("✅ Async MongoDB client initialized")

    except Exception as e:
        logger.error(f"❌ Failed to initialize async MongoDB client: {e}")
        raise

    return async_client


def get_async_database() -> AsyncIOMotorDatabase:
    if async_database is None:
        initialize_async_client()
    return async_database


def get_segments_collection():
    return get_async_database()[SEGMENTS]

def get_campaigns_collection():
    return get_async_database()[CAMPAIGNS]

def get_communication_logs_collection():
    """Per-campaign delivery log entries"""
    return get_async_database()[COMMUNICATION_LOGS]

def get_messages_collection():
    """Standalone messages sent outside a campaign"""
    return get_async_database()[MESSAGES]

def get_customers_collection():
    return get_async_database()[CUSTOMERS]


# ============================================
# INDEXES
# ============================================

async def ensure_indexes():
    """Create database indexes for the query patterns the services use"""
    global _indexes_created

    if _indexes_created:
        return

    try:
        logger.info("🔧 Creating database indexes...")

        customers = get_customers_collection()
        await customers.create_index([("email", ASCENDING)])
        await customers.create_index([("created_at", DESCENDING)])

        segments = get_segments_collection()
        await segments.create_index([("created_at", DESCENDING)])

        campaigns = get_campaigns_collection()
        await campaigns.create_index([("segment_id", ASCENDING)])
        await campaigns.create_index([("status", ASCENDING)])
        await campaigns.create_index([("created_at", DESCENDING)])

        for collection in (get_communication_logs_collection(), get_messages_collection()):
            await collection.create_index([("campaign_id", ASCENDING)])
            await collection.create_index([("customer_id", ASCENDING)])
            await collection.create_index([("status", ASCENDING)])
            await collection.create_index([("sent_at", DESCENDING)])

        _indexes_created = True
        logger.info("✅ Database indexes created successfully")

    except Exception as e:
        logger.error(f"❌ Failed to create indexes: {e}")
        # startup continues without indexes


# ============================================
# SHUTDOWN
# ============================================

def close_async_client():
    global async_client, async_database, _async_initialized
    if async_client:
        async_client.close()
        async_client = None
        async_database = None
        _async_initialized = False
        logger.info("✅ Async MongoDB client closed")
