# backend/main.py
"""
Segment campaign API: segments, campaign delivery, delivery receipts and send statistics
"""
import logging
import time
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import settings
from core.errors import (
    InvalidTransitionError, NotFoundError, PersistenceUnavailableError, RuleValidationError,
)
from core.time_utils import utcnow
from repository import get_repository
from routes import campaigns, email_messages, messages, segments, stats, vendor, webhooks

# ===== LOGGING SETUP =====
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ===== CREATE APP =====
app = FastAPI(
    debug=settings.DEBUG_MODE,
    title="Segment Campaign API",
    description="Customer segmentation, campaign delivery and delivery tracking",
    version=settings.APP_VERSION
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)
    process_time = time.time() - start_time

    if process_time > settings.SLOW_REQUEST_THRESHOLD_SECONDS:
        logger.warning(f"Slow request: {request.method} {request.url.path} - {process_time:.3f}s")

    response.headers["X-Process-Time"] = str(round(process_time, 3))
    return response


# ===== DOMAIN ERRORS =====
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PersistenceUnavailableError)
async def persistence_unavailable_handler(request: Request, exc: PersistenceUnavailableError):
    logger.error(f"❌ {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(RuleValidationError)
async def rule_validation_handler(request: Request, exc: RuleValidationError):
    return JSONResponse(status_code=422, content={"detail": exc.problems})


# ===== LIFECYCLE =====
@app.on_event("startup")
async def startup_event():
    logger.info("🚀 Starting Segment Campaign API...")

    repository = get_repository()
    try:
        await repository.ping()
        if repository.active_backend == "mongo":
            from database import ensure_indexes
            await ensure_indexes()
    except Exception as e:
        logger.warning(f"⚠️  Database not reachable at startup: {e}")

    logger.info(f"💾 Active persistence backend: {repository.active_backend}")
    logger.info("✅ Segment Campaign API ready!")


@app.on_event("shutdown")
async def shutdown_event():
    from tasks.receipt_scheduler import AsyncioReceiptScheduler, get_receipt_scheduler

    scheduler = get_receipt_scheduler()
    if isinstance(scheduler, AsyncioReceiptScheduler) and scheduler.pending_count:
        logger.info(f"⏳ Waiting for {scheduler.pending_count} delivery receipts")
        await scheduler.drain()

    try:
        await get_repository().flush()
    except Exception as e:
        logger.error(f"❌ Failed to flush local fallback store: {e}")

    from database import close_async_client
    close_async_client()
    logger.info("🛑 Segment Campaign API stopped")


@app.get("/health")
async def health_check():
    repository = get_repository()
    try:
        await repository.ping()
    except Exception as e:
        logger.warning(f"⚠️ Health check ping failed: {e}")

    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "version": settings.APP_VERSION,
        "persistence_backend": repository.active_backend,
    }


@app.get("/")
async def root():
    return {
        "message": f"{settings.APP_NAME} v{settings.APP_VERSION}",
        "status": "operational",
        "health_check": "/health",
        "routes": {
            "segments": "/api/segments",
            "campaigns": "/api/campaigns",
            "deliver": "/api/campaigns/deliver",
            "sent_messages": "/api/email/sent-messages",
            "stats": "/api/stats/summary"
        }
    }


# ===== ROUTES =====
app.include_router(segments.router, prefix="/api/segments", tags=["segments"])
app.include_router(campaigns.router, prefix="/api", tags=["campaigns"])
app.include_router(vendor.router, prefix="/api")
app.include_router(webhooks.router, prefix="/api")
app.include_router(email_messages.router, prefix="/api/email")
app.include_router(messages.router, prefix="/api")
app.include_router(stats.router, prefix="/api/stats", tags=["stats"])

if __name__ == "__main__":
    logger.info("🔗 Registered routes:")
    for route in app.routes:
        if hasattr(route, 'path') and hasattr(route, 'methods'):
            logger.info(f"   {route.path} → {route.methods}")
