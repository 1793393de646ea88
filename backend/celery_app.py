from celery import Celery
from celery.signals import task_failure, task_retry, worker_ready, worker_shutdown
import logging
from typing import Dict, Any

from core.config import settings

logger = logging.getLogger(__name__)


# ============================================
# CREATE CELERY APP
# ============================================

celery_app = Celery(
    "segment_campaign_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "tasks.receipt_tasks",
    ]
)


# ============================================
# CELERY CONFIGURATION
# ============================================

celery_app.conf.update(
    timezone='UTC',
    enable_utc=True,

    # ===== TASK CONFIGURATION =====
    task_acks_late=False,
    task_reject_on_worker_lost=True,
    task_ignore_result=True,
    task_store_errors_even_if_ignored=True,
    task_time_limit=300,
    task_soft_time_limit=240,

    # ===== WORKER CONFIGURATION =====
    worker_prefetch_multiplier=4,
    worker_max_tasks_per_child=settings.WORKER_MAX_TASKS_PER_CHILD,
    worker_log_format='[%(asctime)s: %(levelname)s/%(processName)s] %(message)s',
    worker_task_log_format='[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s',

    # ===== BROKER CONFIGURATION =====
    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,
    broker_transport_options={
        # receipts are scheduled with countdown; keep them invisible longer than the max delay
        'visibility_timeout': 3600,
        'socket_keepalive': True,
        'socket_connect_timeout': 5,
    },

    # ===== RESULT BACKEND CONFIGURATION =====
    result_expires=3600,

    # ===== SERIALIZATION =====
    task_serializer='json',
    result_serializer='json',
    accept_content=['json'],

    # ===== QUEUE CONFIGURATION =====
    task_default_queue='receipts',
    task_routes={
        'tasks.send_delivery_receipt': {'queue': 'receipts'},
    },
)


# ============================================
# SIGNAL HANDLERS
# ============================================

@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, **extra):
    task_name = sender.name if sender else 'unknown'
    logger.error(f"❌ Task failure: {task_name} [{task_id}] - {exception}")


@task_retry.connect
def task_retry_handler(sender=None, request=None, reason=None, **kwargs):
    task_name = sender.name if sender else 'unknown'
    logger.warning(f"⚠️  Task retry: {task_name} - Reason: {reason}")


@worker_ready.connect
def worker_ready_handler(sender=None, **kwargs):
    hostname = sender.hostname if sender else 'unknown'
    logger.info(f"✅ Celery worker ready: {hostname}")
    logger.info(f"📮 Receipt callback URL: {settings.RECEIPT_CALLBACK_URL}")


@worker_shutdown.connect
def worker_shutdown_handler(sender=None, **kwargs):
    hostname = sender.hostname if sender else 'unknown'
    logger.info(f"🛑 Celery worker shutting down: {hostname}")


def verify_celery_config() -> Dict[str, Any]:
    """Summarize the active Celery configuration"""
    return {
        "broker": celery_app.conf.broker_url,
        "backend": celery_app.conf.result_backend,
        "timezone": celery_app.conf.timezone,
        "included_tasks": list(celery_app.conf.include),
        "default_queue": celery_app.conf.task_default_queue,
    }
