"""
Celery background tasks for Tillpoint.
"""
import logging
from typing import Optional

from celery.signals import worker_process_init

from tillpoint.core.config import get_settings
from tillpoint.core.database import Database
from tillpoint.core.logging import configure_logging
from tillpoint.core.redis_client import CacheManager
from tillpoint.core.time_utils import utcnow
from tillpoint.services.container import ServiceContainer, build_services
from tillpoint.worker.celery import celery

logger = logging.getLogger(__name__)

# Composition root for the worker: one container per worker process. It is
# built after fork so no engine or redis connection crosses processes.
_services: Optional[ServiceContainer] = None


def get_worker_services() -> ServiceContainer:
    """Services for this worker process, built on first use."""
    global _services
    if _services is None:
        settings = get_settings()
        configure_logging(settings)
        _services = build_services(
            settings,
            Database.from_settings(settings),
            CacheManager.from_settings(settings),
        )
    return _services


@worker_process_init.connect
def init_worker_services(**kwargs):
    """Build the worker process's services as soon as the child starts."""
    global _services
    _services = None
    get_worker_services()


@celery.task(bind=True)
def reconcile_inventory(self):
    """Compare every product's stock with the sum of its ledger entries."""
    try:
        logger.info("Starting inventory reconciliation task")

        mismatched = get_worker_services().stock_ledger.reconcile_all()

        if mismatched:
            logger.error(f"Stock ledger mismatch for products {mismatched}")
        else:
            logger.info("Inventory reconciled with no mismatches")
        return {
            "status": "success",
            "mismatched_products": mismatched,
            "timestamp": utcnow().isoformat()
        }

    except Exception as e:
        logger.error(f"Failed to reconcile inventory: {e}")
        raise self.retry(countdown=1800, max_retries=2)


@celery.task(bind=True)
def check_barcode_pool(self):
    """Raise a pool alert when available barcodes reach the warning level."""
    try:
        services = get_worker_services()
        status = services.barcodes.pool_status()
        alert = services.alerts.check_barcode_pool(
            status.available_count, status.warning_level, status.critical_level
        )

        logger.info(f"Barcode pool has {status.available_count} available")
        return {
            "status": "success",
            "available_count": status.available_count,
            "alert_id": alert.id if alert else None,
            "timestamp": utcnow().isoformat()
        }

    except Exception as e:
        logger.error(f"Failed to check barcode pool: {e}")
        raise self.retry(countdown=300, max_retries=3)


@celery.task(bind=True)
def cleanup_expired_alerts(self):
    """Clean up expired alerts."""
    try:
        logger.info("Starting expired alerts cleanup task")

        expired_count = get_worker_services().alerts.cleanup_expired_alerts()

        logger.info(f"Cleaned up {expired_count} expired alerts")
        return {
            "status": "success",
            "expired_count": expired_count,
            "timestamp": utcnow().isoformat()
        }

    except Exception as e:
        logger.error(f"Failed to cleanup expired alerts: {e}")
        raise self.retry(countdown=300, max_retries=3)


@celery.task(bind=True)
def expire_stale_pending(self):
    """Cancel pending transactions that were never paid and return their stock."""
    try:
        logger.info("Starting stale pending transaction sweep")

        cancelled = get_worker_services().checkout.expire_stale_pending()

        logger.info(f"Expired {len(cancelled)} stale pending transactions")
        return {
            "status": "success",
            "cancelled": cancelled,
            "timestamp": utcnow().isoformat()
        }

    except Exception as e:
        logger.error(f"Failed to expire pending transactions: {e}")
        raise self.retry(countdown=600, max_retries=3)
