"""
Marketplace — Celery tasks (reconciliation sweeps)

Workers run outside the FastAPI process. Each task builds its own database
handle and gateway client inside a fresh event loop, runs one sweep through
ReconciliationService, and tears both down again.
"""
import asyncio
import logging

from marketplace.core.celery_app import celery_app
from marketplace.core.config import get_settings
from marketplace.db.database import Database
from marketplace.services.delivery_service import DeliveryService
from marketplace.services.payment_gateway import MercadoPagoGateway
from marketplace.services.reconciliation_service import ReconciliationService

settings = get_settings()
logger = logging.getLogger(__name__)


async def _run_sweep(sweep):
    database = Database.from_settings(settings)
    gateway = MercadoPagoGateway.from_settings(settings)
    try:
        reconciliation = ReconciliationService(database, gateway, DeliveryService(database, settings), settings)
        return await sweep(reconciliation)
    finally:
        await gateway.close()
        await database.dispose()


@celery_app.task(
    name="marketplace.expire_pending_orders",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
)
def expire_pending_orders(self, older_than_minutes: int | None = None):
    """Settle or cancel pending orders older than the cutoff."""
    minutes = older_than_minutes or settings.PENDING_ORDER_EXPIRY_MINUTES
    if not minutes:
        logger.info("Pending-order expiry is not configured, skipping")
        return {"skipped": True}
    try:
        result = asyncio.run(_run_sweep(lambda r: r.expire_stale_orders(minutes)))
    except Exception as exc:
        logger.exception("Pending-order sweep failed")
        raise self.retry(exc=exc)
    return result.model_dump()


@celery_app.task(
    name="marketplace.redeliver_undelivered",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
)
def redeliver_undelivered(self):
    """Retry depot delivery for approved orders and boss-points purchases."""
    try:
        result = asyncio.run(_run_sweep(lambda r: r.redeliver_pending()))
    except Exception as exc:
        logger.exception("Redelivery sweep failed")
        raise self.retry(exc=exc)
    return result.model_dump()
