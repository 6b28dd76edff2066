"""
Stale Payment Reconciliation Worker.

Flow's confirmation webhook can be lost and payers don't always come back
from checkout. Every ten minutes this re-checks PENDING payments older than
RECONCILE_MIN_AGE_MINUTES through the same guarded path as the webhook.
"""

import asyncio
import logging
from collections import Counter
from datetime import timedelta
from typing import AsyncContextManager, Callable, Dict

from redis.asyncio.client import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import close_db, get_db_context
from app.redis import RedisClient, redis_lock
from app.services.flow_service import FlowClient
from app.services.payment_ledger import PaymentLedger
from app.services.reconciliation_service import ReconciliationService
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

SWEEP_LOCK_NAME = "payments:reconcile-sweep"
SWEEP_LOCK_TTL_SECONDS = 240

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


@celery_app.task(bind=True, max_retries=3)
def reconcile_stale_payments(self):
    """Celery entry point for the periodic sweep."""

    async def run():
        flow = FlowClient(settings)
        try:
            return await sweep_stale_payments(flow, RedisClient.get_client())
        finally:
            await flow.aclose()
            await RedisClient.close()
            await close_db()

    try:
        counts = asyncio.run(run())
        logger.info(f"Stale payment sweep finished: {counts}")
        return {"success": True, **counts}
    except Exception as e:
        logger.error(f"Stale payment sweep failed: {e}", exc_info=True)
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))


async def sweep_stale_payments(
    flow: FlowClient,
    redis: Redis,
    session_factory: SessionFactory = get_db_context,
    min_age: timedelta = timedelta(minutes=settings.reconcile_min_age_minutes),
    batch_size: int = settings.reconcile_batch_size,
) -> Dict[str, int]:
    """
    Reconcile one batch of stale PENDING payments.

    Each payment gets its own session so a failure on one doesn't roll
    back the others.
    """
    async with redis_lock(redis, SWEEP_LOCK_NAME, SWEEP_LOCK_TTL_SECONDS) as acquired:
        if not acquired:
            logger.info("Another sweep holds the lock, skipping")
            return {"skipped": 1}

        async with session_factory() as db:
            stale = await PaymentLedger(db).list_stale_pending(min_age, batch_size)
            payment_ids = [payment.id for payment in stale]

        logger.info(f"Reconciling {len(payment_ids)} stale PENDING payments")

        counts: Counter = Counter()
        for payment_id in payment_ids:
            try:
                async with session_factory() as db:
                    service = ReconciliationService(db, flow)
                    payment = await service.ledger.get_payment(payment_id)
                    outcome = await service.reconcile_payment(payment)
                counts[outcome.action.value] += 1
            except Exception as e:
                logger.error(
                    f"Could not reconcile payment {payment_id}: {e}",
                    exc_info=True,
                    extra={"payment_id": payment_id},
                )
                counts["error"] += 1

        return dict(counts)
