"""
Payment Sweep Worker.

Runs every few minutes to verify, activate or expire pending payments.
"""

import logging
from app.workers.celery_app import celery_app
from app.database import get_db_context, close_db

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def sweep_pending_payments(self):
    """
    Reconcile every pending payment with the processor.

    Safe to overlap with itself, the webhook and the poller.
    """
    import asyncio

    async def run():
        try:
            async with get_db_context() as db:
                from app.services.sweep_service import SweepService

                service = SweepService(db)
                summary = await service.sweep()

                return summary
        finally:
            # Pooled connections belong to this event loop
            await close_db()

    try:
        summary = asyncio.run(run())
        logger.info(
            f"Sweep: {summary.checked} checked, {summary.activated} activated, {summary.expired} expired"
        )
        return {
            "success": True,
            "checked": summary.checked,
            "activated": summary.activated,
            "expired": summary.expired,
        }
    except Exception as e:
        logger.error(f"Payment sweep failed: {e}")
        self.retry(exc=e, countdown=60)
