"""
Side-Effect Worker.

Drains the outbox: payment e-mails, admin notices and affiliate
commissions. Activation never waits on any of this.
"""

import uuid
import logging
from typing import Optional

from app.workers.celery_app import celery_app
from app.database import get_db_context, close_db

logger = logging.getLogger(__name__)


def _drain(payment_id: Optional[str] = None) -> dict:
    import asyncio

    async def run():
        try:
            async with get_db_context() as db:
                from app.services.outbox_service import OutboxService

                service = OutboxService(db)
                return await service.process_due(
                    uuid.UUID(payment_id) if payment_id else None
                )
        finally:
            # Pooled connections belong to this event loop
            await close_db()

    return asyncio.run(run())


@celery_app.task(bind=True, max_retries=3)
def process_payment_side_effects(self, payment_id: str):
    """Run one payment's jobs right after its activation commits."""
    try:
        counts = _drain(payment_id)
        logger.info(f"Side effects for payment {payment_id}: {counts}")
        return {"success": True, **counts}
    except Exception as e:
        logger.error(f"Side effects for payment {payment_id} failed: {e}")
        self.retry(exc=e, countdown=30)


@celery_app.task(bind=True, max_retries=3)
def process_side_effects(self):
    """Periodic drain of every due job, including retries."""
    try:
        counts = _drain()
        return {"success": True, **counts}
    except Exception as e:
        logger.error(f"Side-effect drain failed: {e}")
        self.retry(exc=e, countdown=60)
