"""
Outbox Service - side effects of a granted payment.

Jobs are written in the activation transaction and drained by a worker
with its own retry policy, so an e-mail outage or a commission bug can
never undo or delay an activation.
"""

import uuid
import logging
from datetime import timedelta
from typing import Dict, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import utcnow
from app.fsm.states import PaymentType, PlanTier, SideEffectKind, SideEffectStatus
from app.models.payment import Payment
from app.models.side_effect_job import SideEffectJob
from app.models.user import User
from app.services.affiliate_service import AffiliateService
from app.services.notification_service import NotificationService, format_amount

logger = logging.getLogger(__name__)

# Running jobs older than this are assumed to belong to a dead worker
STALE_RUNNING_AFTER = timedelta(minutes=15)


def schedule_side_effects(payment_id: uuid.UUID) -> None:
    """
    Ask the worker to drain this payment's jobs now.
    Fire-and-forget: the periodic drain picks them up if this fails.
    """
    try:
        from app.workers.side_effects import process_payment_side_effects

        process_payment_side_effects.delay(str(payment_id))
    except Exception as e:
        logger.warning(f"Could not schedule side effects for {payment_id}: {e}")


def describe_purchase(payment: Payment) -> str:
    if payment.payment_type == PaymentType.SUBSCRIPTION:
        plan_id = payment.resolved_plan_id or ""
        try:
            return f"{PlanTier(plan_id).display_name} plan"
        except ValueError:
            return f"{plan_id} plan"
    return f"{payment.resolved_credits} credits"


class OutboxService:
    """Service for enqueueing and running side-effect jobs."""

    def __init__(
        self,
        db: AsyncSession,
        notifications: NotificationService = None,
    ):
        self.db = db
        self.notifications = notifications or NotificationService()

    async def enqueue_for_payment(self, payment: Payment, user: User) -> List[SideEffectJob]:
        """Add the e-mail and commission jobs for a freshly granted payment."""
        item_name = describe_purchase(payment)
        amount = format_amount(payment.amount_cents, payment.currency)
        email_payload = {
            "email": user.email,
            "item_name": item_name,
            "amount": amount,
        }

        jobs = [
            SideEffectJob(
                payment_id=payment.id,
                kind=SideEffectKind.PAYMENT_EMAIL.value,
                payload=email_payload,
            ),
            SideEffectJob(
                payment_id=payment.id,
                kind=SideEffectKind.ADMIN_EMAIL.value,
                payload=email_payload,
            ),
        ]
        if payment.amount_cents > 0:
            jobs.append(
                SideEffectJob(
                    payment_id=payment.id,
                    kind=SideEffectKind.AFFILIATE_COMMISSION.value,
                    payload={
                        "user_id": str(user.id),
                        "amount_cents": payment.amount_cents,
                    },
                )
            )

        self.db.add_all(jobs)
        await self.db.flush()
        return jobs

    async def release_stale(self) -> int:
        """Put jobs stuck in running (crashed worker) back in the queue."""
        result = await self.db.execute(
            update(SideEffectJob)
            .where(
                SideEffectJob.status == SideEffectStatus.RUNNING.value,
                SideEffectJob.next_attempt_at < utcnow() - STALE_RUNNING_AFTER,
            )
            .values(status=SideEffectStatus.PENDING.value)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def _claim(self, job_id: uuid.UUID) -> bool:
        """pending -> running, for exactly one worker."""
        result = await self.db.execute(
            update(SideEffectJob)
            .where(
                SideEffectJob.id == job_id,
                SideEffectJob.status == SideEffectStatus.PENDING.value,
            )
            .values(
                status=SideEffectStatus.RUNNING.value,
                attempts=SideEffectJob.attempts + 1,
                next_attempt_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def _execute(self, job: SideEffectJob) -> bool:
        kind = SideEffectKind(job.kind)
        payload = job.payload or {}

        if kind == SideEffectKind.PAYMENT_EMAIL:
            return await self.notifications.send_payment_success(
                payload["email"], payload["item_name"], payload["amount"]
            )
        if kind == SideEffectKind.ADMIN_EMAIL:
            return await self.notifications.send_admin_payment_notice(
                payload["email"], payload["item_name"], payload["amount"]
            )
        if kind == SideEffectKind.AFFILIATE_COMMISSION:
            await AffiliateService(self.db).record_commission(
                uuid.UUID(payload["user_id"]),
                job.payment_id,
                int(payload["amount_cents"]),
            )
            return True
        return False

    async def run_job(self, job_id: uuid.UUID) -> bool:
        """Claim and run one job. Returns True when it completed."""
        if not await self._claim(job_id):
            return False

        job = await self.db.get(SideEffectJob, job_id, populate_existing=True)
        error = None
        try:
            ok = await self._execute(job)
            if not ok:
                error = "dispatcher reported failure"
        except Exception as e:
            await self.db.rollback()
            job = await self.db.get(SideEffectJob, job_id, populate_existing=True)
            ok = False
            error = str(e)
            logger.error(f"Side effect {job.kind} for payment {job.payment_id} failed: {e}", exc_info=True)

        now = utcnow()
        if ok:
            job.status = SideEffectStatus.DONE.value
            job.completed_at = now
            job.last_error = None
        elif job.attempts >= settings.outbox_max_attempts:
            job.status = SideEffectStatus.FAILED.value
            job.last_error = error
            logger.error(
                f"Side effect {job.kind} for payment {job.payment_id} gave up after {job.attempts} attempts",
                extra={"payment_id": str(job.payment_id)},
            )
        else:
            job.status = SideEffectStatus.PENDING.value
            job.last_error = error
            job.next_attempt_at = now + timedelta(seconds=settings.outbox_retry_seconds * job.attempts)
        await self.db.commit()
        return ok

    async def _due_job_ids(self, payment_id: uuid.UUID = None) -> List[uuid.UUID]:
        query = select(SideEffectJob.id).where(
            SideEffectJob.status == SideEffectStatus.PENDING.value,
        )
        if payment_id is not None:
            query = query.where(SideEffectJob.payment_id == payment_id)
        else:
            query = query.where(SideEffectJob.next_attempt_at <= utcnow())
        query = query.order_by(SideEffectJob.created_at).limit(settings.outbox_batch_size)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def process_due(self, payment_id: uuid.UUID = None) -> Dict[str, int]:
        """Drain due jobs (optionally only one payment's). Returns counts."""
        if payment_id is None:
            await self.release_stale()

        job_ids = await self._due_job_ids(payment_id)
        done = 0
        for job_id in job_ids:
            if await self.run_job(job_id):
                done += 1

        if job_ids:
            logger.info(f"Side effects: {done}/{len(job_ids)} completed")
        return {"picked": len(job_ids), "done": done, "not_done": len(job_ids) - done}
