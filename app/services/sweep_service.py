"""
Sweep Service - periodic reconciliation of pending payments.

Runs from Celery beat and from the cron endpoint. Safe to run next to
itself or a webhook burst: every write is a conditional update.
"""

import asyncio
import uuid
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import as_utc, utcnow
from app.fsm.states import ActivationMethod, PaymentStatus
from app.services.activation_service import ActivationService
from app.services.payment_service import PaymentService
from app.services.verification_service import VerificationService

logger = logging.getLogger(__name__)


@dataclass
class SweepSummary:
    checked: int = 0
    activated: int = 0
    expired: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SweepService:
    """Service that verifies, activates or expires pending payments."""

    def __init__(
        self,
        db: AsyncSession,
        verifier: Optional[VerificationService] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.db = db
        self.payments = PaymentService(db)
        self.verifier = verifier or VerificationService()
        self.sleep = sleep

    async def expire(self, payment_id: uuid.UUID, reason: str, now: datetime) -> bool:
        """pending -> expired. Returns False when the payment moved on already."""
        payment = await self.payments.get_payment(payment_id)
        if not payment:
            return False

        meta = dict(payment.meta or {})
        meta["expired_at"] = now.isoformat()
        meta["expire_reason"] = reason

        won = await self.payments.transition(
            payment_id,
            [PaymentStatus.PENDING],
            PaymentStatus.EXPIRED,
            meta=meta,
        )
        await self.db.commit()
        return won

    async def sweep(self, now: Optional[datetime] = None) -> SweepSummary:
        now = now or utcnow()
        summary = SweepSummary()

        pending = await self.payments.list_pending()
        # Activation may roll the session back, so work from plain values
        snapshot = [(p.id, p.checkout_ref, as_utc(p.created_at)) for p in pending]
        summary.checked = len(snapshot)

        calls_made = 0
        for payment_id, checkout_ref, created_at in snapshot:
            age = (now - created_at).total_seconds()
            entry: Dict[str, Any] = {"id": str(payment_id), "age_seconds": int(age)}
            summary.results.append(entry)

            if age < settings.sweep_min_age_seconds:
                entry["action"] = "skipped_recent"
                continue

            if calls_made:
                await self.sleep(settings.sweep_call_delay_seconds)
            calls_made += 1

            verification = await self.verifier.verify(checkout_ref)
            entry["verification"] = verification.status

            if verification.paid:
                result = await ActivationService(self.db).activate(payment_id, ActivationMethod.SWEEP)
                if result.success and not result.already_completed:
                    summary.activated += 1
                    entry["action"] = "activated"
                elif result.success:
                    entry["action"] = "already_completed"
                else:
                    entry["action"] = "activation_failed"
                    entry["error"] = result.error
                continue

            if age > settings.sweep_expiry_seconds:
                if await self.expire(payment_id, verification.status, now):
                    summary.expired += 1
                    entry["action"] = "expired"
                else:
                    entry["action"] = "moved_on"
                continue

            entry["action"] = "waiting"

        logger.info(
            f"Sweep done: {summary.checked} checked, {summary.activated} activated, {summary.expired} expired"
        )
        return summary
