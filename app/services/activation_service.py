"""
Activation Service - the single activation engine.

Webhook, client poll, sweep and guest link-up all call `activate`.
Concurrency safety comes from two conditional updates:

1. status pending -> completed (who completes the payment)
2. granted_at NULL -> now      (who applies the entitlement)

The status flip, the account mutation, the ledger entry and the outbox
rows commit in one transaction. Any error rolls all of it back and the
payment stays pending for the next caller.
"""

import uuid
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.database import utcnow
from app.fsm.states import (
    ActivationMethod,
    CreditTransactionType,
    PaymentStatus,
    PaymentType,
)
from app.models.payment import Payment
from app.services.outbox_service import OutboxService, schedule_side_effects
from app.services.payment_service import PaymentService
from app.services.user_service import UserService

logger = logging.getLogger(__name__)


@dataclass
class ActivationResult:
    """
    success:           payment is (now) completed
    already_completed: somebody else completed it first
    granted:           this call applied the account mutation
    """

    success: bool
    already_completed: bool = False
    method: Optional[str] = None
    error: Optional[str] = None
    granted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ActivationService:
    """Service that turns a paid payment into account entitlements."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.payments = PaymentService(db)
        self.users = UserService(db)

    async def activate(
        self,
        payment_id: uuid.UUID,
        method: Union[ActivationMethod, str],
    ) -> ActivationResult:
        """
        Complete a pending payment and grant it exactly once.
        Never raises: failures come back as ActivationResult.error.
        """
        try:
            method_tag = ActivationMethod(method).value
        except ValueError:
            logger.error(f"Unknown activation method {method!r} for payment {payment_id}")
            return ActivationResult(success=False, method=str(method), error="unknown activation method")

        try:
            result = await self._activate(payment_id, method_tag)
        except Exception as e:
            await self.db.rollback()
            logger.error(
                f"Activation of payment {payment_id} via {method_tag} failed: {e}",
                exc_info=True,
                extra={"payment_id": str(payment_id), "method": method_tag},
            )
            return ActivationResult(success=False, method=method_tag, error=str(e))

        if result.granted:
            schedule_side_effects(payment_id)
        return result

    async def _activate(self, payment_id: uuid.UUID, method: str) -> ActivationResult:
        payment = await self.payments.get_payment(payment_id)
        if not payment:
            return ActivationResult(success=False, method=method, error="not found")

        status = payment.payment_status

        if status == PaymentStatus.COMPLETED:
            # Fast path. A completed payment linked after the fact may
            # still be waiting for its grant.
            return await self._already_completed(payment, method)

        if status != PaymentStatus.PENDING:
            return self._refuse(payment_id, status, method)

        now = utcnow()
        meta = dict(payment.meta or {})
        meta["activation_method"] = method
        meta["activated_at"] = now.isoformat()

        won = await self.payments.transition(
            payment_id,
            [PaymentStatus.PENDING],
            PaymentStatus.COMPLETED,
            meta=meta,
            completed_at=now,
        )
        if not won:
            await self.db.rollback()
            latest = await self.payments.get_payment(payment_id)
            if latest.payment_status != PaymentStatus.COMPLETED:
                return self._refuse(payment_id, latest.payment_status, method)
            logger.info(
                f"Payment {payment_id} already completed by another caller ({method} lost the race)",
                extra={"payment_id": str(payment_id), "method": method},
            )
            return await self._already_completed(latest, method)

        # The owner may have been linked after our read; the claim checks the row
        granted = await self._grant(payment_id, method)
        if not granted:
            logger.info(f"Payment {payment_id} completed without an owner, grant deferred until linked")

        await self.db.commit()
        logger.info(
            f"Payment {payment_id} activated via {method}",
            extra={"payment_id": str(payment_id), "method": method},
        )
        return ActivationResult(success=True, method=method, granted=granted)

    async def _already_completed(self, payment: Payment, method: str) -> ActivationResult:
        granted = False
        if payment.granted_at is None and payment.owner_id is not None:
            granted = await self._grant(payment.id, method)
            await self.db.commit()
        return ActivationResult(
            success=True,
            already_completed=True,
            method=method,
            granted=granted,
        )

    def _refuse(self, payment_id: uuid.UUID, status: PaymentStatus, method: str) -> ActivationResult:
        logger.info(f"Refusing to activate {status.value} payment {payment_id} via {method}")
        return ActivationResult(
            success=False,
            method=method,
            error=f"payment is {status.value}",
        )

    async def _grant(self, payment_id: uuid.UUID, method: str) -> bool:
        """Apply the entitlement if this caller wins the grant claim."""
        if not await self.payments.claim_grant(payment_id):
            return False

        payment = await self.payments.get_payment(payment_id)
        user = await self.users.get_user_by_id(payment.owner_id)
        if not user:
            raise LookupError(f"Owner {payment.owner_id} of payment {payment_id} not found")

        if payment.payment_type == PaymentType.SUBSCRIPTION:
            plan_id = payment.resolved_plan_id
            if not plan_id:
                raise ValueError(f"Subscription payment {payment_id} has no plan")
            await self.users.apply_subscription(
                user,
                plan_id,
                period=payment.billing_period,
                months=payment.subscription_months,
            )
        else:
            credits = payment.resolved_credits
            if credits > 0:
                await self.users.change_credits(
                    user,
                    credits,
                    CreditTransactionType.PURCHASE,
                    f"Purchased {credits} credits ({method})",
                    payment_id=payment.id,
                )

        await OutboxService(self.db).enqueue_for_payment(payment, user)
        return True
