"""
Reversal Service - admin / chargeback reversal of a payment.

Moves a payment to failed with an explicit reverted flag and withdraws
whatever it granted, in one transaction. History is never deleted.
"""

import uuid
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.database import utcnow
from app.fsm.machine import InvalidTransitionError
from app.fsm.states import CreditTransactionType, PaymentStatus, PaymentType
from app.models.payment import Payment
from app.services.payment_service import PaymentNotFoundError, PaymentService
from app.services.user_service import UserService

logger = logging.getLogger(__name__)


class ReversalService:
    """Service for reverting payments."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.payments = PaymentService(db)
        self.users = UserService(db)

    async def revert_payment(self, payment_id: uuid.UUID, reason: str) -> Payment:
        payment = await self.payments.get_payment(payment_id)
        if not payment:
            raise PaymentNotFoundError(str(payment_id))

        current = payment.payment_status
        now = utcnow()
        meta = dict(payment.meta or {})
        meta["reverted"] = True
        meta["reverted_at"] = now.isoformat()
        meta["revert_reason"] = reason
        meta["reverted_from"] = current.value

        # Raises InvalidTransitionError for expired / failed
        won = await self.payments.transition(
            payment_id,
            [current],
            PaymentStatus.FAILED,
            meta=meta,
        )
        if not won:
            await self.db.rollback()
            latest = await self.payments.get_payment(payment_id)
            raise InvalidTransitionError(latest.payment_status, PaymentStatus.FAILED)

        # Re-read after the swap: a grant that committed before it is visible now
        payment = await self.payments.get_payment(payment_id)
        if payment.granted_at is not None and payment.owner_id is not None:
            await self._withdraw(payment)

        await self.db.commit()
        logger.warning(
            f"Payment {payment_id} reverted ({current.value} -> failed): {reason}",
            extra={"payment_id": str(payment_id)},
        )
        return payment

    async def _withdraw(self, payment: Payment) -> None:
        user = await self.users.get_user_by_id(payment.owner_id)
        if not user:
            logger.warning(f"Owner of reverted payment {payment.id} no longer exists")
            return

        if payment.payment_type == PaymentType.SUBSCRIPTION:
            await self.users.revoke_subscription(user)
            return

        credits = min(payment.resolved_credits, user.credits_balance)
        if credits > 0:
            await self.users.change_credits(
                user,
                -credits,
                CreditTransactionType.REVERSAL,
                f"Reversed {credits} credits (payment {payment.id})",
                payment_id=payment.id,
            )
