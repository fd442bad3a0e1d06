"""
Payment Service - payment record store.

All status changes go through `transition`, a single conditional UPDATE
on the status column. Never read-then-write a status.
"""

import uuid
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import utcnow
from app.fsm.machine import ensure_transition
from app.fsm.states import PaymentStatus, PaymentType
from app.models.payment import Payment

logger = logging.getLogger(__name__)


class PaymentNotFoundError(Exception):
    """Raised when a payment id does not resolve to a record."""


class PaymentService:
    """Service for payment records and their lifecycle."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_payment(self, payment_id: uuid.UUID) -> Optional[Payment]:
        """Get payment by ID, always re-read from the database."""
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_checkout_ref(self, checkout_ref: str) -> Optional[Payment]:
        """Exact match on the processor checkout reference."""
        result = await self.db.execute(
            select(Payment)
            .where(Payment.checkout_ref == checkout_ref)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_pending_match(
        self,
        owner_id: uuid.UUID,
        amount_cents: int,
    ) -> Optional[Payment]:
        """Most recent pending payment for an owner with exactly this amount."""
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.owner_id == owner_id,
                Payment.status == PaymentStatus.PENDING.value,
                Payment.amount_cents == amount_cents,
            )
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_latest_pending_for_user(self, user_id: uuid.UUID) -> Optional[Payment]:
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.owner_id == user_id,
                Payment.status == PaymentStatus.PENDING.value,
            )
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_recent_completed_for_user(
        self,
        user_id: uuid.UUID,
        since: datetime,
    ) -> Optional[Payment]:
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.owner_id == user_id,
                Payment.status == PaymentStatus.COMPLETED.value,
                Payment.completed_at >= since,
            )
            .order_by(Payment.completed_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_pending(self) -> List[Payment]:
        """All pending payments, newest first."""
        result = await self.db.execute(
            select(Payment)
            .where(Payment.status == PaymentStatus.PENDING.value)
            .order_by(Payment.created_at.desc())
        )
        return list(result.scalars().all())

    async def find_guest_payment(self, guest_token: str) -> Optional[Payment]:
        """Ownerless payment carrying this guest token."""
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.owner_id.is_(None),
                Payment.meta["guest_token"].as_string() == guest_token,
            )
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_payment(
        self,
        payment_type: PaymentType,
        amount_cents: int,
        currency: str,
        owner_id: Optional[uuid.UUID] = None,
        checkout_ref: Optional[str] = None,
        plan_id: Optional[str] = None,
        credits_amount: Optional[int] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Payment:
        """Record a new pending payment."""
        payment = Payment(
            owner_id=owner_id,
            checkout_ref=checkout_ref,
            status=PaymentStatus.PENDING.value,
            type=payment_type.value,
            amount_cents=amount_cents,
            currency=currency,
            plan_id=plan_id,
            credits_amount=credits_amount,
            meta=dict(meta or {}),
        )
        self.db.add(payment)
        await self.db.flush()

        logger.info(
            f"Payment {payment.id} created: {payment_type.value} {amount_cents} {currency}",
            extra={"payment_id": str(payment.id)},
        )
        return payment

    async def transition(
        self,
        payment_id: uuid.UUID,
        from_statuses: Iterable[PaymentStatus],
        to_status: PaymentStatus,
        meta: Optional[Dict[str, Any]] = None,
        **values: Any,
    ) -> bool:
        """
        Compare-and-swap on status.

        UPDATE payments SET status=:to ... WHERE id=:id AND status IN (:from)
        Returns True only for the caller whose update touched the row.
        """
        from_statuses = list(from_statuses)
        for current in from_statuses:
            ensure_transition(current, to_status)

        values["status"] = to_status.value
        values["updated_at"] = utcnow()
        if meta is not None:
            values["meta"] = meta

        result = await self.db.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status.in_([s.value for s in from_statuses]),
            )
            .values({getattr(Payment, key): value for key, value in values.items()})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def claim_grant(self, payment_id: uuid.UUID) -> bool:
        """
        Claim the right to apply this payment's entitlement.

        Only completed, owned, not-yet-granted payments can be claimed,
        and only one caller ever wins.
        """
        now = utcnow()
        result = await self.db.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status == PaymentStatus.COMPLETED.value,
                Payment.owner_id.is_not(None),
                Payment.granted_at.is_(None),
            )
            .values(granted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def link_owner(self, payment_id: uuid.UUID, owner_id: uuid.UUID) -> bool:
        """Attach an owner to a guest payment. Never re-assigns an owner."""
        result = await self.db.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.owner_id.is_(None),
            )
            .values(owner_id=owner_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
