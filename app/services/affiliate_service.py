"""
Affiliate Service - referral attribution and commission ledger.
"""

import uuid
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import utcnow
from app.fsm.states import AffiliateStatus, ReferralStatus
from app.models.affiliate import Affiliate, AffiliateEarning, Referral
from app.models.user import User
from app.services.notification_service import format_amount

logger = logging.getLogger(__name__)


def compute_commission(amount_cents: int, rate: Decimal) -> int:
    """Commission in minor units, rounded half-up."""
    return int((Decimal(amount_cents) * Decimal(rate)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class AffiliateService:
    """Service for affiliate referrals and commissions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_affiliate_by_code(self, ref_code: str) -> Optional[Affiliate]:
        result = await self.db.execute(
            select(Affiliate).where(
                Affiliate.ref_code == ref_code,
                Affiliate.status == AffiliateStatus.ACTIVE.value,
            )
        )
        return result.scalar_one_or_none()

    async def get_referral_for_user(self, user_id: uuid.UUID) -> Optional[Referral]:
        result = await self.db.execute(
            select(Referral).where(Referral.referred_user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def register_referral(self, user: User, ref_code: str) -> Optional[Referral]:
        """
        Attribute a new signup to an affiliate.
        Returns None for unknown codes, self-referral, or an existing referral.
        """
        affiliate = await self.get_active_affiliate_by_code(ref_code)
        if not affiliate:
            logger.info(f"Invalid ref code: {ref_code}")
            return None

        if affiliate.user_id == user.id:
            logger.info(f"Self-referral blocked: {user.id}")
            return None

        if await self.get_referral_for_user(user.id):
            logger.info(f"User already referred: {user.id}")
            return None

        referral = Referral(
            affiliate_id=affiliate.id,
            referred_user_id=user.id,
            ref_code_used=ref_code,
            status=ReferralStatus.SIGNED_UP.value,
        )
        self.db.add(referral)
        user.referred_by = ref_code

        await self.db.execute(
            update(Affiliate)
            .where(Affiliate.id == affiliate.id)
            .values(total_signups=Affiliate.total_signups + 1)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()

        logger.info(f"Referral recorded: {ref_code} -> {user.id}")
        return referral

    async def record_commission(
        self,
        user_id: uuid.UUID,
        payment_id: uuid.UUID,
        amount_cents: int,
    ) -> Optional[AffiliateEarning]:
        """
        Record the commission for a referred user's payment.

        Idempotent on payment_id: the earnings table is unique on it, so a
        second call (or a concurrent one) inserts nothing.
        """
        referral = await self.get_referral_for_user(user_id)
        if not referral:
            return None

        affiliate = await self.db.get(Affiliate, referral.affiliate_id)
        if not affiliate or affiliate.status != AffiliateStatus.ACTIVE.value:
            logger.info(f"Affiliate inactive, skipping commission for payment {payment_id}")
            return None

        existing = await self.db.execute(
            select(AffiliateEarning.id).where(AffiliateEarning.payment_id == payment_id)
        )
        if existing.scalar_one_or_none():
            logger.info(f"Commission already exists for payment {payment_id}")
            return None

        rate = Decimal(affiliate.commission_rate)
        commission_cents = compute_commission(amount_cents, rate)
        earning = AffiliateEarning(
            affiliate_id=affiliate.id,
            referral_id=referral.id,
            payment_id=payment_id,
            amount_cents=commission_cents,
            commission_rate=rate,
            description=(
                f"{format_amount(commission_cents)} commission "
                f"({round(rate * 100)}% of {format_amount(amount_cents)})"
            ),
        )

        try:
            async with self.db.begin_nested():
                self.db.add(earning)
                await self.db.flush()
        except IntegrityError:
            logger.info(f"Commission already exists for payment {payment_id}")
            return None

        first_payment = referral.status == ReferralStatus.SIGNED_UP.value
        await self.db.execute(
            update(Affiliate)
            .where(Affiliate.id == affiliate.id)
            .values(
                total_earned_cents=Affiliate.total_earned_cents + commission_cents,
                total_conversions=Affiliate.total_conversions + (1 if first_payment else 0),
            )
            .execution_options(synchronize_session=False)
        )
        if first_payment:
            referral.status = ReferralStatus.CONVERTED.value
            referral.first_payment_at = utcnow()
        await self.db.flush()

        logger.info(
            f"Commission {commission_cents} for affiliate {affiliate.id} from payment {payment_id}",
            extra={"payment_id": str(payment_id)},
        )
        return earning
