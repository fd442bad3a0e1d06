"""
User Service - account lookups and entitlement mutations.
"""

import uuid
import calendar
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import utcnow
from app.fsm.states import (
    BillingPeriod,
    CreditTransactionType,
    PlanTier,
    SubscriptionStatus,
)
from app.models.credit_transaction import CreditTransaction
from app.models.user import User

logger = logging.getLogger(__name__)


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping to the last day of the month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


class UserService:
    """Service for accounts and the plan/credit fields payments mutate."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        """Get user by ID."""
        result = await self.db.execute(
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.email == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def create_user(self, email: str, role: str = "user") -> User:
        user = User(email=email.strip().lower(), role=role)
        self.db.add(user)
        await self.db.flush()
        logger.info(f"Created user {user.id}")
        return user

    async def apply_subscription(
        self,
        user: User,
        plan_id: str,
        period: str = BillingPeriod.MONTHLY.value,
        months: int = 1,
    ) -> User:
        """
        Upgrade to a paid plan.

        Sets the plan, marks the subscription active, computes expiry from
        the billing period and resets every usage counter.
        """
        plan = PlanTier(plan_id)
        if not plan.is_paid:
            raise ValueError(f"Cannot activate non-paid plan {plan_id}")

        now = utcnow()
        user.plan_id = plan.value
        user.subscription_status = SubscriptionStatus.ACTIVE.value
        user.subscription_expires_at = add_months(now, months)
        user.billing_period = period
        user.billing_cycle_start = now
        user.monthly_scans_used = 0
        user.monthly_scans_reset_at = now
        user.daily_scans_used = 0
        user.daily_scans_reset_at = now
        user.daily_chats_used = 0
        user.daily_chats_reset_at = now
        user.updated_at = now
        await self.db.flush()

        logger.info(
            f"Subscription activated: user={user.id} plan={plan.value} period={period} months={months}",
            extra={"user_id": str(user.id)},
        )
        return user

    async def revoke_subscription(self, user: User) -> User:
        """Drop back to the free plan."""
        user.plan_id = PlanTier.FREE.value
        user.subscription_status = SubscriptionStatus.INACTIVE.value
        user.subscription_expires_at = None
        user.updated_at = utcnow()
        await self.db.flush()
        logger.info(f"Subscription revoked: user={user.id}")
        return user

    async def change_credits(
        self,
        user: User,
        amount: int,
        tx_type: CreditTransactionType,
        description: str,
        payment_id: Optional[uuid.UUID] = None,
    ) -> CreditTransaction:
        """
        Apply a signed credit delta and append the matching ledger entry.
        The balance is incremented in SQL, never read-modify-written.
        """
        await self.db.execute(
            update(User)
            .where(User.id == user.id)
            .values(
                credits_balance=User.credits_balance + amount,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        entry = CreditTransaction(
            user_id=user.id,
            payment_id=payment_id,
            amount=amount,
            type=tx_type.value,
            description=description,
        )
        self.db.add(entry)
        await self.db.flush()
        await self.db.refresh(user, attribute_names=["credits_balance"])

        logger.info(
            f"Credits {amount:+d} for user={user.id} ({tx_type.value}), balance={user.credits_balance}",
            extra={"user_id": str(user.id)},
        )
        return entry
