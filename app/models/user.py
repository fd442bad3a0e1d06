"""User model - account, plan and credit balance."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow
from app.fsm.states import PlanTier, SubscriptionStatus


class User(Base):
    """
    Subscription holder.
    Plan and credit fields change only as the side effect of a payment
    transition (or scheduled usage resets, handled elsewhere).
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )

    role: Mapped[str] = mapped_column(
        String(20),
        default="user",
        nullable=False,
    )

    # Active plan (PlanTier value)
    plan_id: Mapped[str] = mapped_column(
        String(20),
        default=PlanTier.FREE.value,
        nullable=False,
    )

    subscription_status: Mapped[str] = mapped_column(
        String(20),
        default=SubscriptionStatus.INACTIVE.value,
        nullable=False,
    )

    subscription_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    billing_period: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
    )

    billing_cycle_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Usage counters (reset on every subscription activation)
    monthly_scans_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    monthly_scans_reset_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    daily_scans_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    daily_scans_reset_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    daily_chats_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    daily_chats_reset_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Standing top-up balance. Cached sum of credit_transactions.
    credits_balance: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    # Affiliate ref code used at signup
    referred_by: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User {self.email} plan={self.plan_id}>"

    @property
    def has_active_subscription(self) -> bool:
        """Paid plan with an active subscription."""
        return (
            self.subscription_status == SubscriptionStatus.ACTIVE.value
            and self.plan_id != PlanTier.FREE.value
        )
