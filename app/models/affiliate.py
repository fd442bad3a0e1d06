"""Affiliate models - affiliates, referrals and commission earnings."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Integer, Numeric, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow
from app.fsm.states import AffiliateStatus, ReferralStatus


class Affiliate(Base):
    """Affiliate with a shareable ref code and running totals."""

    __tablename__ = "affiliates"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    ref_code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
    )

    # Fraction of the payment amount, e.g. 0.2000
    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 4),
        default=Decimal("0.2000"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=AffiliateStatus.ACTIVE.value,
        nullable=False,
    )

    total_signups: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_conversions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_earned_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Affiliate {self.ref_code} {self.status}>"


class Referral(Base):
    """A user brought in by an affiliate. One per referred user."""

    __tablename__ = "referrals"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    referred_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    ref_code_used: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=ReferralStatus.SIGNED_UP.value,
        nullable=False,
    )

    first_payment_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Referral {self.ref_code_used} -> {self.referred_user_id}>"


class AffiliateEarning(Base):
    """
    Commission ledger.
    payment_id is unique - exactly one commission per payment.
    """

    __tablename__ = "affiliate_earnings"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    referral_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("referrals.id", ondelete="CASCADE"),
        nullable=False,
    )

    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payments.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )

    amount_cents: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 4),
        nullable=False,
    )

    description: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    # Payout status (payouts are handled by the affiliate admin tooling)
    status: Mapped[str] = mapped_column(
        String(20),
        default="pending",
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AffiliateEarning payment={self.payment_id} amount={self.amount_cents}>"
