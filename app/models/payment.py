"""Payment model - one attempt to collect money."""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import String, DateTime, ForeignKey, Integer, JSON, Index, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow
from app.fsm.states import PaymentStatus, PaymentType


class Payment(Base):
    """
    Payment attempt with a strict status lifecycle.

    status only ever moves through conditional updates
    (see PaymentService.transition). Once completed, the grant fields
    (type, amount_cents, plan_id, credits_amount) never change again.
    """

    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_status_created_at", "status", "created_at"),
        Index("ix_payments_owner_status", "owner_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Null for guest checkout until linked
    owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Processor checkout session id
    checkout_ref: Mapped[Optional[str]] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
    )

    type: Mapped[str] = mapped_column(
        String(20),
        default=PaymentType.SUBSCRIPTION.value,
        nullable=False,
    )

    # Minor currency units, never floats
    amount_cents: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        default="ZAR",
        nullable=False,
    )

    plan_id: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
    )

    credits_amount: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
    )

    # Audit bag: activation_method, guest_token, period, months, reverted...
    meta: Mapped[Dict[str, Any]] = mapped_column(
        "metadata",
        JSON().with_variant(JSONB(), "postgresql"),
        default=dict,
        nullable=False,
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Set once, by whoever wins the grant claim
    granted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
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
        return f"<Payment {self.id} {self.type} {self.status}>"

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def payment_type(self) -> PaymentType:
        return PaymentType.parse(self.type)

    @property
    def resolved_plan_id(self) -> Optional[str]:
        return self.plan_id or (self.meta or {}).get("planId")

    @property
    def resolved_credits(self) -> int:
        if self.credits_amount:
            return self.credits_amount
        try:
            return int((self.meta or {}).get("credits") or 0)
        except (TypeError, ValueError):
            return 0

    @property
    def subscription_months(self) -> int:
        try:
            return max(1, int((self.meta or {}).get("months") or 1))
        except (TypeError, ValueError):
            return 1

    @property
    def billing_period(self) -> str:
        return (self.meta or {}).get("period") or "monthly"
