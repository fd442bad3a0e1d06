"""Credit ledger - append-only record of every balance change."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow


class CreditTransaction(Base):
    """
    One balance change with a reason code.
    users.credits_balance is a cached sum of these rows.
    """

    __tablename__ = "credit_transactions"

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

    # Source payment (purchases and reversals)
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("payments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Signed credit delta
    amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    # CreditTransactionType value
    type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )

    description: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<CreditTransaction user={self.user_id} amount={self.amount} type={self.type}>"
