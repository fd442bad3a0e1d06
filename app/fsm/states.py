"""
Billing State Definitions.
Payment lifecycle, plan catalog and activation enums.
"""

from enum import Enum
from typing import Optional


class PaymentStatus(str, Enum):
    """
    Payment lifecycle states.
    PENDING is the only non-terminal state.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self != PaymentStatus.PENDING


class PaymentType(str, Enum):
    """What a payment grants."""

    SUBSCRIPTION = "subscription"
    CREDITS = "credits"

    @classmethod
    def parse(cls, value: Optional[str]) -> "PaymentType":
        """Accept the legacy 'topup' alias for credit purchases."""
        if value == "topup":
            return cls.CREDITS
        return cls(value)


class ActivationMethod(str, Enum):
    """Which path activated a payment (stored for audit)."""

    WEBHOOK = "webhook"
    CLIENT_POLL = "client_poll"
    SWEEP = "sweep"
    GUEST_LINK = "guest_link"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @property
    def months(self) -> int:
        return 12 if self == BillingPeriod.YEARLY else 1


class PlanTier(str, Enum):
    """
    Subscription tiers.
    Prices are in minor currency units (cents).
    """

    FREE = "free"
    BASIC = "basic"
    STARTER = "starter"
    PRO = "pro"
    UNLIMITED = "unlimited"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def order(self) -> int:
        return {
            "free": 0,
            "basic": 1,
            "starter": 2,
            "pro": 3,
            "unlimited": 4,
        }[self.value]

    @property
    def monthly_price_cents(self) -> int:
        return {
            "free": 0,
            "basic": 7900,
            "starter": 19900,
            "pro": 34900,
            "unlimited": 49900,
        }[self.value]

    @property
    def yearly_price_cents(self) -> int:
        return {
            "free": 0,
            "basic": 74900,
            "starter": 189900,
            "pro": 334900,
            "unlimited": 479900,
        }[self.value]

    @property
    def is_paid(self) -> bool:
        return self != PlanTier.FREE

    def price_cents(self, period: BillingPeriod) -> int:
        if period == BillingPeriod.YEARLY:
            return self.yearly_price_cents
        return self.monthly_price_cents

    def is_upgrade_from(self, other: "PlanTier") -> bool:
        return self.order > other.order


class CreditPack(str, Enum):
    """One-off credit top-up packs."""

    PACK_5 = "pack_5"
    PACK_12 = "pack_12"
    PACK_30 = "pack_30"

    @property
    def credits(self) -> int:
        return {
            "pack_5": 5,
            "pack_12": 12,
            "pack_30": 30,
        }[self.value]

    @property
    def price_cents(self) -> int:
        return {
            "pack_5": 4900,
            "pack_12": 9900,
            "pack_30": 19900,
        }[self.value]


class PollStatus(str, Enum):
    """Statuses reported to the checkout-success page."""

    ACTIVATED = "activated"
    ALREADY_ACTIVE = "already_active"
    PROCESSING = "processing"
    NO_PENDING_PAYMENT = "no_pending_payment"
    NOT_PAID = "not_paid"


class CreditTransactionType(str, Enum):
    PURCHASE = "purchase"
    REVERSAL = "reversal"


class SideEffectKind(str, Enum):
    """Jobs enqueued once per granted payment."""

    PAYMENT_EMAIL = "payment_email"
    ADMIN_EMAIL = "admin_email"
    AFFILIATE_COMMISSION = "affiliate_commission"


class SideEffectStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class AffiliateStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class ReferralStatus(str, Enum):
    SIGNED_UP = "signed_up"
    CONVERTED = "converted"
