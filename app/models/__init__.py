"""Models package for database models."""

from app.models.user import User
from app.models.payment import Payment
from app.models.credit_transaction import CreditTransaction
from app.models.affiliate import Affiliate, Referral, AffiliateEarning
from app.models.side_effect_job import SideEffectJob

__all__ = [
    "User",
    "Payment",
    "CreditTransaction",
    "Affiliate",
    "Referral",
    "AffiliateEarning",
    "SideEffectJob",
]
