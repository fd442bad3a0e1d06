"""
Checkout Service - hosted checkout creation and guest link-up.
"""

import secrets
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from redis.asyncio.client import Redis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.fsm.states import (
    ActivationMethod,
    BillingPeriod,
    CreditPack,
    PaymentStatus,
    PaymentType,
    PlanTier,
)
from app.models.payment import Payment
from app.models.user import User
from app.redis import incr_with_ttl
from app.services.activation_service import ActivationResult, ActivationService
from app.services.payment_service import PaymentService
from app.services.verification_service import VerificationService
from app.services.yoco_service import ProcessorError, YocoService

logger = logging.getLogger(__name__)


class CheckoutCreationError(Exception):
    """Invalid purchase request or the processor refused the checkout."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class GuestRateLimitError(Exception):
    """Too many guest checkouts from one client address."""


@dataclass
class CheckoutSession:
    payment_id: str
    checkout_id: str
    checkout_url: str
    guest_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "paymentId": self.payment_id,
            "checkoutId": self.checkout_id,
            "checkoutUrl": self.checkout_url,
        }
        if self.guest_token:
            data["guestToken"] = self.guest_token
        return data


def resolve_purchase(
    payment_type: str,
    plan_id: Optional[str] = None,
    pack_id: Optional[str] = None,
    period: str = BillingPeriod.MONTHLY.value,
) -> Tuple[PaymentType, int, Dict[str, str]]:
    """
    Price a purchase from the catalog.
    Returns (type, amount in cents, metadata for the processor and the record).
    """
    try:
        kind = PaymentType.parse(payment_type)
    except ValueError:
        raise CheckoutCreationError("Invalid payment type")

    if kind == PaymentType.SUBSCRIPTION:
        try:
            plan = PlanTier(plan_id)
            billing = BillingPeriod(period)
        except ValueError:
            raise CheckoutCreationError("Invalid plan or billing period")
        if not plan.is_paid:
            raise CheckoutCreationError("Invalid plan or billing period")
        return kind, plan.price_cents(billing), {
            "type": kind.value,
            "planId": plan.value,
            "period": billing.value,
            "months": str(billing.months),
            "description": f"{plan.display_name} Plan",
        }

    try:
        pack = CreditPack(pack_id)
    except ValueError:
        raise CheckoutCreationError("Invalid credit pack")
    return kind, pack.price_cents, {
        "type": kind.value,
        "packId": pack.value,
        "credits": str(pack.credits),
        "description": f"{pack.credits} Credit Pack",
    }


class CheckoutService:
    """Service for starting purchases and linking guest payments."""

    def __init__(
        self,
        db: AsyncSession,
        yoco: Optional[YocoService] = None,
        verifier: Optional[VerificationService] = None,
    ):
        self.db = db
        self.payments = PaymentService(db)
        self.yoco = yoco or YocoService()
        self.verifier = verifier or VerificationService(self.yoco)

    async def _start(
        self,
        payment_type: PaymentType,
        amount_cents: int,
        metadata: Dict[str, str],
        success_url: str,
        owner: Optional[User] = None,
    ) -> Tuple[Payment, Dict[str, Any]]:
        if not self.yoco.is_configured:
            raise CheckoutCreationError("Payment system not configured", status_code=503)

        site = settings.public_site_url.rstrip("/")
        try:
            checkout = await self.yoco.create_checkout(
                amount_cents,
                metadata,
                success_url=success_url,
                cancel_url=f"{site}/pricing?cancelled=true",
                failure_url=f"{site}/pricing?failed=true",
            )
        except ProcessorError as e:
            logger.error(f"Checkout creation failed: {e}")
            raise CheckoutCreationError("Payment provider error", status_code=502) from e

        payment = await self.payments.create_payment(
            payment_type,
            amount_cents,
            settings.processor_currency,
            owner_id=owner.id if owner else None,
            checkout_ref=checkout["id"],
            plan_id=metadata.get("planId"),
            credits_amount=int(metadata["credits"]) if metadata.get("credits") else None,
            meta=metadata,
        )
        await self.db.commit()
        return payment, checkout

    async def create_checkout(
        self,
        user: User,
        payment_type: str,
        plan_id: Optional[str] = None,
        pack_id: Optional[str] = None,
        period: str = BillingPeriod.MONTHLY.value,
    ) -> CheckoutSession:
        """Create a checkout for a signed-in user."""
        kind, amount_cents, metadata = resolve_purchase(payment_type, plan_id, pack_id, period)
        metadata["userId"] = str(user.id)

        site = settings.public_site_url.rstrip("/")
        payment, checkout = await self._start(
            kind,
            amount_cents,
            metadata,
            success_url=f"{site}/dashboard?payment=success",
            owner=user,
        )

        logger.info(f"Checkout {checkout['id']} created for user {user.id}: {kind.value} {amount_cents}")
        return CheckoutSession(
            payment_id=str(payment.id),
            checkout_id=checkout["id"],
            checkout_url=checkout.get("redirectUrl", ""),
        )

    async def create_guest_checkout(
        self,
        redis: Redis,
        client_ip: str,
        payment_type: str,
        plan_id: Optional[str] = None,
        pack_id: Optional[str] = None,
        period: str = BillingPeriod.MONTHLY.value,
    ) -> CheckoutSession:
        """Create an ownerless checkout, claimable later with its guest token."""
        try:
            attempts = await incr_with_ttl(
                redis,
                f"ratelimit:guest_checkout:{client_ip}",
                settings.guest_checkout_rate_window_seconds,
            )
        except RedisError as e:
            # Fail open while Redis is down
            logger.warning(f"Guest checkout rate limit unavailable for {client_ip}: {e}")
            attempts = 0
        if attempts > settings.guest_checkout_rate_limit:
            logger.warning(f"Guest checkout rate limit hit for {client_ip}")
            raise GuestRateLimitError(client_ip)

        kind, amount_cents, metadata = resolve_purchase(payment_type, plan_id, pack_id, period)
        guest_token = secrets.token_hex(16)
        metadata["guest"] = "true"
        metadata["guest_token"] = guest_token

        site = settings.public_site_url.rstrip("/")
        item = metadata.get("planId") or metadata.get("packId")
        payment, checkout = await self._start(
            kind,
            amount_cents,
            metadata,
            success_url=f"{site}/signup?paid=true&token={guest_token}&type={kind.value}&plan={item}",
        )

        logger.info(f"Guest checkout {checkout['id']} created: {kind.value} {amount_cents}")
        return CheckoutSession(
            payment_id=str(payment.id),
            checkout_id=checkout["id"],
            checkout_url=checkout.get("redirectUrl", ""),
            guest_token=guest_token,
        )

    async def link_guest_payment(self, user: User, guest_token: str) -> Optional[ActivationResult]:
        """
        Attach a guest payment to a freshly signed-up user.

        Returns None when no ownerless payment carries the token. A payment
        that is still pending and not yet paid comes back unsuccessful and
        is left for the webhook or the sweep.
        """
        payment = await self.payments.find_guest_payment(guest_token)
        if not payment:
            return None

        payment_id = payment.id
        if not await self.payments.link_owner(payment_id, user.id):
            await self.db.rollback()
            logger.info(f"Guest payment {payment_id} was linked by someone else")
            return None
        await self.db.commit()
        logger.info(f"Guest payment {payment_id} linked to user {user.id}")

        payment = await self.payments.get_payment(payment_id)
        activation = ActivationService(self.db)

        if payment.payment_status == PaymentStatus.COMPLETED:
            return await activation.activate(payment_id, ActivationMethod.GUEST_LINK)

        if payment.payment_status == PaymentStatus.PENDING and payment.checkout_ref:
            verification = await self.verifier.verify(payment.checkout_ref)
            if verification.paid:
                return await activation.activate(payment_id, ActivationMethod.GUEST_LINK)
            return ActivationResult(
                success=False,
                method=ActivationMethod.GUEST_LINK.value,
                error=f"not paid yet ({verification.status})",
            )

        return ActivationResult(
            success=False,
            method=ActivationMethod.GUEST_LINK.value,
            error=f"payment is {payment.status}",
        )
