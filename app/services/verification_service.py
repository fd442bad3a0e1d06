"""
Verification Service - ground truth from the processor.

A checkout can report "completed" even when the underlying charge was
declined, so a payment only counts as paid when the payment-level record
says so. Anything short of that is not paid.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.services.yoco_service import ProcessorError, YocoService

logger = logging.getLogger(__name__)

# Payment-level statuses that mean money was collected
PAID_STATUSES = frozenset({"successful", "succeeded", "settled", "captured"})

# Payment-level statuses that may still turn into a paid one
IN_FLIGHT_PAYMENT_STATUSES = frozenset({"pending", "processing", "created"})

# Checkout statuses that are final and unpaid
DEAD_CHECKOUT_STATUSES = frozenset({"expired", "failed", "cancelled", "canceled", "abandoned"})


@dataclass(frozen=True)
class VerificationResult:
    """
    paid:          money collected, safe to activate
    status:        processor status (or an api_error_* marker)
    indeterminate: not paid *yet*, or the processor could not be asked;
                   retry later instead of reporting a failure
    """

    paid: bool
    status: str
    payment_ref: Optional[str] = None
    indeterminate: bool = False
    details: str = ""


class VerificationService:
    """Stateless verifier. Safe to call repeatedly and concurrently."""

    def __init__(self, yoco: Optional[YocoService] = None):
        self.yoco = yoco or YocoService()

    async def verify(self, checkout_ref: Optional[str]) -> VerificationResult:
        """Verify a checkout by reading the checkout and then its payment."""
        if not checkout_ref:
            return VerificationResult(
                paid=False,
                status="missing_reference",
                details="No checkout reference on payment",
            )

        if not self.yoco.is_configured:
            return VerificationResult(
                paid=False,
                status="processor_not_configured",
                indeterminate=True,
                details="Processor secret key not set",
            )

        # Step 1: checkout
        try:
            checkout = await self.yoco.get_checkout(checkout_ref)
        except ProcessorError as e:
            logger.warning(f"Checkout lookup failed for {checkout_ref}: {e}")
            return VerificationResult(
                paid=False,
                status=f"checkout_api_error_{e.code}",
                indeterminate=True,
                details=str(e),
            )

        checkout_status = str(checkout.get("status") or "unknown").lower()
        if checkout_status in DEAD_CHECKOUT_STATUSES:
            return VerificationResult(
                paid=False,
                status=checkout_status,
                details=f"Checkout {checkout_ref} is {checkout_status}",
            )
        if checkout_status != "completed":
            return VerificationResult(
                paid=False,
                status=checkout_status,
                indeterminate=True,
                details=f"Checkout {checkout_ref} still {checkout_status}",
            )

        payment_ref = checkout.get("paymentId")
        if not payment_ref:
            return VerificationResult(
                paid=False,
                status="completed_without_payment",
                indeterminate=True,
                details=f"Checkout {checkout_ref} completed but has no payment reference",
            )

        # Step 2: the payment itself. Errors here fail closed.
        try:
            payment = await self.yoco.get_payment(payment_ref)
        except ProcessorError as e:
            logger.warning(f"Payment lookup failed for {payment_ref} (checkout {checkout_ref}): {e}")
            return VerificationResult(
                paid=False,
                status=f"payment_api_error_{e.code}",
                payment_ref=payment_ref,
                indeterminate=True,
                details=str(e),
            )

        payment_status = str(payment.get("status") or "unknown").lower()
        if payment_status in PAID_STATUSES:
            return VerificationResult(
                paid=True,
                status=payment_status,
                payment_ref=payment_ref,
                details=f"Payment {payment_ref} {payment_status}",
            )

        return VerificationResult(
            paid=False,
            status=payment_status,
            payment_ref=payment_ref,
            indeterminate=payment_status in IN_FLIGHT_PAYMENT_STATUSES,
            details=f"Payment {payment_ref} {payment_status} - not paid",
        )
