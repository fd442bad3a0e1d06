"""
Poll Service - checkout-success page polling.

The payer's browser calls this repeatedly after the processor redirects
back. A redirect proves nothing, so a pending payment is only activated
after the processor confirms the charge.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from redis.asyncio.client import Redis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import utcnow
from app.fsm.states import ActivationMethod, PaymentType, PollStatus
from app.models.payment import Payment
from app.models.user import User
from app.redis import first_seen, incr_with_ttl
from app.services.activation_service import ActivationService
from app.services.payment_service import PaymentService
from app.services.verification_service import VerificationService

logger = logging.getLogger(__name__)


@dataclass
class PollResult:
    status: PollStatus
    type: Optional[str] = None
    plan: Optional[str] = None
    credits: Optional[int] = None
    method: Optional[str] = None
    attempt: int = 0
    assume_success: bool = False
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def describe(status: PollStatus, payment: Payment, **kwargs: Any) -> PollResult:
    """PollResult carrying what the payment grants."""
    is_subscription = payment.payment_type == PaymentType.SUBSCRIPTION
    return PollResult(
        status=status,
        type=payment.payment_type.value,
        plan=payment.resolved_plan_id if is_subscription else None,
        credits=None if is_subscription else payment.resolved_credits,
        method=(payment.meta or {}).get("activation_method"),
        **kwargs,
    )


class PollService:
    """Service behind POST /api/payments/activate."""

    def __init__(
        self,
        db: AsyncSession,
        redis: Redis,
        verifier: Optional[VerificationService] = None,
    ):
        self.db = db
        self.redis = redis
        self.payments = PaymentService(db)
        self.verifier = verifier or VerificationService()

    async def _track_attempt(self, payment: Payment, now: datetime) -> Dict[str, Any]:
        """Count this poll and decide whether the UI should stop waiting."""
        ttl = settings.sweep_expiry_seconds
        try:
            attempt = await incr_with_ttl(self.redis, f"poll:attempts:{payment.id}", ttl)
            started = await first_seen(self.redis, f"poll:started:{payment.id}", now.timestamp(), ttl)
        except RedisError as e:
            logger.warning(f"Poll attempt tracking unavailable for payment {payment.id}: {e}")
            return {"attempt": 0, "assume_success": False}

        window_passed = now.timestamp() - started >= settings.poll_window_seconds
        return {
            "attempt": attempt,
            "assume_success": attempt >= settings.poll_max_attempts or window_passed,
        }

    async def poll(self, user: User, now: Optional[datetime] = None) -> PollResult:
        now = now or utcnow()

        payment = await self.payments.get_latest_pending_for_user(user.id)
        if not payment:
            since = now - timedelta(seconds=settings.poll_recent_completed_seconds)
            recent = await self.payments.get_recent_completed_for_user(user.id, since)
            if recent:
                return describe(
                    PollStatus.ALREADY_ACTIVE,
                    recent,
                    message="Your purchase is already active",
                )
            return PollResult(
                status=PollStatus.NO_PENDING_PAYMENT,
                message="No pending payment found",
            )

        progress = await self._track_attempt(payment, now)
        verification = await self.verifier.verify(payment.checkout_ref)

        if verification.paid:
            payment_id = payment.id
            result = await ActivationService(self.db).activate(payment_id, ActivationMethod.CLIENT_POLL)
            # A lost race or a failure rolls the session back; reload
            payment = await self.payments.get_payment(payment_id)
            if result.success:
                status = PollStatus.ALREADY_ACTIVE if result.already_completed else PollStatus.ACTIVATED
                return describe(status, payment, message="Payment confirmed", **progress)

            logger.error(f"Verified payment {payment_id} could not be activated: {result.error}")
            return describe(
                PollStatus.PROCESSING,
                payment,
                message="Payment received, finishing activation",
                **progress,
            )

        if verification.indeterminate:
            logger.info(
                f"Poll for payment {payment.id}: not confirmed yet ({verification.status})",
                extra={"payment_id": str(payment.id)},
            )
            return describe(
                PollStatus.PROCESSING,
                payment,
                message="Waiting for payment confirmation",
                **progress,
            )

        logger.info(
            f"Poll for payment {payment.id}: not paid ({verification.status})",
            extra={"payment_id": str(payment.id)},
        )
        return describe(
            PollStatus.NOT_PAID,
            payment,
            message="Payment was not completed",
            attempt=progress["attempt"],
        )
