"""Services package."""

from app.services.user_service import UserService
from app.services.payment_service import PaymentService, PaymentNotFoundError
from app.services.yoco_service import YocoService, ProcessorError
from app.services.verification_service import VerificationService, VerificationResult
from app.services.activation_service import ActivationService, ActivationResult
from app.services.outbox_service import OutboxService
from app.services.poll_service import PollService
from app.services.sweep_service import SweepService
from app.services.checkout_service import CheckoutService, CheckoutCreationError
from app.services.reversal_service import ReversalService
from app.services.affiliate_service import AffiliateService
from app.services.notification_service import NotificationService

__all__ = [
    "UserService",
    "PaymentService",
    "PaymentNotFoundError",
    "YocoService",
    "ProcessorError",
    "VerificationService",
    "VerificationResult",
    "ActivationService",
    "ActivationResult",
    "OutboxService",
    "PollService",
    "SweepService",
    "CheckoutService",
    "CheckoutCreationError",
    "ReversalService",
    "AffiliateService",
    "NotificationService",
]
