"""FSM package for payment lifecycle state management."""

from app.fsm.states import PaymentStatus, PaymentType, ActivationMethod, PlanTier, CreditPack
from app.fsm.machine import InvalidTransitionError, can_transition, ensure_transition

__all__ = [
    "PaymentStatus",
    "PaymentType",
    "ActivationMethod",
    "PlanTier",
    "CreditPack",
    "InvalidTransitionError",
    "can_transition",
    "ensure_transition",
]
