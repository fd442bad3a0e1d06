"""
Payment lifecycle machine.

pending ──verified──▶ completed
        ──stale─────▶ expired
        ──reverted──▶ failed
completed ──reverted──▶ failed   (chargeback / admin reversal)

Every transition is applied as a conditional update on the status column,
so the table below only decides what may be *requested*; the database
decides who wins.
"""

from typing import Dict, FrozenSet

from app.fsm.states import PaymentStatus


class InvalidTransitionError(Exception):
    """Raised when a lifecycle transition is not allowed."""

    def __init__(self, current: PaymentStatus, target: PaymentStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move payment from {current.value} to {target.value}")


ALLOWED_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.COMPLETED,
        PaymentStatus.EXPIRED,
        PaymentStatus.FAILED,
    }),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.FAILED}),
    PaymentStatus.EXPIRED: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    """Check whether a lifecycle transition is allowed."""
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    """Raise InvalidTransitionError unless the transition is allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
