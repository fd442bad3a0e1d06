"""
Tests for ReversalService.
"""

import uuid

import pytest
from sqlalchemy import select

from app.fsm.machine import InvalidTransitionError
from app.fsm.states import (
    ActivationMethod,
    CreditTransactionType,
    PaymentStatus,
    PaymentType,
    PlanTier,
    SubscriptionStatus,
)
from app.models.credit_transaction import CreditTransaction
from app.services.activation_service import ActivationService
from app.services.payment_service import PaymentNotFoundError, PaymentService
from app.services.reversal_service import ReversalService
from app.services.user_service import UserService
from tests.factories import make_payment, make_user


@pytest.mark.asyncio
async def test_revert_completed_subscription_revokes_plan(db):
    user = await make_user(db)
    payment = await make_payment(db, owner=user, plan_id="starter", amount_cents=19900)
    await ActivationService(db).activate(payment.id, ActivationMethod.WEBHOOK)

    reverted = await ReversalService(db).revert_payment(payment.id, "chargeback")

    assert reverted.status == PaymentStatus.FAILED.value
    assert reverted.meta["reverted"] is True
    assert reverted.meta["reverted_from"] == "completed"
    assert reverted.meta["activation_method"] == "webhook"

    owner = await UserService(db).get_user_by_id(user.id)
    assert owner.plan_id == PlanTier.FREE.value
    assert owner.subscription_status == SubscriptionStatus.INACTIVE.value


@pytest.mark.asyncio
async def test_revert_never_takes_credits_below_zero(db):
    user = await make_user(db)
    payment = await make_payment(
        db,
        owner=user,
        payment_type=PaymentType.CREDITS,
        credits_amount=30,
        amount_cents=19900,
    )
    await ActivationService(db).activate(payment.id, ActivationMethod.WEBHOOK)
    users = UserService(db)
    spender = await users.get_user_by_id(user.id)
    spender.credits_balance = 5
    await db.commit()

    await ReversalService(db).revert_payment(payment.id, "chargeback")

    owner = await users.get_user_by_id(user.id)
    assert owner.credits_balance == 0
    result = await db.execute(
        select(CreditTransaction).where(
            CreditTransaction.payment_id == payment.id,
            CreditTransaction.type == CreditTransactionType.REVERSAL.value,
        )
    )
    assert [entry.amount for entry in result.scalars().all()] == [-5]


@pytest.mark.asyncio
async def test_revert_pending_payment_grants_nothing_back(db):
    user = await make_user(db, credits_balance=7)
    payment = await make_payment(
        db,
        owner=user,
        payment_type=PaymentType.CREDITS,
        credits_amount=12,
        amount_cents=9900,
    )

    await ReversalService(db).revert_payment(payment.id, "admin_revert")

    stored = await PaymentService(db).get_payment(payment.id)
    assert stored.status == PaymentStatus.FAILED.value
    assert stored.meta["reverted_from"] == "pending"
    owner = await UserService(db).get_user_by_id(user.id)
    assert owner.credits_balance == 7

    # A reverted payment can no longer be activated
    result = await ActivationService(db).activate(payment.id, ActivationMethod.SWEEP)
    assert not result.success


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [PaymentStatus.EXPIRED, PaymentStatus.FAILED])
async def test_revert_terminal_failure_states_is_rejected(db, status):
    payment = await make_payment(db, owner=None, status=status)

    with pytest.raises(InvalidTransitionError):
        await ReversalService(db).revert_payment(payment.id, "again")


@pytest.mark.asyncio
async def test_revert_unknown_payment(db):
    with pytest.raises(PaymentNotFoundError):
        await ReversalService(db).revert_payment(uuid.uuid4(), "missing")
