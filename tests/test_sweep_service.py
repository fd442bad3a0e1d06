"""
Tests for SweepService.
"""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from app.database import utcnow
from app.fsm.states import PaymentStatus
from app.services.payment_service import PaymentService
from app.services.sweep_service import SweepService
from app.services.user_service import UserService
from app.services.verification_service import VerificationResult
from tests.factories import make_payment, make_user

UNVERIFIABLE = VerificationResult(
    paid=False,
    status="checkout_api_error_timeout",
    indeterminate=True,
)
PAID = VerificationResult(paid=True, status="successful", payment_ref="p_1")


def verifier_returning(result):
    verifier = AsyncMock()
    verifier.verify.return_value = result
    return verifier


@pytest.mark.asyncio
async def test_unverifiable_payment_past_ceiling_is_expired(db):
    now = utcnow()
    user = await make_user(db)
    payment = await make_payment(db, owner=user, created_at=now - timedelta(minutes=61))

    summary = await SweepService(db, verifier=verifier_returning(UNVERIFIABLE)).sweep(now=now)

    assert summary.checked == 1
    assert summary.expired == 1
    assert summary.activated == 0

    stored = await PaymentService(db).get_payment(payment.id)
    assert stored.status == PaymentStatus.EXPIRED.value
    assert stored.meta["expire_reason"] == "checkout_api_error_timeout"


@pytest.mark.asyncio
async def test_unverifiable_payment_before_ceiling_stays_pending(db):
    now = utcnow()
    user = await make_user(db)
    payment = await make_payment(db, owner=user, created_at=now - timedelta(minutes=59))

    summary = await SweepService(db, verifier=verifier_returning(UNVERIFIABLE)).sweep(now=now)

    assert summary.expired == 0
    assert summary.results[0]["action"] == "waiting"

    stored = await PaymentService(db).get_payment(payment.id)
    assert stored.status == PaymentStatus.PENDING.value


@pytest.mark.asyncio
async def test_recent_payments_are_left_for_the_webhook(db):
    now = utcnow()
    user = await make_user(db)
    await make_payment(db, owner=user, created_at=now - timedelta(seconds=30))
    verifier = verifier_returning(PAID)

    summary = await SweepService(db, verifier=verifier).sweep(now=now)

    assert summary.checked == 1
    assert summary.activated == 0
    assert summary.results[0]["action"] == "skipped_recent"
    verifier.verify.assert_not_called()


@pytest.mark.asyncio
async def test_paid_payment_is_activated_by_sweep(db):
    now = utcnow()
    user = await make_user(db)
    payment = await make_payment(db, owner=user, plan_id="basic", amount_cents=7900,
                                 created_at=now - timedelta(minutes=10))

    summary = await SweepService(db, verifier=verifier_returning(PAID)).sweep(now=now)

    assert summary.activated == 1
    stored = await PaymentService(db).get_payment(payment.id)
    assert stored.status == PaymentStatus.COMPLETED.value
    assert stored.meta["activation_method"] == "sweep"

    owner = await UserService(db).get_user_by_id(user.id)
    assert owner.plan_id == "basic"


@pytest.mark.asyncio
async def test_paid_payment_past_ceiling_is_activated_not_expired(db):
    now = utcnow()
    user = await make_user(db)
    payment = await make_payment(db, owner=user, created_at=now - timedelta(hours=3))

    summary = await SweepService(db, verifier=verifier_returning(PAID)).sweep(now=now)

    assert summary.activated == 1
    assert summary.expired == 0
    stored = await PaymentService(db).get_payment(payment.id)
    assert stored.status == PaymentStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_sweep_waits_between_processor_calls(db):
    now = utcnow()
    user = await make_user(db)
    for minutes in (10, 20, 30):
        await make_payment(db, owner=user, created_at=now - timedelta(minutes=minutes))
    sleep = AsyncMock()

    summary = await SweepService(db, verifier=verifier_returning(UNVERIFIABLE), sleep=sleep).sweep(now=now)

    assert summary.checked == 3
    assert sleep.await_count == 2


@pytest.mark.asyncio
async def test_second_sweep_is_a_no_op(db):
    now = utcnow()
    user = await make_user(db)
    await make_payment(db, owner=user, created_at=now - timedelta(minutes=10))
    verifier = verifier_returning(PAID)

    first = await SweepService(db, verifier=verifier).sweep(now=now)
    second = await SweepService(db, verifier=verifier).sweep(now=now)

    assert first.activated == 1
    assert second.checked == 0
    assert second.activated == 0
