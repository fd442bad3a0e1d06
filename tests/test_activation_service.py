"""
Tests for ActivationService.
"""

import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy import func, select

from app.database import as_utc
from app.fsm.states import ActivationMethod, PaymentStatus, PaymentType, SideEffectKind
from app.models.credit_transaction import CreditTransaction
from app.models.side_effect_job import SideEffectJob
from app.services.activation_service import ActivationService
from app.services.payment_service import PaymentService
from app.services.user_service import UserService
from tests.factories import make_payment, make_user


async def count(db, model, *where):
    result = await db.execute(select(func.count()).select_from(model).where(*where))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_activate_pending_subscription(db, scheduled_side_effects):
    user = await make_user(db)
    payment = await make_payment(db, owner=user, plan_id="pro", amount_cents=34900)

    result = await ActivationService(db).activate(payment.id, ActivationMethod.WEBHOOK)

    assert result.success
    assert not result.already_completed
    assert result.granted
    assert result.method == "webhook"

    stored = await PaymentService(db).get_payment(payment.id)
    assert stored.status == PaymentStatus.COMPLETED.value
    assert stored.completed_at is not None
    assert stored.granted_at is not None
    assert stored.meta["activation_method"] == "webhook"
    assert "activated_at" in stored.meta

    owner = await UserService(db).get_user_by_id(user.id)
    assert owner.plan_id == "pro"
    assert owner.subscription_status == "active"

    kinds = (await db.execute(
        select(SideEffectJob.kind).where(SideEffectJob.payment_id == payment.id)
    )).scalars().all()
    assert set(kinds) == {k.value for k in SideEffectKind}
    scheduled_side_effects.assert_called_once_with(payment.id)


@pytest.mark.asyncio
async def test_yearly_subscription_uses_months_from_metadata(db):
    user = await make_user(db)
    payment = await make_payment(
        db,
        owner=user,
        plan_id="starter",
        amount_cents=189900,
        meta={"period": "yearly", "months": "12"},
    )

    await ActivationService(db).activate(payment.id, ActivationMethod.SWEEP)

    owner = await UserService(db).get_user_by_id(user.id)
    expires = as_utc(owner.subscription_expires_at)
    started = as_utc(owner.billing_cycle_start)
    assert owner.billing_period == "yearly"
    assert 360 <= (expires - started).days <= 366


@pytest.mark.asyncio
async def test_repeated_activation_grants_credits_once(db, scheduled_side_effects):
    user = await make_user(db, credits_balance=2)
    payment = await make_payment(
        db,
        owner=user,
        payment_type=PaymentType.CREDITS,
        credits_amount=12,
        amount_cents=9900,
    )
    service = ActivationService(db)

    first = await service.activate(payment.id, ActivationMethod.WEBHOOK)
    second = await service.activate(payment.id, ActivationMethod.CLIENT_POLL)
    third = await service.activate(payment.id, ActivationMethod.SWEEP)

    assert first.success and not first.already_completed
    for repeat in (second, third):
        assert repeat.success
        assert repeat.already_completed
        assert not repeat.granted

    owner = await UserService(db).get_user_by_id(user.id)
    assert owner.credits_balance == 14

    ledger = (await db.execute(
        select(CreditTransaction).where(CreditTransaction.user_id == user.id)
    )).scalars().all()
    assert len(ledger) == 1
    assert ledger[0].amount == 12
    assert ledger[0].type == "purchase"
    assert ledger[0].description == "Purchased 12 credits (webhook)"

    assert await count(db, SideEffectJob, SideEffectJob.payment_id == payment.id) == 3
    scheduled_side_effects.assert_called_once()


@pytest.mark.asyncio
async def test_losing_the_race_reports_already_completed(db, session_factory):
    user = await make_user(db)
    payment = await make_payment(
        db,
        owner=user,
        payment_type=PaymentType.CREDITS,
        credits_amount=5,
        amount_cents=4900,
    )

    async with session_factory() as other_db:
        loser = ActivationService(other_db)
        # The loser read the row while it was still pending
        stale = await loser.payments.get_payment(payment.id)
        assert stale.status == PaymentStatus.PENDING.value
        read = loser.payments.get_payment
        snapshots = [stale]

        async def stale_first(pid):
            return snapshots.pop() if snapshots else await read(pid)

        winner = await ActivationService(db).activate(payment.id, ActivationMethod.WEBHOOK)

        with patch.object(loser.payments, "get_payment", stale_first):
            lost = await loser.activate(payment.id, ActivationMethod.CLIENT_POLL)

    assert winner.success and not winner.already_completed
    assert lost.success
    assert lost.already_completed
    assert not lost.granted
    assert lost.error is None

    owner = await UserService(db).get_user_by_id(user.id)
    assert owner.credits_balance == 5
    assert await count(db, CreditTransaction, CreditTransaction.user_id == user.id) == 1

    stored = await PaymentService(db).get_payment(payment.id)
    assert stored.meta["activation_method"] == "webhook"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [PaymentStatus.EXPIRED, PaymentStatus.FAILED])
async def test_terminal_payments_are_never_resurrected(db, status):
    user = await make_user(db)
    payment = await make_payment(db, owner=user, status=status)

    result = await ActivationService(db).activate(payment.id, ActivationMethod.WEBHOOK)

    assert not result.success
    assert status.value in result.error

    stored = await PaymentService(db).get_payment(payment.id)
    assert stored.status == status.value
    owner = await UserService(db).get_user_by_id(user.id)
    assert owner.plan_id == "free"


@pytest.mark.asyncio
async def test_unknown_payment(db):
    import uuid

    result = await ActivationService(db).activate(uuid.uuid4(), "sweep")

    assert not result.success
    assert result.error == "not found"


@pytest.mark.asyncio
async def test_mutation_failure_rolls_back_to_pending(db, scheduled_side_effects):
    user = await make_user(db)
    payment = await make_payment(db, owner=user)
    # The rollback expires every loaded instance
    payment_id = payment.id

    with patch(
        "app.services.activation_service.UserService.apply_subscription",
        AsyncMock(side_effect=RuntimeError("db went away")),
    ):
        result = await ActivationService(db).activate(payment_id, ActivationMethod.WEBHOOK)

    assert not result.success
    assert "db went away" in result.error

    stored = await PaymentService(db).get_payment(payment_id)
    assert stored.status == PaymentStatus.PENDING.value
    assert stored.granted_at is None
    assert await count(db, SideEffectJob, SideEffectJob.payment_id == payment_id) == 0
    scheduled_side_effects.assert_not_called()

    # The next caller completes it normally
    retry = await ActivationService(db).activate(payment_id, ActivationMethod.SWEEP)
    assert retry.success and retry.granted


@pytest.mark.asyncio
async def test_guest_payment_is_granted_once_after_linking(db, scheduled_side_effects):
    payment = await make_payment(db, owner=None, plan_id="pro", meta={"guest_token": "tok"})
    service = ActivationService(db)

    completed = await service.activate(payment.id, ActivationMethod.WEBHOOK)

    assert completed.success
    assert not completed.granted
    stored = await PaymentService(db).get_payment(payment.id)
    assert stored.status == PaymentStatus.COMPLETED.value
    assert stored.granted_at is None
    scheduled_side_effects.assert_not_called()

    user = await make_user(db)
    assert await PaymentService(db).link_owner(payment.id, user.id)
    await db.commit()

    linked = await service.activate(payment.id, ActivationMethod.GUEST_LINK)
    again = await service.activate(payment.id, ActivationMethod.GUEST_LINK)

    assert linked.success and linked.already_completed and linked.granted
    assert again.success and again.already_completed and not again.granted

    owner = await UserService(db).get_user_by_id(user.id)
    assert owner.plan_id == "pro"
    assert await count(db, SideEffectJob, SideEffectJob.payment_id == payment.id) == 3
    scheduled_side_effects.assert_called_once_with(payment.id)


@pytest.mark.asyncio
async def test_link_owner_never_reassigns(db):
    first = await make_user(db)
    second = await make_user(db)
    payment = await make_payment(db, owner=None)
    payments = PaymentService(db)

    assert await payments.link_owner(payment.id, first.id)
    assert not await payments.link_owner(payment.id, second.id)
    await db.commit()

    stored = await payments.get_payment(payment.id)
    assert stored.owner_id == first.id


@pytest.mark.asyncio
async def test_owner_linked_during_activation_is_granted_by_the_activator(db, session_factory, scheduled_side_effects):
    payment = await make_payment(
        db,
        owner=None,
        payment_type=PaymentType.CREDITS,
        credits_amount=30,
        amount_cents=19900,
        meta={"guest_token": "tok_mid"},
    )
    user = await make_user(db)
    payment_id, user_id = payment.id, user.id
    service = ActivationService(db)
    swap = service.payments.transition

    async def link_then_swap(*args, **kwargs):
        # The link-up commits after the webhook read the ownerless row
        async with session_factory() as other_db:
            assert await PaymentService(other_db).link_owner(payment_id, user_id)
            await other_db.commit()
        return await swap(*args, **kwargs)

    with patch.object(service.payments, "transition", link_then_swap):
        webhook = await service.activate(payment_id, ActivationMethod.WEBHOOK)

    assert webhook.success
    assert webhook.granted

    linked = await ActivationService(db).activate(payment_id, ActivationMethod.GUEST_LINK)
    assert linked.success and linked.already_completed and not linked.granted

    owner = await UserService(db).get_user_by_id(user_id)
    assert owner.credits_balance == 30
    assert await count(db, CreditTransaction, CreditTransaction.user_id == user_id) == 1
    stored = await PaymentService(db).get_payment(payment_id)
    assert stored.granted_at is not None
    scheduled_side_effects.assert_called_once_with(payment_id)


@pytest.mark.asyncio
async def test_losing_to_a_link_up_grants_the_owed_payment(db, session_factory, scheduled_side_effects):
    payment = await make_payment(db, owner=None, plan_id="pro", meta={"guest_token": "tok_late"})
    user = await make_user(db)
    payment_id, user_id = payment.id, user.id

    async with session_factory() as other_db:
        poller = ActivationService(other_db)
        stale = await poller.payments.get_payment(payment_id)
        read = poller.payments.get_payment
        snapshots = [stale]

        async def stale_first(pid):
            return snapshots.pop() if snapshots else await read(pid)

        # The webhook completes the ownerless payment, then the owner is linked
        await ActivationService(db).activate(payment_id, ActivationMethod.WEBHOOK)
        assert await PaymentService(db).link_owner(payment_id, user_id)
        await db.commit()

        with patch.object(poller.payments, "get_payment", stale_first):
            lost = await poller.activate(payment_id, ActivationMethod.CLIENT_POLL)

    assert lost.success
    assert lost.already_completed
    assert lost.granted

    owner = await UserService(db).get_user_by_id(user_id)
    assert owner.plan_id == "pro"
    stored = await PaymentService(db).get_payment(payment_id)
    assert stored.granted_at is not None
    scheduled_side_effects.assert_called_once_with(payment_id)


@pytest.mark.asyncio
async def test_losing_to_an_expiry_is_not_reported_as_success(db, session_factory, scheduled_side_effects):
    user = await make_user(db)
    payment = await make_payment(db, owner=user, plan_id="pro")
    payment_id, user_id = payment.id, user.id
    service = ActivationService(db)
    swap = service.payments.transition

    async def expire_then_swap(*args, **kwargs):
        async with session_factory() as other_db:
            assert await PaymentService(other_db).transition(
                payment_id, [PaymentStatus.PENDING], PaymentStatus.EXPIRED
            )
            await other_db.commit()
        return await swap(*args, **kwargs)

    with patch.object(service.payments, "transition", expire_then_swap):
        result = await service.activate(payment_id, ActivationMethod.CLIENT_POLL)

    assert not result.success
    assert not result.already_completed
    assert result.error == "payment is expired"

    owner = await UserService(db).get_user_by_id(user_id)
    assert owner.plan_id == "free"
    scheduled_side_effects.assert_not_called()


@pytest.mark.asyncio
async def test_unknown_method_is_an_error_result(db, scheduled_side_effects):
    user = await make_user(db)
    payment = await make_payment(db, owner=user)

    result = await ActivationService(db).activate(payment.id, "carrier_pigeon")

    assert not result.success
    assert result.method == "carrier_pigeon"
    assert result.error == "unknown activation method"

    stored = await PaymentService(db).get_payment(payment.id)
    assert stored.status == PaymentStatus.PENDING.value
    assert stored.granted_at is None
    scheduled_side_effects.assert_not_called()
