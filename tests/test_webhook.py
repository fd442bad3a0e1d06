"""
Tests for the Yoco webhook handler.
"""

import hashlib
import hmac
import json
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.fsm.states import PaymentStatus, PaymentType
from app.services.payment_service import PaymentService
from app.services.user_service import UserService
from tests.conftest import WEBHOOK_SECRET
from tests.factories import make_payment, make_user


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def event(payload: dict, event_type: str = "payment.succeeded") -> bytes:
    return json.dumps({"id": f"evt_{uuid.uuid4().hex[:8]}", "type": event_type, "payload": payload}).encode()


def post(client: TestClient, body: bytes, signature: str = None):
    return client.post(
        "/webhooks/yoco",
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-Yoco-Signature": signature if signature is not None else sign(body),
        },
    )


@pytest.mark.asyncio
async def test_invalid_signature_is_rejected(client, db):
    user = await make_user(db)
    payment = await make_payment(db, owner=user, checkout_ref="ch_sig")
    body = event({"metadata": {"checkoutId": "ch_sig"}, "amount": 34900})

    response = post(client, body, signature="0" * 64)

    assert response.status_code == 401
    stored = await PaymentService(db).get_payment(payment.id)
    assert stored.status == PaymentStatus.PENDING.value


@pytest.mark.asyncio
async def test_unconfigured_secret_rejects_everything(client, db, test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "processor_webhook_secret", "")
    body = event({"metadata": {"checkoutId": "ch_x"}})

    response = post(client, body, signature=sign(body, ""))

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_other_events_are_acknowledged_and_ignored(client, db):
    user = await make_user(db)
    payment = await make_payment(db, owner=user, checkout_ref="ch_other")
    body = event({"metadata": {"checkoutId": "ch_other"}}, event_type="payment.refunded")

    response = post(client, body)

    assert response.status_code == 200
    assert response.json() == {"received": True, "processed": False}
    stored = await PaymentService(db).get_payment(payment.id)
    assert stored.status == PaymentStatus.PENDING.value


@pytest.mark.asyncio
async def test_checkout_reference_match_activates(client, db, scheduled_side_effects):
    user = await make_user(db)
    payment = await make_payment(db, owner=user, plan_id="pro", checkout_ref="ch_pro")
    body = event({"metadata": {"checkoutId": "ch_pro", "userId": str(user.id)}, "amount": 34900})

    response = post(client, body)

    assert response.status_code == 200
    assert response.json() == {"received": True, "processed": True}

    stored = await PaymentService(db).get_payment(payment.id)
    assert stored.status == PaymentStatus.COMPLETED.value
    assert stored.meta["activation_method"] == "webhook"
    owner = await UserService(db).get_user_by_id(user.id)
    assert owner.plan_id == "pro"
    scheduled_side_effects.assert_called_once_with(payment.id)


@pytest.mark.asyncio
async def test_fallback_matches_owner_and_amount(client, db):
    user = await make_user(db)
    wrong_amount = await make_payment(db, owner=user, plan_id="basic", amount_cents=7900)
    right = await make_payment(db, owner=user, plan_id="pro", amount_cents=34900)
    body = event({"metadata": {"userId": str(user.id)}, "amount": 34900})

    response = post(client, body)

    assert response.json()["processed"] is True
    payments = PaymentService(db)
    assert (await payments.get_payment(right.id)).status == PaymentStatus.COMPLETED.value
    assert (await payments.get_payment(wrong_amount.id)).status == PaymentStatus.PENDING.value
    owner = await UserService(db).get_user_by_id(user.id)
    assert owner.plan_id == "pro"


@pytest.mark.asyncio
async def test_fallback_without_matching_amount_processes_nothing(client, db):
    user = await make_user(db)
    payment = await make_payment(db, owner=user, amount_cents=34900)
    body = event({"metadata": {"userId": str(user.id)}, "amount": 100})

    response = post(client, body)

    assert response.status_code == 200
    assert response.json()["processed"] is False
    assert (await PaymentService(db).get_payment(payment.id)).status == PaymentStatus.PENDING.value


@pytest.mark.asyncio
async def test_duplicate_delivery_grants_once(client, db):
    user = await make_user(db)
    await make_payment(
        db,
        owner=user,
        payment_type=PaymentType.CREDITS,
        credits_amount=12,
        amount_cents=9900,
        checkout_ref="ch_dup",
    )
    body = event({"metadata": {"checkoutId": "ch_dup"}, "amount": 9900})

    first = post(client, body)
    second = post(client, body)

    assert first.json()["processed"] is True
    assert second.json()["processed"] is True
    owner = await UserService(db).get_user_by_id(user.id)
    assert owner.credits_balance == 12


@pytest.mark.asyncio
async def test_internal_error_still_answers_200(client, db):
    body = event({"metadata": {"checkoutId": "ch_boom"}})

    with patch(
        "app.api.webhooks.yoco.PaymentService.get_by_checkout_ref",
        AsyncMock(side_effect=RuntimeError("boom")),
    ):
        response = post(client, body)

    assert response.status_code == 200
    assert response.json() == {"received": True, "processed": False}


@pytest.mark.asyncio
async def test_malformed_body_still_answers_200(client):
    body = b"not json"

    response = post(client, body)

    assert response.status_code == 200
    assert response.json()["processed"] is False
