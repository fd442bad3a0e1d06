"""
Yoco Webhook Handler.
Verifies signatures and activates payments on payment.succeeded.
"""

import hmac
import hashlib
import json
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.fsm.states import ActivationMethod
from app.models.payment import Payment
from app.services.activation_service import ActivationService
from app.services.payment_service import PaymentService

router = APIRouter()
logger = logging.getLogger(__name__)

SUCCESS_EVENT = "payment.succeeded"


def verify_yoco_signature(body: bytes, signature: Optional[str]) -> bool:
    """
    Verify webhook signature using HMAC SHA256 over the raw body.
    An unset secret rejects everything.
    """
    if not settings.processor_webhook_secret:
        logger.error("Webhook secret not configured, rejecting webhook")
        return False
    if not signature:
        return False

    expected_signature = hmac.new(
        settings.processor_webhook_secret.encode(),
        body,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(expected_signature, signature.strip().lower())


async def resolve_payment(payload: Dict[str, Any], payment_service: PaymentService) -> Optional[Payment]:
    """
    Find the local payment for an event.
    1. exact checkout reference
    2. pending payment of metadata.userId with exactly this amount
    """
    metadata = payload.get("metadata") or {}
    checkout_ref = metadata.get("checkoutId") or payload.get("checkoutId")

    if checkout_ref:
        payment = await payment_service.get_by_checkout_ref(checkout_ref)
        if payment:
            return payment

    user_id = metadata.get("userId")
    amount = payload.get("amount")
    if not user_id or not isinstance(amount, int):
        return None

    try:
        owner_id = uuid.UUID(str(user_id))
    except ValueError:
        logger.warning(f"Webhook metadata has invalid userId: {user_id}")
        return None

    return await payment_service.find_pending_match(owner_id, amount)


@router.post("/yoco")
async def yoco_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Handle Yoco webhook events.

    Only payment.succeeded is acted on. Everything after the signature
    check answers 200 so the processor does not retry.
    """
    body = await request.body()
    signature = request.headers.get(settings.processor_signature_header)

    if not verify_yoco_signature(body, signature):
        logger.error("Invalid Yoco webhook signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        event = json.loads(body)
        event_type = event.get("type")
        payload = event.get("payload") or {}

        logger.info(f"Yoco webhook received: {event_type}")

        if event_type != SUCCESS_EVENT:
            return {"received": True, "processed": False}

        payment_service = PaymentService(db)
        payment = await resolve_payment(payload, payment_service)
        if not payment:
            logger.warning(f"Webhook: no matching payment for event {event.get('id')}")
            return {"received": True, "processed": False}

        payment_id = payment.id
        result = await ActivationService(db).activate(payment_id, ActivationMethod.WEBHOOK)
        logger.info(
            f"Webhook activation for payment {payment_id}: success={result.success} "
            f"already_completed={result.already_completed} error={result.error}",
            extra={"payment_id": str(payment_id), "method": ActivationMethod.WEBHOOK.value},
        )
        return {"received": True, "processed": result.success}

    except Exception as e:
        logger.error(f"Error processing Yoco webhook: {e}", exc_info=True)
        await db.rollback()
        # Return 200 to prevent excessive retries
        return {"received": True, "processed": False}
