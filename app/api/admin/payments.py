"""
Admin Payment Endpoints.
Manual reversal and a manual sweep trigger.
"""

import logging
import uuid

from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_admin_user
from app.database import get_db
from app.fsm.machine import InvalidTransitionError
from app.services.outbox_service import OutboxService
from app.services.payment_service import PaymentNotFoundError
from app.services.reversal_service import ReversalService

router = APIRouter()
logger = logging.getLogger(__name__)


class RevertRequest(BaseModel):
    reason: str = Field("admin_revert", min_length=1, max_length=255)


@router.post("/payments/{payment_id}/revert")
async def revert_payment(
    payment_id: uuid.UUID,
    body: RevertRequest,
    db: AsyncSession = Depends(get_db),
    _: str = Depends(get_admin_user),
):
    """
    Revert a pending or completed payment to failed.
    Withdraws the granted plan or credits in the same transaction.
    """
    try:
        payment = await ReversalService(db).revert_payment(payment_id, body.reason)
    except PaymentNotFoundError:
        raise HTTPException(status_code=404, detail="Payment not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "status": "success",
        "payment_id": str(payment.id),
        "payment_status": payment.status,
        "reverted_from": (payment.meta or {}).get("reverted_from"),
    }


@router.post("/payments/side-effects/run")
async def run_side_effects(
    db: AsyncSession = Depends(get_db),
    _: str = Depends(get_admin_user),
):
    """Drain due side-effect jobs now instead of waiting for the worker."""
    try:
        counts = await OutboxService(db).process_due()
    except Exception as e:
        logger.error(f"Side-effect drain failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "success", **counts}
