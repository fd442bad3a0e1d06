"""
Payments API Router - checkout creation, success-page polling and
guest link-up.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from redis.asyncio.client import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user
from app.database import get_db
from app.models.user import User
from app.redis import get_redis
from app.services.checkout_service import (
    CheckoutCreationError,
    CheckoutService,
    GuestRateLimitError,
)
from app.services.poll_service import PollService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["Payments"])


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    plan_id: Optional[str] = Field(None, alias="planId")
    pack_id: Optional[str] = Field(None, alias="packId")
    period: str = "monthly"


class LinkGuestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    guest_token: str = Field(..., alias="guestToken", min_length=1)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@router.post("/activate")
async def activate_from_success_page(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    """
    Polled by the checkout-success page.

    Verifies the caller's latest pending payment with the processor and
    activates it once paid. Returns a status the UI can act on.
    """
    result = await PollService(db, redis).poll(user)
    return result.to_dict()


@router.post("/checkout")
async def create_checkout(
    body: CheckoutRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        session = await CheckoutService(db).create_checkout(
            user,
            body.type,
            plan_id=body.plan_id,
            pack_id=body.pack_id,
            period=body.period,
        )
    except CheckoutCreationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return session.to_dict()


@router.post("/guest-checkout")
async def create_guest_checkout(
    body: CheckoutRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    """Checkout for visitors without an account. Rate limited per IP."""
    try:
        session = await CheckoutService(db).create_guest_checkout(
            redis,
            client_ip(request),
            body.type,
            plan_id=body.plan_id,
            pack_id=body.pack_id,
            period=body.period,
        )
    except GuestRateLimitError:
        raise HTTPException(
            status_code=429,
            detail="Too many requests. Please wait a moment.",
        )
    except CheckoutCreationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return session.to_dict()


@router.post("/link-guest")
async def link_guest_payment(
    body: LinkGuestRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Claim a guest payment after signup and activate it if paid."""
    result = await CheckoutService(db).link_guest_payment(user, body.guest_token)
    if result is None:
        raise HTTPException(status_code=404, detail="Guest payment not found")
    return {"linked": True, **result.to_dict()}
