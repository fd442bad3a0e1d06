"""
Affiliate API Router - referral attribution at signup.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user
from app.database import get_db
from app.models.user import User
from app.services.affiliate_service import AffiliateService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/affiliate", tags=["Affiliate"])


class ReferralRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ref_code: str = Field(..., alias="refCode", min_length=1, max_length=32)


@router.post("/referrals")
async def register_referral(
    body: ReferralRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    referral = await AffiliateService(db).register_referral(user, body.ref_code.strip())
    if not referral:
        return {"success": False}
    return {"success": True, "ref_code": referral.ref_code_used}
