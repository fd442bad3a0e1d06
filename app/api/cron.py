"""
Cron API Router - HTTP trigger for the payment sweep.
For schedulers that can only call URLs; Celery beat runs the same sweep.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import secret_matches
from app.config import settings
from app.database import get_db, utcnow
from app.services.sweep_service import SweepService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["Cron"])


async def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()

    if not secret_matches(token, settings.cron_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/payments", dependencies=[Depends(verify_cron_secret)])
async def sweep_payments(db: AsyncSession = Depends(get_db)):
    summary = await SweepService(db).sweep()
    logger.info(f"Cron sweep: {summary.checked} checked, {summary.activated} activated")
    return {
        "success": True,
        "checked": summary.checked,
        "activated": summary.activated,
        "expired": summary.expired,
        "timestamp": utcnow().isoformat(),
    }
