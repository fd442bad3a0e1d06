"""
Notification Service - transactional e-mail via the Brevo HTTP API.
"""

import logging
from html import escape
from typing import Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

BREVO_SEND_URL = "https://api.brevo.com/v3/smtp/email"


def format_amount(amount_cents: int, currency: str = "ZAR") -> str:
    """Render minor units for humans, e.g. 34900 ZAR -> R349.00."""
    symbol = "R" if currency == "ZAR" else f"{currency} "
    return f"{symbol}{amount_cents // 100}.{amount_cents % 100:02d}"


class NotificationService:
    """Service for sending payment e-mails."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.api_key = settings.brevo_api_key
        self._client = client

        self.headers = {
            "api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def send_email(self, to: str, subject: str, html: str) -> bool:
        """Send one e-mail. Returns False on any failure."""
        if not self.api_key:
            logger.error("Brevo API key not configured")
            return False

        payload = {
            "sender": {
                "name": settings.email_from_name,
                "email": settings.email_from_address,
            },
            "to": [{"email": to}],
            "subject": subject,
            "htmlContent": html,
        }

        try:
            if self._client is not None:
                response = await self._client.post(
                    BREVO_SEND_URL, json=payload, headers=self.headers, timeout=10.0
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        BREVO_SEND_URL, json=payload, headers=self.headers, timeout=10.0
                    )
        except httpx.HTTPError as e:
            logger.error(f"Brevo request failed for {to}: {e}")
            return False

        if response.status_code not in (200, 201, 202):
            logger.error(f"Brevo API Error {response.status_code}: {response.text}")
            return False

        logger.info(f"E-mail sent to {to}: {subject}")
        return True

    async def send_payment_success(self, email: str, item_name: str, amount: str) -> bool:
        """Tell the payer their purchase is active."""
        html = (
            "<h2>Payment received</h2>"
            f"<p>Your <strong>{escape(item_name)}</strong> purchase ({escape(amount)}) is now active.</p>"
            "<p>Thank you for your support.</p>"
        )
        return await self.send_email(email, f"{item_name} activated", html)

    async def send_admin_payment_notice(self, user_email: str, item_name: str, amount: str) -> bool:
        """Tell the admin inbox a payment went through."""
        if not settings.admin_email:
            logger.warning("Admin e-mail not configured, skipping payment notice")
            return True

        html = (
            "<h2>New payment</h2>"
            f"<p>{escape(user_email)} purchased <strong>{escape(item_name)}</strong> for {escape(amount)}.</p>"
        )
        return await self.send_email(settings.admin_email, f"New payment: {item_name}", html)
