"""
Yoco Service - payment processor HTTP API.
Create checkouts and read checkout / payment records.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


class ProcessorError(Exception):
    """Processor unreachable, timed out, or returned an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None, timeout: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.timeout = timeout

    @property
    def code(self) -> str:
        if self.timeout:
            return "timeout"
        if self.status_code:
            return str(self.status_code)
        return "unreachable"


class YocoService:
    """Service for talking to the Yoco Online Checkout API."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.api_key = settings.processor_secret_key
        self.base_url = settings.processor_api_base.rstrip("/")
        self.timeout = settings.processor_timeout_seconds
        self._client = client

        self.headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send a request and return the decoded JSON object."""
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, json=json, headers=self.headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.request(
                        method, url, json=json, headers=self.headers, timeout=self.timeout
                    )
        except httpx.TimeoutException as e:
            raise ProcessorError(f"{method} {path} timed out", timeout=True) from e
        except httpx.HTTPError as e:
            raise ProcessorError(f"{method} {path} failed: {e}") from e

        if response.status_code not in (200, 201):
            logger.warning(f"Yoco API {method} {path} returned {response.status_code}")
            raise ProcessorError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProcessorError(f"{method} {path} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise ProcessorError(f"{method} {path} returned unexpected shape")
        return data

    async def create_checkout(
        self,
        amount_cents: int,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        failure_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a hosted checkout session. Returns {id, redirectUrl, ...}."""
        payload: Dict[str, Any] = {
            "amount": amount_cents,
            "currency": settings.processor_currency,
            "metadata": metadata,
            "successUrl": success_url,
            "cancelUrl": cancel_url,
        }
        if failure_url:
            payload["failureUrl"] = failure_url

        checkout = await self._request("POST", "/api/checkouts", json=payload)
        if not checkout.get("id"):
            raise ProcessorError("Checkout response missing id")
        return checkout

    async def get_checkout(self, checkout_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/checkouts/{checkout_id}")

    async def get_payment(self, payment_ref: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/payments/{payment_ref}")
