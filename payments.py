"""
Razorpay integration

Signature checks for the two confirmation paths and a small REST client for
the gateway calls the store makes (create an order, refund a payment).
"""
from __future__ import annotations
import hashlib
import hmac
import logging
from typing import Any, Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    pass


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def _hmac_sha256(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_payment_signature(razorpay_order_id: str, razorpay_payment_id: str,
                             signature: str, secret: Optional[str]) -> bool:
    """Checkout widget callback: HMAC-SHA256 over "<order_id>|<payment_id>" with the key secret."""
    if not secret or not signature:
        return False
    expected = _hmac_sha256(secret, f"{razorpay_order_id}|{razorpay_payment_id}".encode())
    return hmac.compare_digest(expected.encode(), signature.encode())


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Webhook delivery: HMAC-SHA256 over the raw request body with the webhook secret."""
    if not secret or not signature:
        return False
    return hmac.compare_digest(_hmac_sha256(secret, body).encode(), signature.encode())


class RazorpayClient:
    def __init__(self, key_id: Optional[str], key_secret: Optional[str],
                 base_url: str = "https://api.razorpay.com/v1", timeout: float = 10.0):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.key_id or not self.key_secret:
            raise PaymentGatewayError("Razorpay credentials are not configured")
        async with httpx.AsyncClient(timeout=self.timeout, auth=(self.key_id, self.key_secret)) as client:
            try:
                resp = await client.post(f"{self.base_url}{path}", json=payload)
            except httpx.HTTPError as e:
                raise PaymentGatewayError(f"Razorpay request failed: {e}") from e
        if resp.status_code >= 400:
            try:
                description = resp.json().get("error", {}).get("description")
            except ValueError:
                description = None
            raise PaymentGatewayError(description or f"Razorpay returned HTTP {resp.status_code}")
        return resp.json()

    async def create_order(self, amount: int, currency: str, receipt: str,
                           notes: Optional[dict[str, str]] = None) -> dict[str, Any]:
        order = await self._post("/orders", {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        })
        logger.info("Razorpay order %s created for %s (%s %s)", order.get("id"), receipt, amount, currency)
        return order

    async def refund_payment(self, payment_id: str, amount: Optional[int] = None) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if amount is not None:
            payload["amount"] = amount
        refund = await self._post(f"/payments/{payment_id}/refund", payload)
        logger.info("Razorpay refund %s issued for payment %s", refund.get("id"), payment_id)
        return refund


def get_gateway() -> RazorpayClient:
    return RazorpayClient(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET, settings.RAZORPAY_API_URL)
