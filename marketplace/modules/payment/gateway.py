"""Razorpay REST client and signature verification."""

from __future__ import annotations

import hashlib
import hmac
import logging
from decimal import Decimal

import httpx

from marketplace.config import settings
from marketplace.exceptions import BusinessRuleException, ExternalServiceException

logger = logging.getLogger(__name__)

# Razorpay rejects orders below 1 INR (100 paise)
MIN_AMOUNT_PAISE = 100


def to_paise(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1")))


def _hmac_sha256(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class RazorpayGateway:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self.key_id = settings.razorpay_key_id
        self.key_secret = settings.razorpay_key_secret
        self.webhook_secret = settings.razorpay_webhook_secret
        self.base_url = settings.razorpay_base_url
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=15.0,
                auth=(self.key_id, self.key_secret),
            )
        return self._client

    async def create_order(self, amount: Decimal, receipt_id: str, currency: str = "INR") -> dict:
        """Create a gateway order for ``amount`` rupees. Returns the gateway's order body."""
        paise = to_paise(amount)
        if paise < MIN_AMOUNT_PAISE:
            raise BusinessRuleException("Payable amount must be at least 1 INR")

        client = await self._get_client()
        try:
            response = await client.post(
                "/v1/orders",
                json={"amount": paise, "currency": currency, "receipt": receipt_id},
            )
        except httpx.RequestError as exc:
            logger.error("Razorpay create_order for %s failed: %s", receipt_id, exc)
            raise ExternalServiceException("Payment gateway unavailable") from exc

        if response.status_code >= 400:
            logger.error(
                "Razorpay create_order for %s returned %d: %s",
                receipt_id, response.status_code, response.text[:200],
            )
            raise ExternalServiceException("Payment gateway rejected the order")
        return response.json()

    def verify(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        """Check the checkout callback signature: HMAC-SHA256 of ``order_id|payment_id``."""
        if not (gateway_order_id and payment_id and signature and self.key_secret):
            return False
        expected = _hmac_sha256(self.key_secret, f"{gateway_order_id}|{payment_id}".encode())
        return hmac.compare_digest(expected, signature)

    def verify_webhook(self, body: bytes, signature: str | None) -> bool:
        if not (signature and self.webhook_secret):
            return False
        expected = _hmac_sha256(self.webhook_secret, body)
        return hmac.compare_digest(expected, signature)


_gateway: RazorpayGateway | None = None


def get_gateway() -> RazorpayGateway:
    global _gateway
    if _gateway is None:
        _gateway = RazorpayGateway()
    return _gateway


async def close_gateway() -> None:
    global _gateway
    if _gateway is not None and _gateway._client is not None and not _gateway._client.is_closed:
        await _gateway._client.aclose()
    _gateway = None
