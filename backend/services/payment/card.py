# backend/services/payment/card.py
import hashlib
import hmac
import logging
import time
from typing import Optional
from urllib.parse import urljoin

import httpx

from services.errors import PaymentFailed, PaymentIntentNotFound, RefundFailed
from services.payment.base import PaymentIntent, RefundResult, validate_amount
from utils.money import from_minor_units, to_minor_units

logger = logging.getLogger(__name__)


class CardPaymentGateway:
    """
    Card processor speaking the Stripe-style REST API (form encoded requests,
    amounts in minor units, signed webhooks).
    """

    name = "card"
    signs_webhooks = True
    MINIMUM_AMOUNT_CENTS = 50

    def __init__(self, api_url: str, api_key: str, webhook_secret: str,
                 timeout: float = 10.0, webhook_tolerance: int = 300,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = api_url
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.timeout = timeout
        self.webhook_tolerance = webhook_tolerance
        # Tests plug an httpx.MockTransport in here
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, data: Optional[dict] = None,
                       headers: Optional[dict] = None) -> dict:
        url = urljoin(self.api_url, path)
        async with self._client() as client:
            try:
                response = await client.request(method, url, data=data, headers=headers)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                # Pull the processor's own message out of the error body when there is one
                try:
                    message = e.response.json().get("error", {}).get("message") or e.response.text
                except ValueError:
                    message = e.response.text
                logger.error(f"Card processor {method} {path} failed ({e.response.status_code}): {message}")
                if e.response.status_code == 404:
                    raise PaymentIntentNotFound(message) from e
                raise PaymentFailed(message) from e
            except httpx.RequestError as e:
                logger.error(f"Card processor {method} {path} unreachable: {e}")
                raise PaymentFailed(f"Payment processor unreachable: {e}") from e

    def _to_intent(self, body: dict) -> PaymentIntent:
        return PaymentIntent(
            id=body["id"],
            amount=from_minor_units(int(body.get("amount") or 0)),
            currency=(body.get("currency") or "").upper(),
            client_secret=body.get("client_secret"),
            customer_ref=body.get("receipt_email"),
            metadata=dict(body.get("metadata") or {}),
            status=body.get("status") or "requires_payment_method",
        )

    async def create_payment_intent(self, amount, currency, customer_ref, line_items, metadata, description=None):
        cents = validate_amount(self, amount)
        data = {
            "amount": cents,
            "currency": currency.lower(),
            "receipt_email": customer_ref,
            "automatic_payment_methods[enabled]": "true",
        }
        if description:
            data["description"] = description
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = str(value)

        headers = {}
        # Same order number -> same intent if the request is retried
        if metadata and metadata.get("order_number"):
            headers["Idempotency-Key"] = f"order-{metadata['order_number']}"

        body = await self._request("POST", "/v1/payment_intents", data=data, headers=headers)
        intent = self._to_intent(body)
        intent.items = list(line_items or [])
        return intent

    async def confirm_payment(self, intent_id: str) -> None:
        await self._request("POST", f"/v1/payment_intents/{intent_id}/confirm")

    async def cancel_payment(self, intent_id: str) -> None:
        await self._request("POST", f"/v1/payment_intents/{intent_id}/cancel")

    async def refund(self, intent_id: str, amount=None) -> RefundResult:
        data = {"payment_intent": intent_id}
        if amount is not None:
            data["amount"] = to_minor_units(amount)
        # One key per intent and amount: a repeated request returns the original refund
        headers = {"Idempotency-Key": f"refund-{intent_id}-{data.get('amount', 'full')}"}
        try:
            body = await self._request("POST", "/v1/refunds", data=data, headers=headers)
        except PaymentFailed as e:
            raise RefundFailed(e.message) from e
        return RefundResult(
            refund_id=body["id"],
            payment_intent_id=intent_id,
            amount=from_minor_units(int(body.get("amount") or 0)),
            currency=(body.get("currency") or "").upper(),
            status=body.get("status") or "pending",
        )

    async def get_payment_intent(self, intent_id: str) -> PaymentIntent:
        return self._to_intent(await self._request("GET", f"/v1/payment_intents/{intent_id}"))

    def supports_zero_amount(self) -> bool:
        return False

    def minimum_amount(self) -> int:
        return self.MINIMUM_AMOUNT_CENTS

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> bool:
        """Checks a ``t=<unix>,v1=<hex>`` header against HMAC-SHA256 of ``"<t>.<body>"``."""
        if not signature or not self.webhook_secret:
            return False
        try:
            pairs = [p.strip().split("=", 1) for p in signature.split(",")]
            timestamp = int(dict(pairs)["t"])
        except (KeyError, ValueError):
            return False
        candidates = [value for key, value in pairs if key == "v1"]
        if not candidates:
            return False

        if abs(time.time() - timestamp) > self.webhook_tolerance:
            logger.warning("Webhook signature timestamp outside tolerance: %s", timestamp)
            return False

        signed = f"{timestamp}.".encode("utf-8") + payload
        expected = hmac.new(self.webhook_secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return any(hmac.compare_digest(expected, c) for c in candidates)


def sign_webhook_payload(secret: str, payload: bytes, timestamp: Optional[int] = None) -> str:
    # Builds the header value a processor would send; handy for local replay tools
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"
