# backend/services/payment/mock.py
import asyncio
import logging
import threading
import uuid
from typing import Dict, Optional

from services.errors import PaymentFailed, PaymentIntentNotFound, RefundFailed
from services.payment.base import PaymentIntent, RefundResult, validate_amount
from utils.money import to_money

logger = logging.getLogger(__name__)


class MockPaymentGateway:
    """In-process gateway for development and tests. Intents live in memory."""

    signs_webhooks = False

    def __init__(self, name: str = "mock", min_amount_cents: int = 50, supports_zero: bool = False):
        self.name = name
        self._min_amount = min_amount_cents
        self._supports_zero = supports_zero
        self._intents: Dict[str, PaymentIntent] = {}
        self._lock = threading.Lock()
        self.should_fail = False
        self.failure_message = ""
        # Artificial latency for create_payment_intent, seconds
        self.delay = 0.0
        self.cancelled: list = []
        self.refunds: list = []

    def set_should_fail(self, should_fail: bool, message: str = "") -> None:
        with self._lock:
            self.should_fail = should_fail
            self.failure_message = message

    def reset(self) -> None:
        with self._lock:
            self._intents = {}
            self.should_fail = False
            self.failure_message = ""
            self.delay = 0.0
            self.cancelled = []
            self.refunds = []

    async def create_payment_intent(self, amount, currency, customer_ref, line_items, metadata, description=None):
        validate_amount(self, amount)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.should_fail:
            raise PaymentFailed(f"Payment failed: {self.failure_message}")

        intent = PaymentIntent(
            id=f"mock_pi_{uuid.uuid4().hex}",
            amount=to_money(amount),
            currency=currency,
            client_secret=f"mock_secret_{uuid.uuid4().hex}",
            customer_ref=customer_ref,
            items=list(line_items or []),
            metadata=dict(metadata or {}),
        )
        with self._lock:
            self._intents[intent.id] = intent
        return intent

    async def confirm_payment(self, intent_id: str) -> None:
        with self._lock:
            intent = self._intents.get(intent_id)
        if intent is None:
            raise PaymentIntentNotFound(f"Unknown payment intent {intent_id}")
        if self.should_fail:
            raise PaymentFailed(f"Payment failed: {self.failure_message}")
        intent.status = "succeeded"

    async def cancel_payment(self, intent_id: str) -> None:
        with self._lock:
            intent = self._intents.pop(intent_id, None)
            if intent is None:
                raise PaymentIntentNotFound(f"Unknown payment intent {intent_id}")
            self.cancelled.append(intent_id)

    async def refund(self, intent_id: str, amount=None) -> RefundResult:
        if self.should_fail:
            raise RefundFailed(f"Refund failed: {self.failure_message}")
        with self._lock:
            intent = self._intents.get(intent_id)
        if intent is None:
            raise RefundFailed(f"Unknown payment intent {intent_id}")
        refund = RefundResult(
            refund_id=f"mock_refund_{uuid.uuid4().hex}",
            payment_intent_id=intent_id,
            amount=to_money(amount) if amount is not None else intent.amount,
            currency=intent.currency,
            status="succeeded",
        )
        with self._lock:
            self.refunds.append(refund)
        return refund

    async def get_payment_intent(self, intent_id: str) -> PaymentIntent:
        with self._lock:
            intent = self._intents.get(intent_id)
        if intent is None:
            raise PaymentIntentNotFound(f"Unknown payment intent {intent_id}")
        return intent

    def supports_zero_amount(self) -> bool:
        return self._supports_zero

    def minimum_amount(self) -> int:
        return self._min_amount

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> bool:
        return True
