# backend/services/payment/base.py
"""
Payment gateway contract.

Every gateway (mock, card processor, marketplace redirect) implements the
same capability set; the order core only ever talks to this protocol. The
active implementation is chosen once at startup from settings.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, runtime_checkable

from services.errors import PaymentValidationFailed
from utils.money import to_money, to_minor_units


@dataclass
class PaymentItem:
    name: str
    amount: Decimal
    quantity: int


@dataclass
class PaymentIntent:
    id: str
    amount: Decimal
    currency: str
    # Opaque token the client needs to finish paying: a client secret or a redirect URL
    client_secret: Optional[str] = None
    customer_ref: Optional[str] = None
    items: List[PaymentItem] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)
    status: str = "requires_payment_method"


@dataclass
class RefundResult:
    refund_id: str
    payment_intent_id: str
    amount: Decimal
    currency: str
    status: str


@runtime_checkable
class PaymentGateway(Protocol):
    name: str
    # True when webhook deliveries carry a signature that must be checked
    signs_webhooks: bool

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        customer_ref: str,
        line_items: List[PaymentItem],
        metadata: Dict[str, str],
        description: Optional[str] = None,
    ) -> PaymentIntent: ...

    async def confirm_payment(self, intent_id: str) -> None: ...

    async def cancel_payment(self, intent_id: str) -> None: ...

    async def refund(self, intent_id: str, amount: Optional[Decimal] = None) -> RefundResult: ...

    async def get_payment_intent(self, intent_id: str) -> PaymentIntent: ...

    def supports_zero_amount(self) -> bool: ...

    def minimum_amount(self) -> int: ...

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> bool: ...


def validate_amount(gateway: PaymentGateway, amount) -> int:
    """Gateway-agnostic amount rules. Returns the amount in minor units."""
    amount = to_money(amount)
    if amount < 0:
        raise PaymentValidationFailed("Payment amount cannot be negative")

    cents = to_minor_units(amount)
    if cents == 0:
        if gateway.supports_zero_amount():
            return 0
        raise PaymentValidationFailed(f"Zero amount payments are not supported by {gateway.name}")

    if cents < gateway.minimum_amount():
        raise PaymentValidationFailed(
            f"Amount {amount} is below the {gateway.name} minimum of {gateway.minimum_amount()} minor units"
        )
    return cents
