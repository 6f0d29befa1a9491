# backend/services/payment/marketplace.py
import logging
import uuid
from typing import Optional
from urllib.parse import urlencode

from services.errors import PaymentFailed, PaymentIntentNotFound, RefundFailed
from services.payment.base import PaymentIntent, validate_amount
from utils.money import to_money

logger = logging.getLogger(__name__)

INTENT_PREFIX = "mkt_"


class MarketplacePaymentGateway:
    """
    Buyer is redirected to a third-party marketplace listing and pays there.
    The "client secret" of the intent is the checkout URL. The marketplace
    offers no refund API, so refunds are a manual seller-dashboard action.
    """

    name = "marketplace"
    signs_webhooks = False
    MINIMUM_AMOUNT_CENTS = 20

    def __init__(self, shop_url: str, callback_url: str = ""):
        self.shop_url = shop_url
        self.callback_url = callback_url

    async def create_payment_intent(self, amount, currency, customer_ref, line_items, metadata, description=None):
        try:
            validate_amount(self, amount)
        except Exception as e:
            logger.warning("Marketplace payment validation failed: %s", e)
            raise

        if not self.shop_url:
            raise PaymentFailed("Marketplace shop URL not configured")

        intent_id = f"{INTENT_PREFIX}{uuid.uuid4().hex}"
        query = {"ref": intent_id}
        if self.callback_url:
            query["return_url"] = self.callback_url
        checkout_url = f"{self.shop_url}?{urlencode(query)}"

        return PaymentIntent(
            id=intent_id,
            amount=to_money(amount),
            currency=currency,
            client_secret=checkout_url,
            customer_ref=customer_ref,
            items=list(line_items or []),
            metadata=dict(metadata or {}),
            status="requires_action",
        )

    async def confirm_payment(self, intent_id: str) -> None:
        # Completion happens on the marketplace; its webhook tells us the outcome
        self._check_id(intent_id)
        logger.info("Marketplace intent %s awaits buyer completion on the marketplace", intent_id)

    async def cancel_payment(self, intent_id: str) -> None:
        self._check_id(intent_id)
        logger.info("Marketplace intent %s cancelled locally", intent_id)

    async def refund(self, intent_id: str, amount=None):
        raise RefundFailed(
            "Marketplace refunds must be processed manually in the marketplace seller dashboard",
            manual_action_required=True,
        )

    async def get_payment_intent(self, intent_id: str) -> PaymentIntent:
        self._check_id(intent_id)
        return PaymentIntent(id=intent_id, amount=to_money(0), currency="", status="requires_action")

    def supports_zero_amount(self) -> bool:
        return False

    def minimum_amount(self) -> int:
        return self.MINIMUM_AMOUNT_CENTS

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> bool:
        return True

    def _check_id(self, intent_id: str) -> None:
        if not intent_id or not intent_id.startswith(INTENT_PREFIX):
            raise PaymentIntentNotFound(f"Unknown marketplace intent {intent_id}")
