# backend/services/payment/factory.py
import logging
from functools import lru_cache

from config import settings
from services.payment.card import CardPaymentGateway
from services.payment.marketplace import MarketplacePaymentGateway
from services.payment.mock import MockPaymentGateway

logger = logging.getLogger(__name__)


def build_payment_gateway(provider: str):
    provider = (provider or "mock").lower()
    if provider == "card":
        return CardPaymentGateway(
            api_url=settings.CARD_API_URL,
            api_key=settings.CARD_API_KEY,
            webhook_secret=settings.CARD_WEBHOOK_SECRET,
            timeout=settings.PAYMENT_TIMEOUT_SECONDS,
            webhook_tolerance=settings.CARD_WEBHOOK_TOLERANCE_SECONDS,
        )
    if provider == "marketplace":
        return MarketplacePaymentGateway(
            shop_url=settings.MARKETPLACE_SHOP_URL,
            callback_url=settings.MARKETPLACE_CALLBACK_URL,
        )
    if provider == "mock":
        return MockPaymentGateway(
            min_amount_cents=settings.MOCK_MIN_AMOUNT_CENTS,
            supports_zero=settings.MOCK_SUPPORTS_ZERO,
        )
    raise ValueError(f"Unknown payment provider: {provider}")


@lru_cache
def get_payment_gateway():
    # FastAPI dependency; one gateway per process, picked at startup
    gateway = build_payment_gateway(settings.PAYMENT_PROVIDER)
    logger.info("Payment gateway: %s", gateway.name)
    return gateway
