# backend/services/marketplace.py
import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class MarketplaceSync(Protocol):
    """What the order core needs from the Etsy/Shopify sync collaborator."""

    def order_paid(self, order_number: str) -> None: ...

    def sync_inventory(self) -> None: ...


class LoggingMarketplaceSync:
    # Default collaborator when no marketplace is connected
    def order_paid(self, order_number: str) -> None:
        logger.info("Marketplace sync: order %s paid, queued for listing update", order_number)

    def sync_inventory(self) -> None:
        logger.info("Marketplace sync: inventory sync skipped, no marketplace connected")


_marketplace = LoggingMarketplaceSync()


def get_marketplace_sync() -> MarketplaceSync:
    return _marketplace
