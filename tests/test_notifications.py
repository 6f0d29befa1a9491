import logging
from decimal import Decimal

from models.notification import Notification, NotificationSeverity, NotificationType
from services.marketplace import LoggingMarketplaceSync
from services.notification import DatabaseNotificationSink, OrderEvent


def test_database_sink_stores_notification(session_factory, db):
    sink = DatabaseNotificationSink(session_factory)
    sink.publish(OrderEvent(
        type=NotificationType.PAYMENT_FAILED, order_number="ORD-1", total=Decimal("12.50"),
        customer_email="a@b.c", reason="card declined",
    ))

    stored = db.query(Notification).one()
    assert stored.severity == NotificationSeverity.ERROR
    assert "ORD-1" in stored.title
    assert stored.payload["reason"] == "card declined"
    assert stored.payload["total"] == 12.5


class BrokenSession:
    def add(self, obj):
        raise RuntimeError("db down")

    def rollback(self):
        pass

    def close(self):
        pass


def test_database_sink_swallows_storage_errors():
    sink = DatabaseNotificationSink(BrokenSession)
    # must not raise: the order transaction is already committed
    sink.publish(OrderEvent(type=NotificationType.ORDER_PAID, order_number="ORD-2", total=Decimal("1.00")))


def test_logging_marketplace_sync_only_logs(caplog):
    sync = LoggingMarketplaceSync()
    with caplog.at_level(logging.INFO, logger="services.marketplace"):
        sync.order_paid("ORD-3")
        sync.sync_inventory()
    assert "ORD-3" in caplog.text
    assert not hasattr(sync, "paid_orders")
