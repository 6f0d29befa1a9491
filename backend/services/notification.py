# backend/services/notification.py
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Protocol

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from database import SessionLocal
from models.notification import Notification, NotificationSeverity, NotificationType
from services.errors import NotificationNotFound
from utils.money import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderEvent:
    type: NotificationType
    order_number: str
    total: Decimal
    currency: str = "EUR"
    customer_email: Optional[str] = None
    reason: Optional[str] = None
    extra: dict = field(default_factory=dict)


class NotificationSink(Protocol):
    def publish(self, event: OrderEvent) -> None: ...


_SEVERITY = {
    NotificationType.ORDER_CREATED: NotificationSeverity.INFO,
    NotificationType.ORDER_PAID: NotificationSeverity.INFO,
    NotificationType.PAYMENT_FAILED: NotificationSeverity.ERROR,
    NotificationType.ORDER_REFUNDED: NotificationSeverity.WARNING,
}


def _render(event: OrderEvent):
    amount = f"{event.total:.2f} {event.currency}"
    if event.type == NotificationType.ORDER_CREATED:
        return f"New Order: {event.order_number}", f"New order from {event.customer_email} for {amount}"
    if event.type == NotificationType.ORDER_PAID:
        return f"Payment Received: Order {event.order_number}", f"Payment of {amount} received for order {event.order_number}"
    if event.type == NotificationType.PAYMENT_FAILED:
        return (
            f"Payment Failed: Order {event.order_number}",
            f"Payment of {amount} failed for order {event.order_number}. Reason: {event.reason}",
        )
    return f"Order Refunded: {event.order_number}", f"Refund of {amount} issued for order {event.order_number}"


class DatabaseNotificationSink:
    """Stores events as admin notifications, in a session of its own."""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def publish(self, event: OrderEvent) -> None:
        title, message = _render(event)
        payload = {
            "order_number": event.order_number,
            "total": float(event.total),
            "currency": event.currency,
        }
        if event.customer_email:
            payload["customer_email"] = event.customer_email
        if event.reason:
            payload["reason"] = event.reason
        payload.update(event.extra)

        db = self.session_factory()
        try:
            db.add(Notification(
                type=event.type, severity=_SEVERITY[event.type],
                title=title, message=message, payload=payload,
            ))
            db.commit()
        except Exception:
            # Notifications are best effort; the order record is already safe
            db.rollback()
            logger.exception("Failed to store %s notification for %s", event.type.value, event.order_number)
        finally:
            db.close()


_sink = DatabaseNotificationSink()


def get_notification_sink() -> NotificationSink:
    return _sink


# Admin inbox

def list_notifications(db: Session, notification_type: Optional[NotificationType] = None,
                       severity: Optional[NotificationSeverity] = None, unread_only: bool = False,
                       page: int = 1, per_page: int = 20):
    q = db.query(Notification)
    if notification_type is not None:
        q = q.filter(Notification.type == notification_type)
    if severity is not None:
        q = q.filter(Notification.severity == severity)
    if unread_only:
        q = q.filter(Notification.read_at.is_(None))

    total = q.count()
    rows = (
        q.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    unread = db.query(func.count(Notification.id)).filter(Notification.read_at.is_(None)).scalar()
    return rows, total, unread


def get_notification(db: Session, notification_id: int) -> Notification:
    notification = db.get(Notification, notification_id)
    if notification is None:
        raise NotificationNotFound(f"Notification {notification_id} not found")
    return notification


def mark_read(db: Session, notification_id: int) -> Notification:
    notification = get_notification(db, notification_id)
    # Keep the first read time
    if notification.read_at is None:
        notification.read_at = utcnow()
        db.commit()
    return notification


def mark_all_read(db: Session) -> int:
    result = db.execute(
        update(Notification)
        .where(Notification.read_at.is_(None))
        .values(read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount


def delete_notification(db: Session, notification_id: int) -> None:
    notification = get_notification(db, notification_id)
    db.delete(notification)
    db.commit()
