# backend/models/notification.py
import enum

from sqlalchemy import Column, Integer, String, DateTime, JSON, Text, Enum, func
from database import Base


class NotificationType(str, enum.Enum):
    ORDER_CREATED = "order_created"
    ORDER_PAID = "order_paid"
    PAYMENT_FAILED = "payment_failed"
    ORDER_REFUNDED = "order_refunded"


class NotificationSeverity(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# Admin-facing notification produced from order events
class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(Enum(NotificationType), nullable=False, index=True)
    severity = Column(Enum(NotificationSeverity), nullable=False, default=NotificationSeverity.INFO, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
